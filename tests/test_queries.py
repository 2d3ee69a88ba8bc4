"""Tests for transaction queries, summaries and formatting."""

import asyncio
from datetime import date

import pytest

from conftest import category_named, sign_in
from finledger.models import GroupBy, Transaction
from finledger.queries import TransactionQueryExecutor, bucket_key, format_amount


def make_transaction(id, amount, day, type="expense", category_id="food", description=None):
    return Transaction(
        id=id,
        user_id="u1",
        amount=amount,
        currency="IDR",
        type=type,
        date=day,
        description=description or f"tx {id}",
        category_id=category_id,
    )


class TestFormatAmount:
    """format_amount()"""

    @pytest.mark.parametrize("amount,currency,expected", [
        (50000, "IDR", "Rp 50.000"),
        (1234567, "idr", "Rp 1.234.567"),
        (123456, "USD", "$1,234.56"),
        (123456, "EUR", "€1.234,56"),
        (5, "USD", "$0.05"),
        (-150, "USD", "-$1.50"),
        (123456, "GBP", "GBP 1,234.56"),
    ])
    def test_formats(self, amount, currency, expected):
        """Test per-currency rendering."""
        assert format_amount(amount, currency) == expected


class TestBucketKey:
    """bucket_key()"""

    def test_buckets(self):
        """Test each grouping."""
        day = date(2025, 1, 15)  # a Wednesday
        assert bucket_key(day, GroupBy.DAY) == "2025-01-15"
        assert bucket_key(day, GroupBy.WEEK) == "2025-01-12"
        assert bucket_key(day, GroupBy.MONTH) == "2025-01"
        assert bucket_key(day, GroupBy.YEAR) == "2025"

    def test_sunday_starts_its_own_week(self):
        """Test the week boundary."""
        assert bucket_key(date(2025, 1, 12), GroupBy.WEEK) == "2025-01-12"
        assert bucket_key(date(2025, 1, 11), GroupBy.WEEK) == "2025-01-05"


class TestPaginate:
    """TransactionQueryExecutor.paginate()"""

    def setup_method(self):
        self.rows = [make_transaction(str(i), 100, date(2025, 1, 1)) for i in range(5)]

    def test_first_page(self):
        """Test has_more on a partial page."""
        page = TransactionQueryExecutor.paginate(self.rows, 0, 2)
        assert [t.id for t in page.records] == ["0", "1"]
        assert page.total == 5
        assert page.has_more

    def test_last_page(self):
        """Test that the last page has no more."""
        page = TransactionQueryExecutor.paginate(self.rows, 4, 2)
        assert [t.id for t in page.records] == ["4"]
        assert not page.has_more

    def test_no_limit(self):
        """Test that limit=None returns the rest."""
        page = TransactionQueryExecutor.paginate(self.rows, 1)
        assert len(page.records) == 4
        assert page.limit == 5
        assert not page.has_more

    def test_offset_past_end(self):
        """Test an empty page."""
        page = TransactionQueryExecutor.paginate(self.rows, 10, 2)
        assert page.records == []
        assert not page.has_more


class TestSummarize:
    """TransactionQueryExecutor.summarize_transactions()"""

    def test_totals_and_breakdowns(self):
        """Test income, expenses and both breakdowns."""
        rows = [
            make_transaction("a", 1000000, date(2025, 1, 1), type="income", category_id="salary"),
            make_transaction("b", 50000, date(2025, 1, 10)),
            make_transaction("c", 150000, date(2025, 2, 3)),
        ]
        summary = TransactionQueryExecutor.summarize_transactions(rows, GroupBy.MONTH)
        assert summary.total_income == 1000000
        assert summary.total_expenses == 200000
        assert summary.net_cash_flow == 800000
        assert summary.transaction_count == 3
        assert summary.average_transaction == pytest.approx(400000)
        assert summary.category_breakdown["food"].expenses == 200000
        assert summary.category_breakdown["food"].count == 2
        assert summary.category_breakdown["salary"].income == 1000000
        assert summary.period_breakdown["2025-01"].count == 2
        assert summary.period_breakdown["2025-02"].expenses == 150000

    def test_empty(self):
        """Test that nothing yields zeros."""
        summary = TransactionQueryExecutor.summarize_transactions([])
        assert summary.transaction_count == 0
        assert summary.average_transaction == 0.0
        assert summary.category_breakdown == {}


class TestSort:
    """TransactionQueryExecutor.sort()"""

    def test_ties_broken_by_id(self):
        """Test deterministic order for equal dates."""
        rows = [
            make_transaction("b", 1, date(2025, 1, 1)),
            make_transaction("a", 1, date(2025, 1, 1)),
            make_transaction("c", 1, date(2025, 1, 2)),
        ]
        ordered = TransactionQueryExecutor.sort(rows, "date", "asc")
        assert [t.id for t in ordered] == ["a", "b", "c"]
        ordered = TransactionQueryExecutor.sort(rows)
        assert [t.id for t in ordered] == ["c", "b", "a"]

    def test_description_is_case_insensitive(self):
        """Test sorting by description."""
        rows = [
            make_transaction("1", 1, date(2025, 1, 1), description="banana"),
            make_transaction("2", 1, date(2025, 1, 1), description="Apple"),
        ]
        ordered = TransactionQueryExecutor.sort(rows, "description", "asc")
        assert [t.description for t in ordered] == ["Apple", "banana"]


class TestQueriesThroughService:
    """get_transactions() / get_transaction_summary() over real storage."""

    @pytest.fixture
    def seeded(self, app):
        async def seed():
            await sign_in(app)
            food = await category_named(app, "Food & Dining")
            salary = await category_named(app, "Salary")
            rows = [
                (1000000, "income", "2025-01-01", "January salary", salary, []),
                (50000, "expense", "2025-01-05", "Lunch", food, ["work"]),
                (75000, "expense", "2025-01-20", "Dinner", food, ["family"]),
                (20000, "expense", "2025-02-02", "Breakfast", food, ["work"]),
            ]
            for amount, kind, day, text, category, tags in rows:
                await app.transactions.create_transaction({
                    "amount": amount, "type": kind, "date": day, "description": text,
                    "category_id": category.id, "tags": tags,
                })
            return food

        food = asyncio.run(seed())
        return app, food

    def test_date_range_and_type(self, seeded):
        """Test date bounds combined with a type filter."""
        app, _ = seeded
        page = asyncio.run(app.transactions.get_transactions({
            "start_date": "2025-01-01", "end_date": "2025-01-31", "type": "expense",
        }))
        assert [t.description for t in page.records] == ["Dinner", "Lunch"]

    def test_tags_match_any(self, seeded):
        """Test the tag filter."""
        app, _ = seeded
        page = asyncio.run(app.transactions.get_transactions({
            "tags": ["work"], "sort_order": "asc",
        }))
        assert [t.description for t in page.records] == ["Lunch", "Breakfast"]

    def test_sort_by_amount_with_pagination(self, seeded):
        """Test amount ordering across pages."""
        app, _ = seeded
        page = asyncio.run(app.transactions.get_transactions({
            "sort_by": "amount", "sort_order": "desc", "offset": 1, "limit": 2,
        }))
        assert [t.amount for t in page.records] == [75000, 50000]
        assert page.total == 4
        assert page.has_more

    def test_category_filter(self, seeded):
        """Test filtering on one category."""
        app, food = seeded
        page = asyncio.run(app.transactions.get_transactions({"category_id": food.id}))
        assert page.total == 3

    def test_summary(self, seeded):
        """Test the service-level summary."""
        app, _ = seeded
        summary = asyncio.run(app.transactions.get_transaction_summary({
            "start_date": "2025-01-01", "end_date": "2025-01-31",
        }))
        assert summary.total_income == 1000000
        assert summary.total_expenses == 125000
        assert summary.net_cash_flow == 875000
        assert list(summary.period_breakdown) == ["2025-01"]
