"""Tests for categories, subcategories and category usage."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from conftest import category_named, sign_in
from finledger.errors import AuthorizationError, ConflictError, ValidationError
from finledger.ledger import apply_category_usage
from finledger.models import Category, CategoryType, Transaction


def make_transaction(amount=1000, day=date(2025, 1, 10), category_id="c1"):
    return Transaction(
        user_id="u1",
        amount=amount,
        currency="IDR",
        type="expense",
        date=day,
        description="x",
        category_id=category_id,
    )


def make_category():
    return Category(
        id="c1",
        user_id="u1",
        name="Food",
        path="/food",
        type=CategoryType.EXPENSE,
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


class TestApplyCategoryUsage:
    """apply_category_usage()"""

    def test_apply_and_retract(self):
        """Test that retracting undoes applying."""
        category = make_category()
        tx = make_transaction(amount=2500)
        applied = apply_category_usage(category, tx)
        assert applied.usage.transaction_count == 1
        assert applied.usage.total_amount == 2500
        assert applied.usage.monthly_usage["2025-01"].amount == 2500

        retracted = apply_category_usage(applied, tx, -1)
        assert retracted.usage.transaction_count == 0
        assert retracted.usage.total_amount == 0
        assert retracted.usage.monthly_usage["2025-01"].count == 0
        # original untouched
        assert category.usage.transaction_count == 0

    def test_retraction_floors_at_zero(self):
        """Test that a duplicate retraction cannot go negative."""
        category = apply_category_usage(make_category(), make_transaction(), -1)
        assert category.usage.transaction_count == 0
        assert category.usage.total_amount == 0
        assert category.usage.monthly_usage == {}

    def test_last_used_date_is_latest(self):
        """Test that an older transaction does not move last_used_date back."""
        category = apply_category_usage(make_category(), make_transaction(day=date(2025, 3, 1)))
        category = apply_category_usage(category, make_transaction(day=date(2025, 1, 5)))
        assert category.usage.last_used_date == date(2025, 3, 1)
        assert set(category.usage.monthly_usage) == {"2025-01", "2025-03"}

    def test_bad_sign(self):
        """Test that only +1 and -1 are accepted."""
        with pytest.raises(ValueError):
            apply_category_usage(make_category(), make_transaction(), 2)


class TestCategoryService:
    """create_category() / list_categories()"""

    def test_create_top_level(self, app):
        """Test a new top-level category."""
        async def scenario():
            user = await sign_in(app)
            category = await app.categories.create_category({"name": "Pets", "type": "expense"})
            return user, category

        user, category = asyncio.run(scenario())
        assert category.user_id == user.id
        assert category.path == "/pets"
        assert category.level == 0
        assert not category.is_system
        assert category.budget_settings.allow_budgeting

    def test_income_category_not_budgetable(self, app):
        """Test the default budget settings for income."""
        async def scenario():
            await sign_in(app)
            return await app.categories.create_category({"name": "Gifts", "type": "income"})

        assert not asyncio.run(scenario()).budget_settings.allow_budgeting

    def test_subcategory_path_and_level(self, app):
        """Test hierarchy fields."""
        async def scenario():
            await sign_in(app)
            food = await category_named(app, "Food & Dining")
            return await app.categories.create_category({
                "name": "Groceries", "type": "expense", "parent_id": food.id,
            })

        groceries = asyncio.run(scenario())
        assert groceries.path == "/food-&-dining/groceries"
        assert groceries.level == 1

    def test_subcategory_type_must_match_parent(self, app):
        """Test that an income child cannot sit under an expense parent."""
        async def scenario():
            await sign_in(app)
            food = await category_named(app, "Food & Dining")
            await app.categories.create_category({
                "name": "Refunds", "type": "income", "parent_id": food.id,
            })

        with pytest.raises(ValidationError):
            asyncio.run(scenario())

    def test_both_parent_accepts_any_child(self, app):
        """Test BOTH parents."""
        async def scenario():
            await sign_in(app)
            transfers = await app.categories.create_category({"name": "Transfers", "type": "both"})
            return await app.categories.create_category({
                "name": "In", "type": "income", "parent_id": transfers.id,
            })

        assert asyncio.run(scenario()).type == CategoryType.INCOME

    def test_foreign_parent(self, app):
        """Test that a parent must belong to the caller."""
        async def scenario():
            await sign_in(app, "bob")
            bobs = await category_named(app, "Travel")
            await app.identity.logout()
            await sign_in(app, "alice")
            await app.categories.create_category({
                "name": "Flights", "type": "expense", "parent_id": bobs.id,
            })

        with pytest.raises(AuthorizationError):
            asyncio.run(scenario())

    def test_duplicate_path_conflicts(self, app):
        """Test that the same path cannot exist twice for one user."""
        async def scenario():
            await sign_in(app)
            await app.categories.create_category({"name": "Shopping", "type": "expense"})

        with pytest.raises(ConflictError):
            asyncio.run(scenario())

    def test_same_name_for_different_users(self, app):
        """Test that paths are unique per user only."""
        async def scenario():
            await sign_in(app, "bob")
            await app.categories.create_category({"name": "Pets", "type": "expense"})
            await app.identity.logout()
            await sign_in(app, "alice")
            return await app.categories.create_category({"name": "Pets", "type": "expense"})

        assert asyncio.run(scenario()).path == "/pets"

    def test_list_by_type(self, app):
        """Test the exact type filter and ordering."""
        async def scenario():
            await sign_in(app)
            await app.categories.create_category({"name": "Transfers", "type": "both"})
            return (
                await app.categories.list_categories(),
                await app.categories.list_categories(CategoryType.INCOME),
            )

        everything, income = asyncio.run(scenario())
        assert len(everything) == 17
        assert [c.path for c in everything] == sorted(c.path for c in everything)
        assert len(income) == 5
        assert all(c.type == CategoryType.INCOME for c in income)
