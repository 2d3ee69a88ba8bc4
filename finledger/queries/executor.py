"""
Transaction Query Engine

DESIGN DECISION: Query execution is DETERMINISTIC.
Every list, summary and export is derived from a fresh read of the
caller's live transactions through TransactionRepository. Nothing is
cached and no summary row is ever persisted.

Soft-deleted rows never reach this module: the repository drops them
before filtering starts, so they cannot leak into totals or pages.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from finledger.models import (
    BreakdownEntry,
    ExportedTransaction,
    GroupBy,
    SortField,
    SortOrder,
    SummaryOptions,
    Transaction,
    TransactionExport,
    TransactionPage,
    TransactionQuery,
    TransactionSummary,
    TransactionType,
)
from finledger.queries.repository import TransactionRepository
from finledger.services.storage import RecordAccessInterface


# symbol, decimals, thousands separator, decimal separator
CURRENCY_FORMATS = {
    "IDR": ("Rp ", 0, ".", ","),
    "USD": ("$", 2, ",", "."),
    "EUR": ("€", 2, ".", ","),
}


def format_amount(amount: int, currency: str) -> str:
    """
    Render minor units for display.

    Unknown currencies are shown with their code and two decimals.
    """
    symbol, decimals, thousands, point = CURRENCY_FORMATS.get(
        currency.upper(), (f"{currency.upper()} ", 2, ",", ".")
    )
    value = Decimal(amount).scaleb(-decimals)
    sign = "-" if value < 0 else ""
    text = f"{abs(value):,.{decimals}f}"
    # Swap separators through a placeholder
    text = text.replace(",", "\0").replace(".", point).replace("\0", thousands)
    return f"{sign}{symbol}{text}"


def bucket_key(day: date, group_by: GroupBy) -> str:
    """Period bucket of a date. Weeks start on Sunday."""
    if group_by == GroupBy.DAY:
        return day.isoformat()
    if group_by == GroupBy.WEEK:
        # date.weekday(): Monday=0 .. Sunday=6
        return (day - timedelta(days=(day.weekday() + 1) % 7)).isoformat()
    if group_by == GroupBy.YEAR:
        return f"{day.year:04d}"
    return f"{day.year:04d}-{day.month:02d}"


class TransactionQueryExecutor:
    """
    Executes transaction queries for one user at a time.

    GUARANTEES:
    - Only returns the given user's rows
    - Never returns soft-deleted rows
    - Same data + same query = same result, including order
    """

    def __init__(self, access: RecordAccessInterface):
        self._repository = TransactionRepository(access)

    # =========================================================================
    # LISTING
    # =========================================================================

    async def execute(self, user_id: str, query: TransactionQuery) -> TransactionPage:
        """Filter, sort and paginate a user's live transactions."""
        transactions = await self._repository.list_for_user(
            user_id, query.start_date, query.end_date
        )
        matched = self.sort(
            [t for t in transactions if self.matches(t, query)],
            query.sort_by,
            query.sort_order,
        )
        return self.paginate(matched, query.offset, query.limit)

    @staticmethod
    def matches(transaction: Transaction, query: TransactionQuery) -> bool:
        if query.type is not None and transaction.type != query.type:
            return False
        if query.category_id is not None and transaction.category_id != query.category_id:
            return False
        if query.status is not None and transaction.status != query.status:
            return False
        if query.start_date is not None and transaction.date < query.start_date:
            return False
        if query.end_date is not None and transaction.date > query.end_date:
            return False
        if query.tags and not set(query.tags).intersection(transaction.tags):
            return False
        if query.search:
            needle = query.search.lower()
            haystack = (transaction.description, transaction.merchant, transaction.reference)
            if not any(text and needle in text.lower() for text in haystack):
                return False
        return True

    @staticmethod
    def sort(
        transactions: Iterable[Transaction],
        sort_by: SortField = SortField.DATE,
        sort_order: SortOrder = SortOrder.DESC,
    ) -> list[Transaction]:
        """Order by the sort field, ties broken by id."""
        def key(transaction: Transaction):
            if sort_by == SortField.AMOUNT:
                value = transaction.amount
            elif sort_by == SortField.DESCRIPTION:
                value = transaction.description.lower()
            elif sort_by == SortField.CREATED_AT:
                value = transaction.created_at
            else:
                value = transaction.date
            return (value, transaction.id)

        return sorted(transactions, key=key, reverse=sort_order == SortOrder.DESC)

    @staticmethod
    def paginate(
        transactions: list[Transaction],
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> TransactionPage:
        """Slice a sorted list. limit=None means everything after offset."""
        total = len(transactions)
        if limit is None:
            limit = total
        records = transactions[offset:offset + limit]
        return TransactionPage(
            records=records,
            total=total,
            offset=offset,
            limit=limit,
            has_more=offset + len(records) < total,
        )

    # =========================================================================
    # SUMMARY
    # =========================================================================

    async def summarize(self, user_id: str, options: SummaryOptions) -> TransactionSummary:
        transactions = await self._repository.list_for_user(
            user_id, options.start_date, options.end_date
        )
        return self.summarize_transactions(transactions, options.group_by)

    @staticmethod
    def summarize_transactions(
        transactions: list[Transaction],
        group_by: GroupBy = GroupBy.MONTH,
    ) -> TransactionSummary:
        """
        Totals and breakdowns over a list of transactions.

        average_transaction is (income + expenses) / count.
        """
        summary = TransactionSummary(transaction_count=len(transactions))

        for transaction in transactions:
            by_category = summary.category_breakdown.setdefault(
                transaction.category_id, BreakdownEntry()
            )
            by_period = summary.period_breakdown.setdefault(
                bucket_key(transaction.date, group_by), BreakdownEntry()
            )
            for entry in (by_category, by_period):
                if transaction.type == TransactionType.INCOME:
                    entry.income += transaction.amount
                else:
                    entry.expenses += transaction.amount
                entry.count += 1

            if transaction.type == TransactionType.INCOME:
                summary.total_income += transaction.amount
            else:
                summary.total_expenses += transaction.amount

        summary.net_cash_flow = summary.total_income - summary.total_expenses
        if transactions:
            summary.average_transaction = (
                (summary.total_income + summary.total_expenses) / len(transactions)
            )
        return summary

    # =========================================================================
    # EXPORT
    # =========================================================================

    async def export(
        self,
        user_id: str,
        query: TransactionQuery,
        now: datetime,
    ) -> TransactionExport:
        page = await self.execute(user_id, query)
        exported = [
            ExportedTransaction(
                **t.model_dump(),
                formatted_amount=format_amount(t.amount, t.currency),
                formatted_date=t.date.strftime("%d/%m/%Y"),
            )
            for t in page.records
        ]
        return TransactionExport(
            export_date=now,
            total_transactions=len(exported),
            transactions=exported,
        )
