"""
Transaction Repository

The only read path over the transactions store used by the services.

CRITICAL: Soft-deleted rows never leave this class except through
get_including_deleted(), which exists for audit lookups.
"""

from datetime import date
from typing import Optional

from finledger.models import Transaction, TransactionType
from finledger.services.storage import KeyRange, RecordAccessInterface, Stores


# ISO date strings order like the dates they encode
_MIN_DAY = "0001-01-01"
_MAX_DAY = "9999-12-31"


class TransactionRepository:
    """
    Typed reads over the transactions store.

    Works on either the storage itself or a transaction handle, so the
    same queries run inside execute_transaction().
    """

    def __init__(self, access: RecordAccessInterface):
        self._access = access

    async def get_including_deleted(self, transaction_id: str) -> Optional[Transaction]:
        record = await self._access.get(Stores.TRANSACTIONS, transaction_id)
        return Transaction.model_validate(record) if record else None

    async def get(self, transaction_id: str) -> Optional[Transaction]:
        transaction = await self.get_including_deleted(transaction_id)
        if transaction is None or transaction.is_deleted:
            return None
        return transaction

    async def list_for_user(
        self,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[Transaction]:
        """Live transactions of one user, optionally within [start_date, end_date]."""
        if start_date is None and end_date is None:
            records = await self._access.query_by_index(Stores.TRANSACTIONS, "user_id", user_id)
        else:
            lower = start_date.isoformat() if start_date else _MIN_DAY
            upper = end_date.isoformat() if end_date else _MAX_DAY
            if lower > upper:
                return []
            records = await self._access.query_by_range(
                Stores.TRANSACTIONS,
                "user_id_date",
                KeyRange.bound((user_id, lower), (user_id, upper)),
            )
        return self._live(records)

    async def list_expenses(
        self,
        user_id: str,
        category_id: str,
        start_date: date,
        end_date: date,
    ) -> list[Transaction]:
        """Live expenses of one category dated within [start_date, end_date]."""
        records = await self._access.query_by_range(
            Stores.TRANSACTIONS,
            "user_id_type_date",
            KeyRange.bound(
                (user_id, TransactionType.EXPENSE.value, start_date.isoformat()),
                (user_id, TransactionType.EXPENSE.value, end_date.isoformat()),
            ),
        )
        return [t for t in self._live(records) if t.category_id == category_id]

    @staticmethod
    def _live(records: list[dict]) -> list[Transaction]:
        transactions = (Transaction.model_validate(record) for record in records)
        return [t for t in transactions if not t.is_deleted]
