"""
Transaction Domain Service

CRUD over the ledger on behalf of the authenticated caller.

Flow of every write:
1. Caller is authenticated and holds the permission
2. Stage 1 validation on the raw request (no storage)
3. ONE storage transaction over transactions, categories and budgets:
   - ownership check and stage 2 validation
   - ledger write
   - category usage (incremental)
   - budget tracking (full recomputation) and the budget_impact snapshot
4. Audit event

DESIGN DECISION: Step 3 is a single execute_transaction(). The ledger
row and both aggregates commit together or not at all, and the storage
lock makes the read-modify-write on category usage race-free.

CRITICAL: Transactions are never physically deleted here. Deletion is a
soft delete; every read path goes through TransactionRepository, which
drops soft-deleted rows.
"""

from datetime import datetime
from typing import Any, Mapping, NoReturn, Optional, Union

import structlog

from finledger.audit import AuditLogger
from finledger.config import Settings, get_settings
from finledger.errors import AuthorizationError, NotFoundError, ValidationError
from finledger.identity import IdentityManager
from finledger.ledger.aggregates import (
    budget_impact_for,
    recalculate_budgets_for,
    update_category_usage,
)
from finledger.models import (
    PublicUser,
    SummaryOptions,
    Transaction,
    TransactionCreate,
    TransactionExport,
    TransactionPage,
    TransactionQuery,
    TransactionSummary,
    TransactionUpdate,
    ValidationResult,
    parse_request,
)
from finledger.models.common import Clock, utc_now
from finledger.queries import TransactionQueryExecutor, TransactionRepository
from finledger.services.storage import (
    StoreTransaction,
    Stores,
    TransactionAbortedError,
)
from finledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)

LEDGER_STORES = [Stores.TRANSACTIONS, Stores.CATEGORIES, Stores.BUDGETS]


def _usage_key(transaction: Transaction) -> tuple:
    return (transaction.category_id, transaction.amount, transaction.date)


class TransactionService:
    """
    Ledger operations for the current user.

    Usage:
        service = TransactionService(identity)
        tx = await service.create_transaction({
            "amount": 50000, "type": "expense", "date": "2025-01-15",
            "description": "Lunch", "category_id": food.id,
        })
    """

    def __init__(
        self,
        identity: IdentityManager,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ):
        settings = settings or get_settings()
        self._identity = identity
        self._storage = identity.storage
        self._audit = audit_logger or AuditLogger()
        self._clock = clock
        self._validator = TransactionValidator(settings.app, clock)
        self._queries = TransactionQueryExecutor(self._storage)
        self._repository = TransactionRepository(self._storage)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _reject(self, result: ValidationResult, stage: str, user_id: str) -> NoReturn:
        issues = [issue.model_dump() for issue in result.issues]
        await self._audit.log_validation_failed("transaction", stage, issues, user_id)
        raise ValidationError(result.errors[0].message, issues=issues)

    async def _run(self, operation: str, user: PublicUser, operations) -> Any:
        try:
            return await self._storage.execute_transaction(LEDGER_STORES, operations)
        except TransactionAbortedError as e:
            await self._audit.log_storage_error(operation, str(e), user.id)
            raise

    def _warn(self, result: ValidationResult, transaction_id: str) -> None:
        if result.warnings:
            logger.info(
                "transaction_validation_warnings",
                transaction_id=transaction_id,
                warnings=result.warnings,
            )

    async def _refresh_budgets(
        self,
        tx: StoreTransaction,
        transaction: Transaction,
        versions: list[Transaction],
        now: datetime,
    ) -> Transaction:
        """Recalculate affected budgets and store the new budget_impact snapshot."""
        budgets = await recalculate_budgets_for(tx, versions, now)
        impact = budget_impact_for(transaction, budgets)
        if impact != transaction.budget_impact:
            transaction = transaction.model_copy(update={"budget_impact": impact})
            await tx.update(Stores.TRANSACTIONS, transaction.to_record())
        return transaction

    async def _load_owned(
        self,
        tx: StoreTransaction,
        transaction_id: str,
        user_id: str,
    ) -> Transaction:
        existing = await TransactionRepository(tx).get(transaction_id)
        if existing is None:
            raise NotFoundError("Transaction not found")
        if existing.user_id != user_id:
            raise AuthorizationError()
        return existing

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create_transaction(
        self,
        data: Union[TransactionCreate, Mapping[str, Any]],
    ) -> Transaction:
        """
        Record a new transaction and update usage and budgets.

        Raises:
            SessionExpiredError: Not authenticated
            ValidationError: Missing field, bad enum, amount <= 0, ...
            AuthorizationError: Category missing or owned by someone else
        """
        user = self._identity.require_user("transactions:write")
        request = parse_request(TransactionCreate, data)
        fields = request.model_dump()

        result = self._validator.check_schema(fields)
        if not result.schema_valid:
            await self._reject(result, "schema", user.id)
        fields = self._validator.normalize(fields)
        fields["currency"] = fields.get("currency") or user.preferences.currency
        now = self._clock()

        async def operations(tx: StoreTransaction) -> tuple[Transaction, ValidationResult]:
            semantic, _ = await self._validator.check_semantic(tx, user.id, fields)
            if not semantic.semantic_valid:
                await self._reject(semantic, "semantic", user.id)

            transaction = Transaction(
                user_id=user.id,
                **fields,
                created_at=now,
                updated_at=now,
                created_by=user.id,
                updated_by=user.id,
            )
            await tx.add(Stores.TRANSACTIONS, transaction.to_record())
            await update_category_usage(tx, [(transaction, 1)], now)
            transaction = await self._refresh_budgets(tx, transaction, [transaction], now)
            return transaction, semantic

        transaction, semantic = await self._run("create_transaction", user, operations)

        self._warn(semantic, transaction.id)
        await self._audit.log_transaction_created(
            user_id=user.id,
            transaction_id=transaction.id,
            amount=transaction.amount,
            transaction_type=transaction.type.value,
            category_id=transaction.category_id,
        )
        return transaction

    async def update_transaction(
        self,
        transaction_id: str,
        updates: Union[TransactionUpdate, Mapping[str, Any]],
    ) -> Transaction:
        """
        Change whitelisted fields of a transaction.

        Usage is moved from the old version to the new one whenever
        category, amount or date changes. Budgets covering either
        version are recalculated whatever changed.

        Raises:
            SessionExpiredError: Not authenticated
            ValidationError: Unknown field or invalid value
            NotFoundError: No live transaction with this id
            AuthorizationError: Not the caller's transaction, or bad category
        """
        user = self._identity.require_user("transactions:write")
        request = parse_request(TransactionUpdate, updates)
        changes = request.changes()

        result = self._validator.check_schema(changes, partial=True)
        if not result.schema_valid:
            await self._reject(result, "schema", user.id)
        changes = self._validator.normalize(changes)
        for name in ("currency", "tags", "attachments"):
            if name in changes and changes[name] is None:
                del changes[name]
        now = self._clock()

        async def operations(tx: StoreTransaction) -> tuple[Transaction, ValidationResult]:
            existing = await self._load_owned(tx, transaction_id, user.id)
            merged = {**existing.model_dump(), **changes}

            semantic, _ = await self._validator.check_semantic(tx, user.id, merged)
            if not semantic.semantic_valid:
                await self._reject(semantic, "semantic", user.id)

            updated = Transaction.model_validate({
                **merged,
                "updated_at": now,
                "updated_by": user.id,
            })
            await tx.update(Stores.TRANSACTIONS, updated.to_record())

            if _usage_key(existing) != _usage_key(updated):
                await update_category_usage(tx, [(existing, -1), (updated, 1)], now)

            updated = await self._refresh_budgets(tx, updated, [existing, updated], now)
            return updated, semantic

        updated, semantic = await self._run("update_transaction", user, operations)

        self._warn(semantic, updated.id)
        await self._audit.log_transaction_updated(user.id, updated.id, sorted(changes))
        return updated

    async def delete_transaction(self, transaction_id: str) -> Transaction:
        """
        Soft-delete a transaction and retract it from usage and budgets.

        Returns the tombstoned record.

        Raises:
            SessionExpiredError: Not authenticated
            NotFoundError: No live transaction with this id
            AuthorizationError: Not the caller's transaction
        """
        user = self._identity.require_user("transactions:write")
        now = self._clock()

        async def operations(tx: StoreTransaction) -> Transaction:
            existing = await self._load_owned(tx, transaction_id, user.id)
            deleted = existing.model_copy(update={
                "is_deleted": True,
                "deleted_at": now,
                "deleted_by": user.id,
                "updated_at": now,
                "updated_by": user.id,
            })
            await tx.update(Stores.TRANSACTIONS, deleted.to_record())
            await update_category_usage(tx, [(existing, -1)], now)
            await recalculate_budgets_for(tx, [existing], now)
            return deleted

        deleted = await self._run("delete_transaction", user, operations)

        await self._audit.log_transaction_deleted(user.id, deleted.id)
        return deleted

    # =========================================================================
    # READS
    # =========================================================================

    async def get_transaction(self, transaction_id: str) -> Transaction:
        """
        Raises:
            NotFoundError: Missing or soft-deleted
            AuthorizationError: Owned by someone else
        """
        user = self._identity.require_user("transactions:read")
        transaction = await self._repository.get(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction not found")
        if transaction.user_id != user.id:
            raise AuthorizationError()
        return transaction

    async def get_transaction_for_audit(self, transaction_id: str) -> Transaction:
        """Like get_transaction(), but soft-deleted rows are returned too."""
        user = self._identity.require_user("transactions:read")
        transaction = await self._repository.get_including_deleted(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction not found")
        if transaction.user_id != user.id:
            raise AuthorizationError()
        return transaction

    async def get_transactions(
        self,
        query: Union[TransactionQuery, Mapping[str, Any], None] = None,
    ) -> TransactionPage:
        """Filtered, sorted, paginated live transactions of the caller."""
        user = self._identity.require_user("transactions:read")
        return await self._queries.execute(user.id, parse_request(TransactionQuery, query))

    async def get_transaction_summary(
        self,
        options: Union[SummaryOptions, Mapping[str, Any], None] = None,
    ) -> TransactionSummary:
        user = self._identity.require_user("transactions:read")
        return await self._queries.summarize(user.id, parse_request(SummaryOptions, options))

    async def get_recent_transactions(self, limit: int = 10) -> list[Transaction]:
        page = await self.get_transactions({"sort_by": "date", "sort_order": "desc", "limit": limit})
        return page.records

    async def search_transactions(self, text: str, **filters: Any) -> list[Transaction]:
        """Case-insensitive search over description, merchant and reference."""
        page = await self.get_transactions({**filters, "search": text})
        return page.records

    async def export_transactions(
        self,
        query: Union[TransactionQuery, Mapping[str, Any], None] = None,
    ) -> TransactionExport:
        user = self._identity.require_user("transactions:read")
        return await self._queries.export(
            user.id, parse_request(TransactionQuery, query), self._clock()
        )
