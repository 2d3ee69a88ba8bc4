"""
Budget Service

Spending caps per expense category and period.

Tracking is computed when the budget is created and whenever a ledger
write touches a transaction the budget covers (see ledger.aggregates).
Paused budgets keep their last tracking until they are re-activated.
"""

from typing import Any, Mapping, Optional, Union

from finledger.audit import AuditLogger
from finledger.errors import AuthorizationError, NotFoundError, ValidationError
from finledger.identity import IdentityManager
from finledger.ledger.aggregates import recalculate_budget
from finledger.models import (
    Budget,
    BudgetCreate,
    BudgetPeriod,
    BudgetStatus,
    Category,
    CategoryType,
    PublicUser,
    parse_request,
)
from finledger.models.common import Clock, utc_now
from finledger.services.storage import StoreTransaction, Stores, TransactionAbortedError


BUDGET_STORES = [Stores.BUDGETS, Stores.CATEGORIES, Stores.TRANSACTIONS]


class BudgetService:
    """
    Usage:
        budgets = BudgetService(identity)
        budget = await budgets.create_budget({
            "category_id": food.id, "name": "Food", "amount": 100000,
            "start_date": "2025-01-01", "end_date": "2025-01-31",
        })
    """

    def __init__(
        self,
        identity: IdentityManager,
        audit_logger: Optional[AuditLogger] = None,
        clock: Clock = utc_now,
    ):
        self._identity = identity
        self._storage = identity.storage
        self._audit = audit_logger or AuditLogger()
        self._clock = clock

    async def _run(self, operation: str, user: PublicUser, operations) -> Any:
        try:
            return await self._storage.execute_transaction(BUDGET_STORES, operations)
        except TransactionAbortedError as e:
            await self._audit.log_storage_error(operation, str(e), user.id)
            raise

    @staticmethod
    async def _load_owned(tx: StoreTransaction, budget_id: str, user_id: str) -> Budget:
        record = await tx.get(Stores.BUDGETS, budget_id)
        if record is None:
            raise NotFoundError("Budget not found")
        if record.get("user_id") != user_id:
            raise AuthorizationError()
        return Budget.model_validate(record)

    async def create_budget(
        self,
        data: Union[BudgetCreate, Mapping[str, Any]],
    ) -> Budget:
        """
        Create a budget and compute its tracking right away.

        Raises:
            ValidationError: Bad input, end before start, income category,
                or budgeting disabled on the category
            AuthorizationError: Category missing or owned by someone else
        """
        user = self._identity.require_user("budgets:write")
        request = parse_request(BudgetCreate, data)
        if request.end_date < request.start_date:
            raise ValidationError(
                "Budget end date cannot be before start date",
                issues=[{
                    "field": "end_date",
                    "issue_type": "inconsistent",
                    "message": "End date is before start date",
                    "severity": "error",
                }],
            )
        now = self._clock()

        async def operations(tx: StoreTransaction) -> Budget:
            record = await tx.get(Stores.CATEGORIES, request.category_id)
            if record is None or record.get("user_id") != user.id:
                raise AuthorizationError("Invalid category")
            category = Category.model_validate(record)
            if category.type == CategoryType.INCOME:
                raise ValidationError("Budgets can only track expense categories")
            if not category.budget_settings.allow_budgeting:
                raise ValidationError(f"Budgeting is disabled for '{category.name}'")

            budget = Budget(
                user_id=user.id,
                category_id=category.id,
                name=request.name,
                amount=request.amount,
                currency=(request.currency or user.preferences.currency).upper(),
                period=BudgetPeriod(
                    start_date=request.start_date,
                    end_date=request.end_date,
                    cadence=request.cadence,
                ),
                budget_type=request.budget_type,
                status=request.status,
                is_template=request.is_template,
                created_at=now,
                updated_at=now,
                created_by=user.id,
            )
            await tx.add(Stores.BUDGETS, budget.to_record())
            return await recalculate_budget(tx, budget, now)

        budget = await self._run("create_budget", user, operations)

        await self._audit.log_budget_created(user.id, budget.id, budget.category_id, budget.amount)
        return budget

    async def get_budget(self, budget_id: str) -> Budget:
        user = self._identity.require_user("budgets:read")

        async def operations(tx: StoreTransaction) -> Budget:
            return await self._load_owned(tx, budget_id, user.id)

        return await self._storage.execute_transaction([Stores.BUDGETS], operations, mode="readonly")

    async def list_budgets(self, status: Optional[BudgetStatus] = None) -> list[Budget]:
        """The caller's budgets by period start, optionally of one status."""
        user = self._identity.require_user("budgets:read")
        records = await self._storage.query_by_index(Stores.BUDGETS, "user_id", user.id)
        budgets = [Budget.model_validate(record) for record in records]
        if status is not None:
            budgets = [b for b in budgets if b.status == BudgetStatus(status)]
        return sorted(budgets, key=lambda b: (b.period.start_date, b.name, b.id))

    async def set_budget_status(self, budget_id: str, status: BudgetStatus) -> Budget:
        """Change status; re-activating a budget recalculates it."""
        user = self._identity.require_user("budgets:write")
        status = BudgetStatus(status)
        now = self._clock()

        async def operations(tx: StoreTransaction) -> tuple[Budget, BudgetStatus]:
            budget = await self._load_owned(tx, budget_id, user.id)
            old_status = budget.status
            if old_status == status:
                return budget, old_status
            budget = budget.model_copy(update={"status": status, "updated_at": now})
            if status == BudgetStatus.ACTIVE:
                budget = await recalculate_budget(tx, budget, now)
            else:
                await tx.update(Stores.BUDGETS, budget.to_record())
            return budget, old_status

        budget, old_status = await self._run("set_budget_status", user, operations)

        if old_status != status:
            await self._audit.log_budget_status_changed(
                user.id, budget.id, old_status.value, status.value
            )
        return budget

    async def recalculate_budget(self, budget_id: str) -> Budget:
        """Force a full recomputation of one budget's tracking."""
        user = self._identity.require_user("budgets:write")
        now = self._clock()

        async def operations(tx: StoreTransaction) -> Budget:
            budget = await self._load_owned(tx, budget_id, user.id)
            return await recalculate_budget(tx, budget, now)

        budget = await self._run("recalculate_budget", user, operations)

        await self._audit.log_budget_recalculated(
            user_id=user.id,
            budget_id=budget.id,
            current_spent=budget.tracking.current_spent,
            remaining_amount=budget.tracking.remaining_amount,
            on_track=budget.tracking.on_track,
        )
        return budget
