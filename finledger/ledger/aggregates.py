"""
Derived Aggregates

Category usage and budget tracking, the two pieces of state that are
derived from the ledger and stored next to it.

DESIGN DECISION: The two aggregates are maintained differently.

- Category usage is INCREMENTAL: every ledger write applies (+1) or
  retracts (-1) exactly one version of a transaction. Retraction floors
  at zero so a duplicate retraction cannot drive counters negative.
- Budget tracking is a FULL RECOMPUTATION over the budget period.
  Budgets are small, and recomputing from the live ledger means a
  budget can never drift from the transactions it covers.

CRITICAL: Both functions take the transaction handle of the ledger
write, so the aggregates commit (or roll back) together with it.
"""

from datetime import datetime
from typing import Iterable, Optional

import structlog

from finledger.models import (
    Budget,
    BudgetImpact,
    BudgetTracking,
    Category,
    CategoryUsage,
    MonthlyUsage,
    Transaction,
    period_key,
)
from finledger.queries.repository import TransactionRepository
from finledger.services.storage import RecordAccessInterface, Stores


logger = structlog.get_logger(__name__)


# =============================================================================
# CATEGORY USAGE
# =============================================================================

def apply_category_usage(category: Category, transaction: Transaction, sign: int = 1) -> Category:
    """
    Add (sign=1) or retract (sign=-1) one transaction from a category's usage.

    Returns an updated copy; the caller persists it.
    """
    if sign not in (1, -1):
        raise ValueError("sign must be 1 or -1")

    usage = category.usage
    bucket_key = period_key(transaction.date)
    buckets = {key: bucket.model_copy() for key, bucket in usage.monthly_usage.items()}
    bucket = buckets.get(bucket_key, MonthlyUsage())

    if sign > 0:
        last_used = usage.last_used_date
        if last_used is None or transaction.date > last_used:
            last_used = transaction.date
        buckets[bucket_key] = MonthlyUsage(
            count=bucket.count + 1,
            amount=bucket.amount + transaction.amount,
        )
        new_usage = CategoryUsage(
            transaction_count=usage.transaction_count + 1,
            total_amount=usage.total_amount + transaction.amount,
            last_used_date=last_used,
            monthly_usage=buckets,
        )
    else:
        if bucket_key in buckets:
            buckets[bucket_key] = MonthlyUsage(
                count=max(0, bucket.count - 1),
                amount=max(0, bucket.amount - transaction.amount),
            )
        new_usage = CategoryUsage(
            transaction_count=max(0, usage.transaction_count - 1),
            total_amount=max(0, usage.total_amount - transaction.amount),
            last_used_date=usage.last_used_date,
            monthly_usage=buckets,
        )

    return category.model_copy(update={"usage": new_usage})


async def update_category_usage(
    access: RecordAccessInterface,
    changes: Iterable[tuple[Transaction, int]],
    now: datetime,
) -> list[Category]:
    """
    Apply a batch of (transaction, sign) usage changes and persist each
    touched category once.

    Categories that no longer exist are skipped.
    """
    touched: dict[str, Category] = {}
    for transaction, sign in changes:
        category = touched.get(transaction.category_id)
        if category is None:
            record = await access.get(Stores.CATEGORIES, transaction.category_id)
            if record is None:
                logger.warning(
                    "category_usage_skipped",
                    category_id=transaction.category_id,
                    transaction_id=transaction.id,
                )
                continue
            category = Category.model_validate(record)
        touched[category.id] = apply_category_usage(category, transaction, sign)

    updated = []
    for category in touched.values():
        category = category.model_copy(update={"updated_at": now})
        await access.update(Stores.CATEGORIES, category.to_record())
        updated.append(category)
    return updated


# =============================================================================
# BUDGET TRACKING
# =============================================================================

def compute_tracking(amount: int, spent: int) -> BudgetTracking:
    percentage = round(spent / amount * 100, 2) if amount > 0 else 0.0
    return BudgetTracking(
        current_spent=spent,
        remaining_amount=amount - spent,
        percentage_used=percentage,
        on_track=percentage <= 100,
    )


async def recalculate_budget(
    access: RecordAccessInterface,
    budget: Budget,
    now: datetime,
) -> Budget:
    """
    Recompute a budget's tracking from the live ledger and persist it.

    current_spent is the sum of non-deleted expenses of the budget's
    category dated within the budget period.
    """
    expenses = await TransactionRepository(access).list_expenses(
        budget.user_id,
        budget.category_id,
        budget.period.start_date,
        budget.period.end_date,
    )
    tracking = compute_tracking(budget.amount, sum(t.amount for t in expenses))
    updated = budget.model_copy(update={
        "tracking": tracking,
        "last_calculated_at": now,
        "updated_at": now,
    })
    await access.update(Stores.BUDGETS, updated.to_record())
    logger.debug(
        "budget_recalculated",
        budget_id=budget.id,
        current_spent=tracking.current_spent,
        on_track=tracking.on_track,
    )
    return updated


async def find_covering_budgets(
    access: RecordAccessInterface,
    transaction: Transaction,
) -> list[Budget]:
    """Active, non-template budgets of the transaction's category covering its date."""
    if not transaction.is_expense:
        return []
    records = await access.query_by_index(
        Stores.BUDGETS,
        "user_id_category_id",
        (transaction.user_id, transaction.category_id),
    )
    budgets = (Budget.model_validate(record) for record in records)
    return [b for b in budgets if not b.is_template and b.covers(transaction.date)]


async def recalculate_budgets_for(
    access: RecordAccessInterface,
    transactions: Iterable[Transaction],
    now: datetime,
) -> list[Budget]:
    """
    Recalculate every budget covering any of the given transaction versions.

    Pass both the old and the new version of an updated transaction so
    the budget it left and the budget it joined are both refreshed.
    Each budget is recalculated once.
    """
    budgets: dict[str, Budget] = {}
    for transaction in transactions:
        for budget in await find_covering_budgets(access, transaction):
            budgets.setdefault(budget.id, budget)

    return [await recalculate_budget(access, budget, now) for budget in budgets.values()]


def budget_impact_for(transaction: Transaction, budgets: Iterable[Budget]) -> BudgetImpact:
    """
    Snapshot of the budget a transaction now counts against.

    Empty when no recalculated budget covers the transaction.
    """
    impact: Optional[BudgetImpact] = None
    for budget in budgets:
        if (
            transaction.is_expense
            and budget.category_id == transaction.category_id
            and budget.covers(transaction.date)
        ):
            impact = BudgetImpact(
                budget_id=budget.id,
                budget_period=budget.period.label,
                remaining_budget=budget.tracking.remaining_amount,
            )
    return impact or BudgetImpact()
