"""
Ledger Models

Categories, transactions and budgets as stored in the object store.

DESIGN DECISION: Amounts are integers in minor currency units.
No floats ever reach the ledger; rounding happens once, on input.

Two fields are derived aggregates, kept in sync by the ledger services
inside the same storage transaction as the ledger write:
- Category.usage    (incremental: count/amount per category and month)
- Budget.tracking   (full recomputation over the budget period)
"""

from datetime import date, datetime
from datetime import date as date_type
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from finledger.models.common import new_id, utc_now


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CLEARED = "cleared"
    RECONCILED = "reconciled"


class CategoryType(str, Enum):
    """
    Which transaction types a category accepts.

    BOTH is for buckets like transfers that can go either way.
    """
    INCOME = "income"
    EXPENSE = "expense"
    BOTH = "both"


class BudgetType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    VARIABLE = "variable"


class BudgetStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BudgetCadence(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"


# =============================================================================
# CATEGORY
# =============================================================================

class MonthlyUsage(BaseModel):
    count: int = Field(default=0, ge=0)
    amount: int = Field(default=0, ge=0)


class CategoryUsage(BaseModel):
    """
    Usage aggregate of one category.

    Equals the sum over the category's non-deleted transactions.
    """
    transaction_count: int = Field(default=0, ge=0)
    total_amount: int = Field(default=0, ge=0)
    last_used_date: Optional[date] = None
    monthly_usage: dict[str, MonthlyUsage] = Field(default_factory=dict)


class BudgetSettings(BaseModel):
    allow_budgeting: bool = True
    default_budget_amount: Optional[int] = Field(default=None, gt=0)
    budget_type: BudgetType = BudgetType.FIXED
    alert_threshold: int = Field(default=80, ge=0, le=100, description="Percent")
    rollover_unused: bool = False


class Category(BaseModel):
    """A classification bucket owned by exactly one user."""

    id: str = Field(default_factory=new_id)
    user_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    icon: Optional[str] = None
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")

    # Hierarchy
    parent_id: Optional[str] = None
    path: str = Field(..., description="Materialized path, e.g. /food-dining/groceries")
    level: int = Field(default=0, ge=0)
    sort_order: int = 0

    type: CategoryType
    is_system: bool = False
    is_active: bool = True
    budget_settings: BudgetSettings = Field(default_factory=BudgetSettings)
    usage: CategoryUsage = Field(default_factory=CategoryUsage)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    created_by: Optional[str] = None

    def accepts(self, transaction_type: TransactionType) -> bool:
        return self.type == CategoryType.BOTH or self.type.value == transaction_type.value

    def to_record(self) -> dict:
        return self.model_dump(mode="json")


# =============================================================================
# TRANSACTION
# =============================================================================

class BudgetImpact(BaseModel):
    """Which budget a transaction last affected, and what was left of it."""

    budget_id: Optional[str] = None
    budget_period: Optional[str] = Field(
        default=None,
        description="'<start>_<end>' of the affected budget"
    )
    remaining_budget: Optional[int] = None


class Transaction(BaseModel):
    """
    A ledger entry.

    Never physically deleted by the ledger: deletion sets is_deleted and
    deleted_at, and the row stays for history and audit.
    """

    id: str = Field(default_factory=new_id)
    user_id: str

    amount: int = Field(..., gt=0, description="Minor currency units")
    currency: str = Field(..., min_length=3, max_length=3)
    type: TransactionType
    date: date_type
    description: str = Field(..., min_length=1)

    category_id: str
    subcategory_id: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    payment_method: Optional[str] = None
    location: Optional[str] = None
    merchant: Optional[str] = None
    reference: Optional[str] = None
    attachments: list[str] = Field(default_factory=list)

    # Recurrence linkage
    is_recurring: bool = False
    recurring_id: Optional[str] = None
    recurring_instance_id: Optional[str] = None

    status: TransactionStatus = TransactionStatus.CLEARED

    # Soft delete
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    # Audit
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    deleted_by: Optional[str] = None

    budget_impact: BudgetImpact = Field(default_factory=BudgetImpact)

    @property
    def is_expense(self) -> bool:
        return self.type == TransactionType.EXPENSE

    def to_record(self) -> dict:
        return self.model_dump(mode="json")


# =============================================================================
# BUDGET
# =============================================================================

class BudgetPeriod(BaseModel):
    start_date: date
    end_date: date
    cadence: BudgetCadence = BudgetCadence.MONTHLY

    @model_validator(mode='after')
    def validate_dates(self) -> 'BudgetPeriod':
        if self.end_date < self.start_date:
            raise ValueError("Budget period end cannot be before start")
        return self

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    @property
    def label(self) -> str:
        return f"{self.start_date.isoformat()}_{self.end_date.isoformat()}"


class BudgetTracking(BaseModel):
    """
    Recomputed from the live ledger on every affecting write.

    remaining_amount goes negative once the budget is overspent.
    """
    current_spent: int = Field(default=0, ge=0)
    remaining_amount: int = 0
    percentage_used: float = Field(default=0.0, ge=0)
    on_track: bool = True


class Budget(BaseModel):
    """A spending cap for one category over one period."""

    id: str = Field(default_factory=new_id)
    user_id: str
    category_id: str
    name: str = Field(..., min_length=1, max_length=100)
    amount: int = Field(..., gt=0, description="Target in minor currency units")
    currency: str = Field(..., min_length=3, max_length=3)
    period: BudgetPeriod
    budget_type: BudgetType = BudgetType.FIXED
    tracking: BudgetTracking = Field(default_factory=BudgetTracking)
    status: BudgetStatus = BudgetStatus.ACTIVE
    is_template: bool = False
    last_calculated_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    created_by: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == BudgetStatus.ACTIVE

    def covers(self, day: date) -> bool:
        return self.is_active and self.period.contains(day)

    def to_record(self) -> dict:
        return self.model_dump(mode="json")
