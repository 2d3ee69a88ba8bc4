"""
Request and Result Models

Typed inputs for every mutating operation. Each request model lists
exactly the fields its operation may touch (extra="forbid"), so an
unexpected key is rejected instead of silently merged.

Request models are deliberately lenient about presence: required-field
and business checks belong to the validators, which report them as
ValidationIssues the same way for every input path.
"""

from datetime import date, datetime
from datetime import date as date_type
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
)

from finledger.errors import ValidationError
from finledger.models.ledger import (
    BudgetCadence,
    BudgetSettings,
    BudgetStatus,
    BudgetType,
    CategoryType,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from finledger.models.user import UserRole


RequestT = TypeVar("RequestT", bound=BaseModel)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (presence, enums, limits)
    Stage 2: Semantic validation (ownership and consistency, needs storage)
    """

    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]


def parse_request(
    model: type[RequestT],
    data: Union[RequestT, Mapping[str, Any], None],
) -> RequestT:
    """
    Coerce caller input into a request model.

    Raises:
        ValidationError: With one issue per pydantic error
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(dict(data or {}))
    except PydanticValidationError as e:
        issues = [
            ValidationIssue(
                field=".".join(str(part) for part in error["loc"]) or "__root__",
                issue_type=error["type"],
                message=error["msg"],
            ).model_dump()
            for error in e.errors()
        ]
        fields = ", ".join(issue["field"] for issue in issues)
        raise ValidationError(f"Invalid input: {fields}", issues=issues)


# =============================================================================
# IDENTITY REQUESTS
# =============================================================================

class RegistrationRequest(BaseModel):
    """
    CRITICAL: password is taken exactly as typed. Only the username and
    names are stripped, since login verifies the raw password.
    """
    model_config = ConfigDict(extra="forbid")

    username: str = Field(
        ...,
        min_length=3,
        max_length=50,
        pattern=r"^[A-Za-z0-9_]+$",
        description="Letters, digits and underscores"
    )
    password: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    role: UserRole = UserRole.PERSONAL

    @field_validator('username', 'first_name', 'last_name', mode='before')
    @classmethod
    def strip_names(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator('email')
    @classmethod
    def lower_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else None


class ProfileUpdate(BaseModel):
    """
    The only profile fields a user may change.

    Fields left out are untouched; an explicit email=None removes the email.
    preferences is merged into the stored preferences.
    """
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    email: Optional[EmailStr] = None
    preferences: Optional[dict[str, Any]] = None

    @field_validator('email')
    @classmethod
    def lower_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else None


# =============================================================================
# LEDGER REQUESTS
# =============================================================================

class TransactionCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    type: Optional[str] = None
    date: Optional[date_type] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    payment_method: Optional[str] = None
    location: Optional[str] = None
    merchant: Optional[str] = None
    reference: Optional[str] = None
    attachments: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_id: Optional[str] = None
    status: Optional[str] = None


class TransactionUpdate(BaseModel):
    """Whitelisted mutable transaction fields. Unset fields are untouched."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    type: Optional[str] = None
    date: Optional[date_type] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    tags: Optional[list[str]] = None
    payment_method: Optional[str] = None
    location: Optional[str] = None
    merchant: Optional[str] = None
    reference: Optional[str] = None
    attachments: Optional[list[str]] = None
    status: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class SortField(str, Enum):
    DATE = "date"
    AMOUNT = "amount"
    DESCRIPTION = "description"
    CREATED_AT = "created_at"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class TransactionQuery(BaseModel):
    """Filters, ordering and pagination for transaction reads."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    type: Optional[TransactionType] = None
    category_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[TransactionStatus] = None
    tags: list[str] = Field(
        default_factory=list,
        description="Match transactions carrying at least one of these tags"
    )
    search: Optional[str] = Field(
        default=None,
        description="Case-insensitive text over description, merchant and reference"
    )
    sort_by: SortField = SortField.DATE
    sort_order: SortOrder = SortOrder.DESC
    offset: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(default=None, ge=1)


class GroupBy(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class SummaryOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    group_by: GroupBy = GroupBy.MONTH


class CategoryCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    type: CategoryType
    parent_id: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=500)
    icon: Optional[str] = None
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    sort_order: int = 0
    budget_settings: Optional[BudgetSettings] = None


class BudgetCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    category_id: str
    name: str = Field(..., min_length=1, max_length=100)
    amount: int = Field(..., gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    start_date: date
    end_date: date
    cadence: BudgetCadence = BudgetCadence.MONTHLY
    budget_type: BudgetType = BudgetType.FIXED
    status: BudgetStatus = BudgetStatus.ACTIVE
    is_template: bool = False


# =============================================================================
# RESULTS
# =============================================================================

class TransactionPage(BaseModel):
    records: list[Transaction]
    total: int
    offset: int
    limit: int
    has_more: bool


class BreakdownEntry(BaseModel):
    income: int = 0
    expenses: int = 0
    count: int = 0


class TransactionSummary(BaseModel):
    total_income: int = 0
    total_expenses: int = 0
    net_cash_flow: int = 0
    transaction_count: int = 0
    average_transaction: float = 0.0
    category_breakdown: dict[str, BreakdownEntry] = Field(default_factory=dict)
    period_breakdown: dict[str, BreakdownEntry] = Field(default_factory=dict)


class ExportedTransaction(Transaction):
    formatted_amount: str
    formatted_date: str


class TransactionExport(BaseModel):
    export_date: datetime
    total_transactions: int
    transactions: list[ExportedTransaction]
