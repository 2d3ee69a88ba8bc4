"""
Data Models Package

This package contains all Pydantic models used in finledger.
All data flowing through the system must conform to these schemas.
"""

from finledger.models.common import Clock, new_id, period_key, utc_now
from finledger.models.user import (
    ROLE_PERMISSIONS,
    LoginResult,
    NotificationPreferences,
    PrivacyPreferences,
    PublicUser,
    Session,
    SessionDescriptor,
    Theme,
    User,
    UserPreferences,
    UserRole,
    UserSecurity,
    UserState,
    default_permissions,
    permission_granted,
)
from finledger.models.ledger import (
    Budget,
    BudgetCadence,
    BudgetImpact,
    BudgetPeriod,
    BudgetSettings,
    BudgetStatus,
    BudgetTracking,
    BudgetType,
    Category,
    CategoryType,
    CategoryUsage,
    MonthlyUsage,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from finledger.models.requests import (
    BreakdownEntry,
    BudgetCreate,
    CategoryCreate,
    ExportedTransaction,
    GroupBy,
    ProfileUpdate,
    RegistrationRequest,
    SortField,
    SortOrder,
    SummaryOptions,
    TransactionCreate,
    TransactionExport,
    TransactionPage,
    TransactionQuery,
    TransactionSummary,
    TransactionUpdate,
    ValidationIssue,
    ValidationResult,
    parse_request,
)
from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Helpers
    "Clock",
    "new_id",
    "period_key",
    "utc_now",
    # Identity models
    "ROLE_PERMISSIONS",
    "LoginResult",
    "NotificationPreferences",
    "PrivacyPreferences",
    "PublicUser",
    "Session",
    "SessionDescriptor",
    "Theme",
    "User",
    "UserPreferences",
    "UserRole",
    "UserSecurity",
    "UserState",
    "default_permissions",
    "permission_granted",
    # Ledger models
    "Budget",
    "BudgetCadence",
    "BudgetImpact",
    "BudgetPeriod",
    "BudgetSettings",
    "BudgetStatus",
    "BudgetTracking",
    "BudgetType",
    "Category",
    "CategoryType",
    "CategoryUsage",
    "MonthlyUsage",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    # Requests and results
    "BreakdownEntry",
    "BudgetCreate",
    "CategoryCreate",
    "ExportedTransaction",
    "GroupBy",
    "ProfileUpdate",
    "RegistrationRequest",
    "SortField",
    "SortOrder",
    "SummaryOptions",
    "TransactionCreate",
    "TransactionExport",
    "TransactionPage",
    "TransactionQuery",
    "TransactionSummary",
    "TransactionUpdate",
    "ValidationIssue",
    "ValidationResult",
    "parse_request",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
