"""
Audit Models for finledger

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of who changed what
2. Debugging information when things go wrong
3. Ability to reconstruct history alongside soft-deleted rows

DESIGN DECISION: Audit events never carry secrets. Passwords, hashes,
salts and session tokens have no place in any builder below.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from finledger.models.common import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Identity
    USER_REGISTERED = "user_registered"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    SESSION_RESTORED = "session_restored"
    SESSION_DISCARDED = "session_discarded"
    SESSION_REFRESHED = "session_refreshed"
    PROFILE_UPDATED = "profile_updated"
    PASSWORD_CHANGED = "password_changed"
    ACCOUNT_DELETED = "account_deleted"

    # Ledger
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    CATEGORY_CREATED = "category_created"
    BUDGET_CREATED = "budget_created"
    BUDGET_STATUS_CHANGED = "budget_status_changed"
    BUDGET_RECALCULATED = "budget_recalculated"

    # Validation
    VALIDATION_FAILED = "validation_failed"

    # System events
    STORAGE_ERROR = "storage_error"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about, and who did it?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'user', 'transaction', 'budget')"
    )
    entity_id: Optional[str] = None
    user_id: Optional[str] = Field(
        default=None,
        description="Acting user, when known"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.user_registered(user_id, "alice")
        event = AuditEventBuilder.transaction_created(user_id, tx_id, 50000, "expense")
    """

    @staticmethod
    def user_registered(user_id: str, username: str, role: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_REGISTERED,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            description=f"User registered: {username}",
            details={"username": username, "role": role},
            is_user_action=True,
        )

    @staticmethod
    def login_succeeded(user_id: str, username: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGIN_SUCCEEDED,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            description=f"Login succeeded: {username}",
            is_user_action=True,
        )

    @staticmethod
    def login_failed(username: str) -> AuditEvent:
        # Never say which factor failed, not even in the log
        return AuditEvent(
            event_type=AuditEventType.LOGIN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            description="Login failed",
            details={"username": username},
            is_user_action=True,
        )

    @staticmethod
    def logout(user_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGOUT,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            description="User logged out",
            is_user_action=True,
        )

    @staticmethod
    def session_restored(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_RESTORED,
            entity_type="session",
            user_id=user_id,
            description="Session restored from cache",
        )

    @staticmethod
    def session_discarded(reason: str, user_id: Optional[str] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_DISCARDED,
            severity=AuditSeverity.WARNING,
            entity_type="session",
            user_id=user_id,
            description=f"Cached session discarded: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def session_refreshed(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_REFRESHED,
            entity_type="session",
            user_id=user_id,
            description="Session refreshed",
        )

    @staticmethod
    def profile_updated(user_id: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROFILE_UPDATED,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            description=f"Profile updated: {', '.join(fields) or 'no changes'}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def password_changed(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PASSWORD_CHANGED,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            description="Password changed",
            is_user_action=True,
        )

    @staticmethod
    def account_deleted(user_id: str, deleted_counts: dict[str, int]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            user_id=user_id,
            description="Account and all owned records deleted",
            details={"deleted": deleted_counts},
            is_user_action=True,
        )

    @staticmethod
    def transaction_created(
        user_id: str,
        transaction_id: str,
        amount: int,
        transaction_type: str,
        category_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            description=f"Transaction created: {transaction_type} {amount}",
            details={
                "amount": amount,
                "type": transaction_type,
                "category_id": category_id,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        user_id: str,
        transaction_id: str,
        fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            description=f"Transaction updated: {', '.join(fields) or 'no changes'}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(user_id: str, transaction_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id,
            description="Transaction soft-deleted",
            is_user_action=True,
        )

    @staticmethod
    def category_created(user_id: str, category_id: str, name: str, path: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_CREATED,
            entity_type="category",
            entity_id=category_id,
            user_id=user_id,
            description=f"Category created: {name}",
            details={"path": path},
            is_user_action=True,
        )

    @staticmethod
    def budget_created(user_id: str, budget_id: str, category_id: str, amount: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_CREATED,
            entity_type="budget",
            entity_id=budget_id,
            user_id=user_id,
            description=f"Budget created: {amount}",
            details={"category_id": category_id, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def budget_status_changed(user_id: str, budget_id: str, old: str, new: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_STATUS_CHANGED,
            entity_type="budget",
            entity_id=budget_id,
            user_id=user_id,
            description=f"Budget status changed: {old} -> {new}",
            details={"from": old, "to": new},
            is_user_action=True,
        )

    @staticmethod
    def budget_recalculated(
        user_id: str,
        budget_id: str,
        current_spent: int,
        remaining_amount: int,
        on_track: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_RECALCULATED,
            severity=AuditSeverity.INFO if on_track else AuditSeverity.WARNING,
            entity_type="budget",
            entity_id=budget_id,
            user_id=user_id,
            description=f"Budget recalculated: spent {current_spent}, remaining {remaining_amount}",
            details={
                "current_spent": current_spent,
                "remaining_amount": remaining_amount,
                "on_track": on_track,
            },
        )

    @staticmethod
    def validation_failed(
        entity_type: str,
        stage: str,
        issues: list[dict],
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            user_id=user_id,
            description=f"{stage.capitalize()} validation failed with {len(issues)} issues",
            details={"stage": stage, "issues": issues},
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
        )
