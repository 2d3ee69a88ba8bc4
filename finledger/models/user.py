"""
Identity Models

User records as stored, the sanitized view handed to callers, and the
session objects kept in the durable cache.

CRITICAL: password_hash and password_salt exist ONLY on User.
Everything returned to a caller goes through User.to_public().
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from finledger.models.common import new_id, utc_now


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    """
    Role tiers.

    Each role maps to a fixed permission set (see ROLE_PERMISSIONS).
    """
    PERSONAL = "personal"
    EXECUTIVE = "executive"
    ADMIN = "admin"


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"


ROLE_PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.PERSONAL: [
        "transactions:read",
        "transactions:write",
        "categories:read",
        "categories:write",
        "budgets:read",
        "budgets:write",
        "goals:read",
        "goals:write",
        "reports:read",
        "export:basic",
    ],
    UserRole.EXECUTIVE: [
        "transactions:read",
        "transactions:write",
        "categories:read",
        "categories:write",
        "budgets:read",
        "budgets:write",
        "goals:read",
        "goals:write",
        "reports:read",
        "reports:advanced",
        "analytics:read",
        "simulation:read",
        "export:advanced",
        "management:read",
    ],
    UserRole.ADMIN: [
        "all:read",
        "all:write",
        "all:delete",
        "system:admin",
    ],
}


def default_permissions(role: UserRole) -> list[str]:
    return list(ROLE_PERMISSIONS.get(role, ROLE_PERMISSIONS[UserRole.PERSONAL]))


def permission_granted(permissions: list[str], required: str) -> bool:
    """
    Check a "resource:action" permission, honouring all:<action> wildcards.
    """
    if required in permissions:
        return True
    _, _, action = required.partition(":")
    return bool(action) and f"all:{action}" in permissions


# =============================================================================
# USER
# =============================================================================

class NotificationPreferences(BaseModel):
    budget_alerts: bool = True
    goal_reminders: bool = True
    bill_reminders: bool = True
    weekly_reports: bool = False
    monthly_reports: bool = True


class PrivacyPreferences(BaseModel):
    data_retention: int = Field(default=365, ge=1, description="Days")
    auto_backup: bool = True
    encryption_enabled: bool = True


class UserPreferences(BaseModel):
    """Display and notification preferences, also mirrored in the cache."""

    currency: str = Field(default="IDR", min_length=3, max_length=3)
    locale: str = "id-ID"
    theme: Theme = Theme.DARK
    date_format: str = "dd/MM/yyyy"
    number_format: str = "id-ID"
    timezone: str = "Asia/Jakarta"
    default_dashboard_tab: str = "overview"
    dashboard_layout: dict[str, Any] = Field(default_factory=dict)
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    privacy: PrivacyPreferences = Field(default_factory=PrivacyPreferences)


class UserSecurity(BaseModel):
    session_timeout_minutes: int = Field(default=60, ge=1)
    require_reauth: bool = False
    two_factor_enabled: bool = False


class UserState(BaseModel):
    is_first_login: bool = True
    onboarding_completed: bool = False
    last_backup_date: Optional[datetime] = None
    data_version: str = "1.0"


class PublicUser(BaseModel):
    """
    A user as returned to callers.

    There is no field for the hash or salt, so they cannot leak.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    username: str
    email: Optional[EmailStr] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: UserRole = UserRole.PERSONAL
    permissions: list[str] = Field(default_factory=list)
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    security: UserSecurity = Field(default_factory=UserSecurity)
    state: UserState = Field(default_factory=UserState)
    created_at: datetime
    updated_at: datetime
    last_login_at: Optional[datetime] = None

    def has_permission(self, permission: str) -> bool:
        return permission_granted(self.permissions, permission)


class User(PublicUser):
    """A user record as stored in the users store."""

    id: str = Field(default_factory=new_id)
    password_hash: str
    password_salt: str = Field(
        ...,
        description=(
            "Hex copy of the salt embedded in password_hash. "
            "Informational only: verification reads the hash string, never this field"
        )
    )
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def to_record(self) -> dict:
        return self.model_dump(mode="json")

    def to_public(self) -> PublicUser:
        return PublicUser.model_validate(
            self.model_dump(exclude={"password_hash", "password_salt"})
        )


# =============================================================================
# SESSION
# =============================================================================

class Session(BaseModel):
    """
    Ephemeral proof of authentication, kept in the durable cache only.

    Valid iff the current time is before expires_at.
    """

    user_id: str
    session_token: str = Field(..., min_length=32)
    expires_at: datetime
    last_activity: datetime

    @classmethod
    def issue(cls, user_id: str, token: str, now: datetime, timeout_minutes: int) -> "Session":
        return cls(
            user_id=user_id,
            session_token=token,
            expires_at=now + timedelta(minutes=timeout_minutes),
            last_activity=now,
        )

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at

    def descriptor(self) -> "SessionDescriptor":
        return SessionDescriptor(token=self.session_token, expires_at=self.expires_at)


class SessionDescriptor(BaseModel):
    """What a caller gets to see of a session."""

    token: str
    expires_at: datetime


class LoginResult(BaseModel):
    user: PublicUser
    session: SessionDescriptor
