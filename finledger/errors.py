"""
Domain Error Taxonomy

Every failure a service can produce is one of these types, so the
presentation layer can decide how to render it without parsing messages.

Storage-level failures (StorageError and friends) live in
finledger.services.storage and propagate unchanged unless a service
maps them to something more specific.
"""

from typing import Optional


INVALID_CREDENTIALS_MESSAGE = "Invalid username or password"
SESSION_EXPIRED_MESSAGE = "Your session has expired. Please log in again."
ACCESS_DENIED_MESSAGE = "Access denied. Insufficient permissions."


class FinanceError(Exception):
    """Base class for all domain errors."""

    code = "finance_error"


class ValidationError(FinanceError):
    """Missing or malformed input."""

    code = "validation_error"

    def __init__(self, message: str, issues: Optional[list[dict]] = None):
        super().__init__(message)
        self.issues = issues or []


class ConflictError(FinanceError):
    """Uniqueness violation (username or email already taken)."""

    code = "conflict"


class AuthenticationError(FinanceError):
    """
    Bad credentials.

    The message is deliberately generic: it never says whether the
    username or the password was wrong.
    """

    code = "authentication_failed"

    def __init__(self, message: str = INVALID_CREDENTIALS_MESSAGE):
        super().__init__(message)


class AuthorizationError(FinanceError):
    """Record exists but belongs to someone else, or the role lacks a permission."""

    code = "access_denied"

    def __init__(self, message: str = ACCESS_DENIED_MESSAGE):
        super().__init__(message)


class SessionExpiredError(FinanceError):
    """No session, or the session expired before a privileged call."""

    code = "session_expired"

    def __init__(self, message: str = SESSION_EXPIRED_MESSAGE):
        super().__init__(message)


class NotFoundError(FinanceError):
    """Referenced record does not exist."""

    code = "not_found"
