"""Identity and session management."""

from finledger.identity.defaults import (
    DEFAULT_EXPENSE_CATEGORIES,
    DEFAULT_INCOME_CATEGORIES,
    build_default_categories,
    slugify,
)
from finledger.identity.manager import IdentityManager
from finledger.identity.passwords import PasswordHasher

__all__ = [
    "DEFAULT_EXPENSE_CATEGORIES",
    "DEFAULT_INCOME_CATEGORIES",
    "IdentityManager",
    "PasswordHasher",
    "build_default_categories",
    "slugify",
]
