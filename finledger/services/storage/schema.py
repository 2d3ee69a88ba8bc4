"""
Object Store Schema

Declares the stores, primary keys and secondary indexes of the finance
database, plus the key helpers every storage implementation shares.

Index semantics mirror browser object stores:
- key paths are dotted ("period.start_date") and may be compound (a tuple)
- a record whose key path is missing or None (any component, for compound
  paths) is simply not part of that index
- valid keys are strings, numbers and booleans; numbers sort before strings
"""

import math
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, model_validator


KeyPath = Union[str, tuple[str, ...]]


class Stores:
    """Store names."""

    USERS = "users"
    TRANSACTIONS = "transactions"
    CATEGORIES = "categories"
    BUDGETS = "budgets"
    GOALS = "goals"
    RECURRING_TRANSACTIONS = "recurring_transactions"
    FINANCIAL_HEALTH_SCORES = "financial_health_scores"

    # Stores whose rows carry a user_id owner (cascade on account deletion)
    OWNED = (
        TRANSACTIONS,
        CATEGORIES,
        BUDGETS,
        GOALS,
        RECURRING_TRANSACTIONS,
        FINANCIAL_HEALTH_SCORES,
    )


# =============================================================================
# KEYS
# =============================================================================

def is_valid_key(value: Any) -> bool:
    """Check whether a value can be used as an index or primary key."""
    if isinstance(value, bool) or isinstance(value, (int, str)):
        return True
    if isinstance(value, float):
        return not math.isnan(value)
    return False


def resolve_path(record: dict, path: str) -> Any:
    """Follow a dotted path into nested dicts. Missing segments give None."""
    value: Any = record
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def extract_key(record: dict, key_path: KeyPath) -> Any:
    """
    Compute a record's key for a key path.

    Returns None when the record is not part of the index.
    """
    if isinstance(key_path, tuple):
        parts = tuple(resolve_path(record, path) for path in key_path)
        if not all(is_valid_key(part) for part in parts):
            return None
        return parts
    value = resolve_path(record, key_path)
    return value if is_valid_key(value) else None


def normalize_query_key(key_path: KeyPath, value: Any) -> Any:
    """Coerce a caller-supplied key to the shape extract_key() produces."""
    if isinstance(key_path, tuple):
        if not isinstance(value, (tuple, list)) or len(value) != len(key_path):
            raise ValueError(
                f"Compound key needs {len(key_path)} components, got {value!r}"
            )
        return tuple(value)
    return value


def _rank(value: Any) -> tuple:
    if isinstance(value, str):
        return (1, value)
    return (0, value)


def comparable(key: Any) -> tuple:
    """Total ordering across mixed key types (numbers before strings)."""
    if isinstance(key, tuple):
        return tuple(_rank(part) for part in key)
    return _rank(key)


class KeyRange(BaseModel):
    """
    Inclusive/exclusive bounds over an index.

    Use the constructors rather than the fields directly:
        KeyRange.only("2025-01")
        KeyRange.bound("2025-01-01", "2025-01-31")
        KeyRange.lower_bound(100, open=True)
    """

    model_config = ConfigDict(frozen=True)

    lower: Any = None
    upper: Any = None
    lower_open: bool = False
    upper_open: bool = False

    @model_validator(mode='after')
    def validate_bounds(self) -> 'KeyRange':
        if self.lower is None and self.upper is None:
            raise ValueError("A key range needs at least one bound")
        if self.lower is not None and self.upper is not None:
            if comparable(self.lower) > comparable(self.upper):
                raise ValueError("Lower bound is greater than upper bound")
        return self

    @classmethod
    def only(cls, value: Any) -> 'KeyRange':
        return cls(lower=value, upper=value)

    @classmethod
    def bound(
        cls,
        lower: Any,
        upper: Any,
        lower_open: bool = False,
        upper_open: bool = False,
    ) -> 'KeyRange':
        return cls(lower=lower, upper=upper, lower_open=lower_open, upper_open=upper_open)

    @classmethod
    def lower_bound(cls, value: Any, open: bool = False) -> 'KeyRange':
        return cls(lower=value, lower_open=open)

    @classmethod
    def upper_bound(cls, value: Any, open: bool = False) -> 'KeyRange':
        return cls(upper=value, upper_open=open)

    def includes(self, key: Any) -> bool:
        """Check whether a key falls inside the range."""
        if key is None:
            return False
        probe = comparable(key)
        if self.lower is not None:
            low = comparable(self.lower)
            if probe < low or (self.lower_open and probe == low):
                return False
        if self.upper is not None:
            high = comparable(self.upper)
            if probe > high or (self.upper_open and probe == high):
                return False
        return True


# =============================================================================
# SCHEMA
# =============================================================================

class IndexSpec(BaseModel):
    """A secondary index over one or more key paths."""

    model_config = ConfigDict(frozen=True)

    name: str
    key_path: KeyPath
    unique: bool = False

    @property
    def paths(self) -> tuple[str, ...]:
        if isinstance(self.key_path, tuple):
            return self.key_path
        return (self.key_path,)

    @property
    def is_compound(self) -> bool:
        return isinstance(self.key_path, tuple)


class StoreSchema(BaseModel):
    """A named record collection with its primary key and indexes."""

    model_config = ConfigDict(frozen=True)

    name: str
    key_path: str = "id"
    indexes: tuple[IndexSpec, ...] = ()

    def get_index(self, name: str) -> Optional[IndexSpec]:
        for index in self.indexes:
            if index.name == name:
                return index
        return None


class DatabaseSchema(BaseModel):
    """A versioned set of stores."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: int
    stores: tuple[StoreSchema, ...]

    def get_store(self, name: str) -> Optional[StoreSchema]:
        for store in self.stores:
            if store.name == name:
                return store
        return None

    @property
    def store_names(self) -> tuple[str, ...]:
        return tuple(store.name for store in self.stores)


def _index(name: str, key_path: Optional[KeyPath] = None, unique: bool = False) -> IndexSpec:
    return IndexSpec(name=name, key_path=key_path or name, unique=unique)


DATABASE_NAME = "finledger"
DATABASE_VERSION = 1

FINANCE_SCHEMA = DatabaseSchema(
    name=DATABASE_NAME,
    version=DATABASE_VERSION,
    stores=(
        StoreSchema(
            name=Stores.USERS,
            indexes=(
                _index("username", unique=True),
                _index("email", unique=True),
                _index("created_at"),
                _index("last_login_at"),
            ),
        ),
        StoreSchema(
            name=Stores.TRANSACTIONS,
            indexes=(
                _index("user_id"),
                _index("date"),
                _index("category_id"),
                _index("type"),
                _index("amount"),
                _index("user_id_date", ("user_id", "date")),
                _index("user_id_category_id", ("user_id", "category_id")),
                _index("user_id_type_date", ("user_id", "type", "date")),
                _index("is_recurring"),
                _index("status"),
            ),
        ),
        StoreSchema(
            name=Stores.CATEGORIES,
            indexes=(
                _index("user_id"),
                _index("parent_id"),
                _index("path"),
                _index("level"),
                _index("user_id_parent_id", ("user_id", "parent_id")),
                _index("user_id_type", ("user_id", "type")),
                _index("is_system"),
                _index("is_active"),
            ),
        ),
        StoreSchema(
            name=Stores.BUDGETS,
            indexes=(
                _index("user_id"),
                _index("category_id"),
                _index("user_id_category_id", ("user_id", "category_id")),
                _index("period_start_date", "period.start_date"),
                _index("period_end_date", "period.end_date"),
                _index("status"),
                _index("is_template"),
            ),
        ),
        StoreSchema(
            name=Stores.GOALS,
            indexes=(
                _index("user_id"),
                _index("target_date"),
                _index("priority"),
                _index("category"),
                _index("status"),
                _index("user_id_status", ("user_id", "status")),
                _index("user_id_category", ("user_id", "category")),
            ),
        ),
        StoreSchema(
            name=Stores.RECURRING_TRANSACTIONS,
            indexes=(
                _index("user_id"),
                _index("schedule_next_due_date", "schedule.next_due_date"),
                _index("status"),
                _index("automation_auto_generate", "automation.auto_generate"),
                _index("user_id_status", ("user_id", "status")),
            ),
        ),
        StoreSchema(
            name=Stores.FINANCIAL_HEALTH_SCORES,
            indexes=(
                _index("user_id"),
                _index("calculation_calculated_at", "calculation.calculated_at"),
                _index("overall_score"),
                _index(
                    "user_id_calculated_at",
                    ("user_id", "calculation.calculated_at"),
                ),
            ),
        ),
    ),
)
