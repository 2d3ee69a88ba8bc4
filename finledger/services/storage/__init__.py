"""
Storage Services Package

Provides the abstract object-storage interface, the finance schema, and
two interchangeable implementations (SQLite and in-memory).
"""

from finledger.services.storage.interface import (
    ConnectionError,
    ConstraintError,
    ObjectStorageInterface,
    Query,
    RecordAccessInterface,
    StorageError,
    StoreTransaction,
    TransactionAbortedError,
    TransactionMode,
)
from finledger.services.storage.schema import (
    DATABASE_NAME,
    DATABASE_VERSION,
    FINANCE_SCHEMA,
    DatabaseSchema,
    IndexSpec,
    KeyRange,
    StoreSchema,
    Stores,
)
from finledger.services.storage.memory import MemoryObjectStorage
from finledger.services.storage.sqlite import SQLiteObjectStorage

__all__ = [
    # Interfaces
    "ObjectStorageInterface",
    "Query",
    "RecordAccessInterface",
    "StoreTransaction",
    "TransactionMode",
    # Schema
    "DATABASE_NAME",
    "DATABASE_VERSION",
    "FINANCE_SCHEMA",
    "DatabaseSchema",
    "IndexSpec",
    "KeyRange",
    "StoreSchema",
    "Stores",
    # Exceptions
    "ConnectionError",
    "ConstraintError",
    "StorageError",
    "TransactionAbortedError",
    # Implementations
    "MemoryObjectStorage",
    "SQLiteObjectStorage",
]
