"""Services package."""

from finledger.services.cache import (
    CacheError,
    CacheKeys,
    FileKeyValueCache,
    KeyValueCacheInterface,
    MemoryKeyValueCache,
)
from finledger.services.storage import (
    ConnectionError,
    ConstraintError,
    KeyRange,
    MemoryObjectStorage,
    ObjectStorageInterface,
    SQLiteObjectStorage,
    StorageError,
    Stores,
    StoreTransaction,
    TransactionAbortedError,
)

__all__ = [
    # Cache
    "CacheError",
    "CacheKeys",
    "FileKeyValueCache",
    "KeyValueCacheInterface",
    "MemoryKeyValueCache",
    # Storage
    "ConnectionError",
    "ConstraintError",
    "KeyRange",
    "MemoryObjectStorage",
    "ObjectStorageInterface",
    "SQLiteObjectStorage",
    "StorageError",
    "Stores",
    "StoreTransaction",
    "TransactionAbortedError",
]
