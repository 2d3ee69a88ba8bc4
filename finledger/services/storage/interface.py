"""
Abstract Object Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the same business logic on SQLite or a pure in-memory store
2. Use the in-memory store for testing without touching the filesystem
3. Keep business logic decoupled from storage implementation

The model is a transactional key-value object store: named stores hold
JSON-compatible dict records addressed by a primary key, with secondary
(possibly compound, possibly unique) indexes. The layer is invariant-agnostic:
ownership, usage statistics and budget tracking are enforced above it.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Literal, Optional, TypeVar, Union

from finledger.services.storage.schema import KeyRange


TransactionMode = Literal["readonly", "readwrite"]

T = TypeVar("T")

# A query is either an exact key (scalar or tuple for compound indexes)
# or a KeyRange.
Query = Union[KeyRange, Any]


class RecordAccessInterface(ABC):
    """
    Record-level operations shared by the storage itself and by
    the handle passed into a multi-store transaction.
    """

    @abstractmethod
    async def add(self, store: str, record: dict) -> Any:
        """
        Insert a new record.

        Returns:
            The record's primary key

        Raises:
            ConstraintError: If the primary key or a unique index value exists
            StorageError: If the record cannot be stored
        """
        pass

    @abstractmethod
    async def update(self, store: str, record: dict) -> Any:
        """
        Insert-or-replace a record by primary key.

        Returns:
            The record's primary key

        Raises:
            ConstraintError: If a unique index value belongs to another record
        """
        pass

    @abstractmethod
    async def get(self, store: str, key: Any) -> Optional[dict]:
        """
        Retrieve a record by primary key.

        Returns:
            The record if found, None otherwise (never raises for "not found")
        """
        pass

    @abstractmethod
    async def delete(self, store: str, key: Any) -> None:
        """Delete a record by primary key. Deleting a missing key is a no-op."""
        pass

    @abstractmethod
    async def get_all(self, store: str) -> list[dict]:
        """Return every record in the store, ordered by primary key."""
        pass

    @abstractmethod
    async def query_by_index(self, store: str, index: str, value: Any) -> list[dict]:
        """
        Return all records whose indexed field(s) equal value.

        For compound indexes, value is a tuple with one entry per key path.
        """
        pass

    @abstractmethod
    async def query_by_range(
        self,
        store: str,
        index: Optional[str],
        key_range: KeyRange,
    ) -> list[dict]:
        """
        Return all records whose index key falls within key_range.

        Pass index=None to range over the primary key.
        """
        pass

    @abstractmethod
    async def count(
        self,
        store: str,
        query: Optional[Query] = None,
        *,
        index: Optional[str] = None,
    ) -> int:
        """
        Count records, optionally filtered.

        Args:
            store: Store name
            query: None for all records, an exact key, or a KeyRange
            index: Index the query applies to (primary key when None)
        """
        pass


class StoreTransaction(RecordAccessInterface):
    """
    Handle passed to the operations of execute_transaction().

    Only the stores declared when the transaction was opened are
    reachable, and writes are refused in readonly mode.
    """

    stores: tuple[str, ...]
    mode: TransactionMode


class ObjectStorageInterface(RecordAccessInterface):
    """
    Abstract interface for the object store.

    Any storage implementation (SQLite, in-memory, ...) must implement
    these methods. Single-record calls are individually atomic;
    execute_transaction() is the only way to make several writes atomic.
    """

    @abstractmethod
    async def init(self) -> "ObjectStorageInterface":
        """
        Open (or upgrade) the database to the target schema version.

        Idempotent: repeated calls return the same live handle without
        reopening. Missing stores/indexes are created; data is never dropped.

        Raises:
            ConnectionError: If the underlying engine refuses to open
        """
        pass

    @property
    @abstractmethod
    def is_initialized(self) -> bool:
        pass

    @abstractmethod
    async def execute_transaction(
        self,
        stores: list[str],
        operations: Callable[[StoreTransaction], Awaitable[T]],
        mode: TransactionMode = "readwrite",
    ) -> T:
        """
        Run operations against several stores with all-or-nothing visibility.

        Args:
            stores: Stores the operations may touch
            operations: Async callable receiving the transaction handle
            mode: 'readonly' or 'readwrite'

        Returns:
            Whatever operations returns

        Raises:
            TransactionAbortedError: If a storage operation failed (the
                original error is available as .cause)
            Any exception raised by operations itself, after rollback
        """
        pass

    @abstractmethod
    async def clear(self, store: str) -> None:
        """Remove every record from a store. Test setup and account deletion only."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the connection. init() may be called again afterwards."""
        pass

    @abstractmethod
    async def delete_database(self) -> None:
        """Drop every store and close. Destructive."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConstraintError(StorageError):
    """Primary key or unique index value already exists."""
    pass


class ConnectionError(StorageError):
    """Could not open the storage backend."""
    pass


class TransactionAbortedError(StorageError):
    """A multi-store transaction was rolled back."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
