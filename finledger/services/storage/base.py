"""
Shared Object Storage Plumbing

Both storage implementations run every operation - single-record calls
included - through one transaction runner, so they share one set of
semantics:

- a single asyncio.Lock serializes all access to one storage instance
  (one writer at a time, so read-modify-write sequences inside a
  transaction cannot interleave with another caller)
- records are JSON round-tripped on the way in; what comes back out is a
  fresh copy the caller may mutate freely
- unknown stores/indexes, writes in readonly mode and use of a finished
  transaction raise StorageError
"""

import asyncio
import json
from abc import abstractmethod
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from finledger.services.storage.interface import (
    ObjectStorageInterface,
    Query,
    StorageError,
    StoreTransaction,
    TransactionAbortedError,
    TransactionMode,
)
from finledger.services.storage.schema import (
    DatabaseSchema,
    IndexSpec,
    KeyRange,
    StoreSchema,
    extract_key,
    is_valid_key,
    normalize_query_key,
)


T = TypeVar("T")

_logger = structlog.get_logger(__name__)


def serialize_record(store: StoreSchema, record: dict) -> tuple[Any, str]:
    """
    Validate a record and return (primary_key, json_body).

    Raises:
        StorageError: If the record is not a dict, lacks a valid primary
            key, or is not JSON-serializable
    """
    if not isinstance(record, dict):
        raise StorageError(f"Records in {store.name} must be dicts, got {type(record).__name__}")
    key = extract_key(record, store.key_path)
    if key is None:
        raise StorageError(f"Record in {store.name} has no valid '{store.key_path}' key")
    try:
        body = json.dumps(record, allow_nan=False, sort_keys=True)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Record in {store.name} is not JSON-serializable: {e}")
    return key, body


class BaseStoreTransaction(StoreTransaction):
    """
    Validation layer for transaction handles.

    Subclasses implement the underscore methods against their backend;
    they receive already-validated arguments.
    """

    def __init__(
        self,
        schema: DatabaseSchema,
        stores: tuple[str, ...],
        mode: TransactionMode,
    ):
        self.schema = schema
        self.stores = stores
        self.mode = mode
        self._active = True

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _insert(self, store: StoreSchema, key: Any, record: dict, body: str) -> None:
        pass

    @abstractmethod
    def _upsert(self, store: StoreSchema, key: Any, record: dict, body: str) -> None:
        pass

    @abstractmethod
    def _fetch(self, store: StoreSchema, key: Any) -> Optional[dict]:
        pass

    @abstractmethod
    def _remove(self, store: StoreSchema, key: Any) -> None:
        pass

    @abstractmethod
    def _fetch_all(self, store: StoreSchema) -> list[dict]:
        pass

    @abstractmethod
    def _fetch_equal(self, store: StoreSchema, index: IndexSpec, key: Any) -> list[dict]:
        pass

    @abstractmethod
    def _fetch_range(
        self,
        store: StoreSchema,
        index: Optional[IndexSpec],
        key_range: KeyRange,
    ) -> list[dict]:
        pass

    @abstractmethod
    def _count(
        self,
        store: StoreSchema,
        index: Optional[IndexSpec],
        query: Optional[Query],
    ) -> int:
        pass

    @abstractmethod
    def _commit(self) -> None:
        pass

    @abstractmethod
    def _rollback(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def finish(self, commit: bool) -> None:
        """Commit or roll back, then refuse any further use."""
        if not self._active:
            return
        self._active = False
        if commit:
            self._commit()
        else:
            self._rollback()

    def _store(self, name: str, write: bool = False) -> StoreSchema:
        if not self._active:
            raise StorageError("Transaction has already finished")
        if name not in self.stores:
            raise StorageError(f"Store '{name}' is not part of this transaction")
        if write and self.mode == "readonly":
            raise StorageError(f"Cannot write to '{name}' in a readonly transaction")
        store = self.schema.get_store(name)
        if store is None:
            raise StorageError(f"Unknown store: {name}")
        return store

    @staticmethod
    def _index(store: StoreSchema, name: str) -> IndexSpec:
        index = store.get_index(name)
        if index is None:
            raise StorageError(f"Store '{store.name}' has no index '{name}'")
        return index

    @staticmethod
    def _check_range(index: Optional[IndexSpec], key_range: KeyRange) -> None:
        """Compound ranges need full-width tuple bounds."""
        if index is None or not index.is_compound:
            return
        for bound in (key_range.lower, key_range.upper):
            if bound is None:
                continue
            if not isinstance(bound, tuple) or len(bound) != len(index.paths):
                raise StorageError(
                    f"Range over compound index '{index.name}' needs "
                    f"{len(index.paths)}-tuple bounds, got {bound!r}"
                )

    # ------------------------------------------------------------------
    # RecordAccessInterface
    # ------------------------------------------------------------------

    async def add(self, store: str, record: dict) -> Any:
        schema = self._store(store, write=True)
        key, body = serialize_record(schema, record)
        self._insert(schema, key, json.loads(body), body)
        return key

    async def update(self, store: str, record: dict) -> Any:
        schema = self._store(store, write=True)
        key, body = serialize_record(schema, record)
        self._upsert(schema, key, json.loads(body), body)
        return key

    async def get(self, store: str, key: Any) -> Optional[dict]:
        schema = self._store(store)
        if not is_valid_key(key):
            return None
        return self._fetch(schema, key)

    async def delete(self, store: str, key: Any) -> None:
        schema = self._store(store, write=True)
        if is_valid_key(key):
            self._remove(schema, key)

    async def get_all(self, store: str) -> list[dict]:
        return self._fetch_all(self._store(store))

    async def query_by_index(self, store: str, index: str, value: Any) -> list[dict]:
        schema = self._store(store)
        spec = self._index(schema, index)
        try:
            key = normalize_query_key(spec.key_path, value)
        except ValueError as e:
            raise StorageError(str(e))
        parts = key if isinstance(key, tuple) else (key,)
        if not all(is_valid_key(part) for part in parts):
            # None/invalid components are never indexed
            return []
        return self._fetch_equal(schema, spec, key)

    async def query_by_range(
        self,
        store: str,
        index: Optional[str],
        key_range: KeyRange,
    ) -> list[dict]:
        schema = self._store(store)
        spec = self._index(schema, index) if index is not None else None
        self._check_range(spec, key_range)
        return self._fetch_range(schema, spec, key_range)

    async def count(
        self,
        store: str,
        query: Optional[Query] = None,
        *,
        index: Optional[str] = None,
    ) -> int:
        schema = self._store(store)
        spec = self._index(schema, index) if index is not None else None
        if isinstance(query, KeyRange):
            self._check_range(spec, query)
        elif query is not None and spec is not None:
            try:
                query = normalize_query_key(spec.key_path, query)
            except ValueError as e:
                raise StorageError(str(e))
        return self._count(schema, spec, query)


class BaseObjectStorage(ObjectStorageInterface):
    """
    Transaction runner shared by the storage implementations.

    Every public record call opens a one-store transaction, so a single
    add/update/delete is atomic and serialized like any multi-store batch.
    """

    def __init__(self, schema: DatabaseSchema):
        self._schema = schema
        self._lock = asyncio.Lock()

    @property
    def schema(self) -> DatabaseSchema:
        return self._schema

    @abstractmethod
    def _begin(self, stores: tuple[str, ...], mode: TransactionMode) -> BaseStoreTransaction:
        pass

    def _require_open(self) -> None:
        if not self.is_initialized:
            raise StorageError("Storage is not initialized; call init() first")

    async def _run(
        self,
        stores: list[str],
        mode: TransactionMode,
        operations: Callable[[StoreTransaction], Awaitable[T]],
        wrap_errors: bool,
    ) -> T:
        self._require_open()
        if mode not in ("readonly", "readwrite"):
            raise StorageError(f"Invalid transaction mode: {mode}")
        names = tuple(dict.fromkeys(stores))
        for name in names:
            if self._schema.get_store(name) is None:
                raise StorageError(f"Unknown store: {name}")

        async with self._lock:
            try:
                tx = self._begin(names, mode)
                try:
                    result = await operations(tx)
                except BaseException:
                    tx.finish(commit=False)
                    raise
                tx.finish(commit=True)
            except StorageError as e:
                if not wrap_errors:
                    raise
                _logger.warning(
                    "storage_transaction_aborted",
                    stores=list(names),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise TransactionAbortedError(
                    f"Transaction over {', '.join(names)} aborted: {e}",
                    cause=e,
                ) from e
            return result

    async def execute_transaction(
        self,
        stores: list[str],
        operations: Callable[[StoreTransaction], Awaitable[T]],
        mode: TransactionMode = "readwrite",
    ) -> T:
        return await self._run(stores, mode, operations, wrap_errors=True)

    async def add(self, store: str, record: dict) -> Any:
        return await self._run(
            [store], "readwrite", lambda tx: tx.add(store, record), wrap_errors=False
        )

    async def update(self, store: str, record: dict) -> Any:
        return await self._run(
            [store], "readwrite", lambda tx: tx.update(store, record), wrap_errors=False
        )

    async def get(self, store: str, key: Any) -> Optional[dict]:
        return await self._run(
            [store], "readonly", lambda tx: tx.get(store, key), wrap_errors=False
        )

    async def delete(self, store: str, key: Any) -> None:
        await self._run(
            [store], "readwrite", lambda tx: tx.delete(store, key), wrap_errors=False
        )

    async def get_all(self, store: str) -> list[dict]:
        return await self._run(
            [store], "readonly", lambda tx: tx.get_all(store), wrap_errors=False
        )

    async def query_by_index(self, store: str, index: str, value: Any) -> list[dict]:
        return await self._run(
            [store],
            "readonly",
            lambda tx: tx.query_by_index(store, index, value),
            wrap_errors=False,
        )

    async def query_by_range(
        self,
        store: str,
        index: Optional[str],
        key_range: KeyRange,
    ) -> list[dict]:
        return await self._run(
            [store],
            "readonly",
            lambda tx: tx.query_by_range(store, index, key_range),
            wrap_errors=False,
        )

    async def count(
        self,
        store: str,
        query: Optional[Query] = None,
        *,
        index: Optional[str] = None,
    ) -> int:
        return await self._run(
            [store],
            "readonly",
            lambda tx: tx.count(store, query, index=index),
            wrap_errors=False,
        )


__all__ = [
    "BaseObjectStorage",
    "BaseStoreTransaction",
    "serialize_record",
]
