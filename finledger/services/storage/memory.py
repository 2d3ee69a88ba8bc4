"""
In-memory Object Storage

Dict-backed implementation with the same semantics as the SQLite one.
Used by the test-suite and by throwaway sessions (FINLEDGER_STORAGE_BACKEND=memory).

A transaction works on shallow copies of the per-store dicts it declared;
commit swaps them in, rollback just drops them. Records are only ever
replaced, never mutated in place, so shallow copies are enough.
"""

import copy
from typing import Any, Optional

import structlog

from finledger.services.storage.base import BaseObjectStorage, BaseStoreTransaction
from finledger.services.storage.interface import (
    ConstraintError,
    Query,
    StorageError,
    TransactionMode,
)
from finledger.services.storage.schema import (
    FINANCE_SCHEMA,
    DatabaseSchema,
    IndexSpec,
    KeyRange,
    StoreSchema,
    comparable,
    extract_key,
    is_valid_key,
)


logger = structlog.get_logger(__name__)


class _MemoryTransaction(BaseStoreTransaction):

    def __init__(
        self,
        storage: "MemoryObjectStorage",
        stores: tuple[str, ...],
        mode: TransactionMode,
    ):
        super().__init__(storage.schema, stores, mode)
        self._storage = storage
        self._working = {name: dict(storage._data[name]) for name in stores}

    def _check_unique(self, store: StoreSchema, key: Any, record: dict) -> None:
        rows = self._working[store.name]
        for index in store.indexes:
            if not index.unique:
                continue
            value = extract_key(record, index.key_path)
            if value is None:
                continue
            for other_key, other in rows.items():
                if other_key != key and extract_key(other, index.key_path) == value:
                    raise ConstraintError(
                        f"Unique index '{index.name}' on {store.name} already has {value!r}"
                    )

    def _insert(self, store: StoreSchema, key: Any, record: dict, body: str) -> None:
        rows = self._working[store.name]
        if key in rows:
            raise ConstraintError(f"Key {key!r} already exists in {store.name}")
        self._check_unique(store, key, record)
        rows[key] = record

    def _upsert(self, store: StoreSchema, key: Any, record: dict, body: str) -> None:
        self._check_unique(store, key, record)
        self._working[store.name][key] = record

    def _fetch(self, store: StoreSchema, key: Any) -> Optional[dict]:
        record = self._working[store.name].get(key)
        return copy.deepcopy(record) if record is not None else None

    def _remove(self, store: StoreSchema, key: Any) -> None:
        self._working[store.name].pop(key, None)

    def _fetch_all(self, store: StoreSchema) -> list[dict]:
        rows = self._working[store.name]
        return [copy.deepcopy(rows[key]) for key in sorted(rows, key=comparable)]

    def _keyed(self, store: StoreSchema, index: Optional[IndexSpec]) -> list[tuple[Any, Any, dict]]:
        """(index_key, primary_key, record) for every indexed record."""
        entries = []
        for key, record in self._working[store.name].items():
            index_key = key if index is None else extract_key(record, index.key_path)
            if index_key is not None:
                entries.append((index_key, key, record))
        entries.sort(key=lambda entry: (comparable(entry[0]), comparable(entry[1])))
        return entries

    def _fetch_equal(self, store: StoreSchema, index: IndexSpec, key: Any) -> list[dict]:
        return [
            copy.deepcopy(record)
            for index_key, _, record in self._keyed(store, index)
            if index_key == key
        ]

    def _fetch_range(
        self,
        store: StoreSchema,
        index: Optional[IndexSpec],
        key_range: KeyRange,
    ) -> list[dict]:
        return [
            copy.deepcopy(record)
            for index_key, _, record in self._keyed(store, index)
            if key_range.includes(index_key)
        ]

    def _count(
        self,
        store: StoreSchema,
        index: Optional[IndexSpec],
        query: Optional[Query],
    ) -> int:
        if query is None:
            if index is None:
                return len(self._working[store.name])
            return len(self._keyed(store, index))
        if isinstance(query, KeyRange):
            return sum(1 for entry in self._keyed(store, index) if query.includes(entry[0]))
        parts = query if isinstance(query, tuple) else (query,)
        if not all(is_valid_key(part) for part in parts):
            return 0
        return sum(1 for entry in self._keyed(store, index) if entry[0] == query)

    def _commit(self) -> None:
        if self.mode == "readwrite":
            self._storage._data.update(self._working)
        self._working = {}

    def _rollback(self) -> None:
        self._working = {}


class MemoryObjectStorage(BaseObjectStorage):
    """
    Object storage held in process memory.

    Data survives close()/init() on the same instance and is lost when
    the instance goes away or delete_database() is called.
    """

    def __init__(self, schema: DatabaseSchema = FINANCE_SCHEMA):
        super().__init__(schema)
        self._data: dict[str, dict[Any, dict]] = {}
        self._open = False

    @property
    def is_initialized(self) -> bool:
        return self._open

    async def init(self) -> "MemoryObjectStorage":
        if self._open:
            return self
        for name in self.schema.store_names:
            self._data.setdefault(name, {})
        self._open = True
        logger.debug(
            "storage_opened",
            backend="memory",
            database=self.schema.name,
            version=self.schema.version,
        )
        return self

    def _begin(self, stores: tuple[str, ...], mode: TransactionMode) -> _MemoryTransaction:
        return _MemoryTransaction(self, stores, mode)

    async def clear(self, store: str) -> None:
        self._require_open()
        if self.schema.get_store(store) is None:
            raise StorageError(f"Unknown store: {store}")
        async with self._lock:
            self._data[store] = {}

    async def close(self) -> None:
        self._open = False

    async def delete_database(self) -> None:
        async with self._lock:
            self._data = {}
            self._open = False
        logger.info("storage_deleted", backend="memory", database=self.schema.name)
