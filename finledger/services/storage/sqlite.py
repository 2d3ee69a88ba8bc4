"""
SQLite Object Storage Implementation

DESIGN DECISION: Each store is one SQLite table:
- pk:    the record's primary key
- body:  the full record as JSON
- k_*:   one column per index key path ("period.start_date" -> k_period__start_date)

Secondary, compound and unique indexes are real SQL indexes over the k_*
columns, so uniqueness is enforced by the engine rather than by a
query-then-insert check.

The k_* columns are declared BLOB, which gives them no type affinity:
SQLite stores numbers as numbers and strings as strings and orders them
numbers-first, the same order the in-memory store uses. A record whose
key path is missing (or not a valid key) gets NULL there, and NULLs are
never matched by equality/range queries and never collide in unique
indexes.

TRADEOFFS:
- SQLAlchemy Core is synchronous; calls block the event loop briefly.
  Fine for a single local user.
- Schema upgrades only add (tables, columns, indexes); nothing is dropped.
"""

import json
from pathlib import Path
from typing import Any, Optional

import sqlalchemy as sa
import structlog
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import UserDefinedType
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finledger.services.storage.base import BaseObjectStorage, BaseStoreTransaction
from finledger.services.storage.interface import (
    ConnectionError as StorageConnectionError,
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
    is_valid_key,
    resolve_path,
)


logger = structlog.get_logger(__name__)

VERSION_TABLE = "_finledger_schema"


class KeyValue(UserDefinedType):
    """Column type without affinity: values are stored exactly as bound."""

    cache_ok = True

    def get_col_spec(self, **kw) -> str:
        return "BLOB"


def column_name(path: str) -> str:
    return "k_" + path.replace(".", "__")


def _literal(value: Any):
    return sa.literal(value, type_=KeyValue())


class _StoreTable:
    """A store's table plus the key-path -> column mapping."""

    def __init__(self, store: StoreSchema, metadata: sa.MetaData):
        self.store = store
        self.paths: list[str] = []
        for index in store.indexes:
            for path in index.paths:
                if path not in self.paths:
                    self.paths.append(path)

        columns = [
            sa.Column("pk", KeyValue(), primary_key=True),
            sa.Column("body", sa.Text(), nullable=False),
        ]
        columns.extend(sa.Column(column_name(path), KeyValue(), nullable=True) for path in self.paths)
        self.table = sa.Table(store.name, metadata, *columns)

        for index in store.indexes:
            sa.Index(
                f"ix_{store.name}_{index.name}",
                *[self.table.c[column_name(path)] for path in index.paths],
                unique=index.unique,
            )

    def columns_for(self, index: Optional[IndexSpec]) -> list[sa.Column]:
        if index is None:
            return [self.table.c.pk]
        return [self.table.c[column_name(path)] for path in index.paths]

    def row(self, key: Any, record: dict, body: str) -> dict:
        values = {"pk": key, "body": body}
        for path in self.paths:
            value = resolve_path(record, path)
            values[column_name(path)] = value if is_valid_key(value) else None
        return values


class _SQLiteTransaction(BaseStoreTransaction):

    def __init__(
        self,
        storage: "SQLiteObjectStorage",
        stores: tuple[str, ...],
        mode: TransactionMode,
    ):
        super().__init__(storage.schema, stores, mode)
        self._tables = storage._tables
        try:
            self._conn: Connection = storage._engine.connect()
            self._trans = self._conn.begin()
        except SQLAlchemyError as e:
            raise StorageError(f"Could not start transaction: {e}")

    def _execute(self, statement):
        try:
            return self._conn.execute(statement)
        except IntegrityError as e:
            raise ConstraintError(f"Constraint violated: {e.orig}")
        except SQLAlchemyError as e:
            raise StorageError(f"Storage operation failed: {e}")

    def _select(self, store: StoreSchema, index: Optional[IndexSpec], where: list) -> list[dict]:
        handle = self._tables[store.name]
        columns = handle.columns_for(index)
        statement = (
            sa.select(handle.table.c.body)
            .where(*[column.is_not(None) for column in columns], *where)
            .order_by(*columns, handle.table.c.pk)
        )
        return [json.loads(row.body) for row in self._execute(statement)]

    def _range_clauses(self, columns: list[sa.Column], key_range: KeyRange) -> list:
        if len(columns) == 1:
            target = columns[0]
            wrap = _literal
        else:
            target = sa.tuple_(*columns)
            wrap = lambda bound: sa.tuple_(*[_literal(part) for part in bound])  # noqa: E731

        clauses = []
        if key_range.lower is not None:
            lower = wrap(key_range.lower)
            clauses.append(target > lower if key_range.lower_open else target >= lower)
        if key_range.upper is not None:
            upper = wrap(key_range.upper)
            clauses.append(target < upper if key_range.upper_open else target <= upper)
        return clauses

    def _equal_clauses(self, columns: list[sa.Column], key: Any) -> list:
        parts = key if isinstance(key, tuple) else (key,)
        return [column == _literal(part) for column, part in zip(columns, parts)]

    # ------------------------------------------------------------------

    def _insert(self, store: StoreSchema, key: Any, record: dict, body: str) -> None:
        handle = self._tables[store.name]
        self._execute(handle.table.insert().values(**handle.row(key, record, body)))

    def _upsert(self, store: StoreSchema, key: Any, record: dict, body: str) -> None:
        handle = self._tables[store.name]
        values = handle.row(key, record, body)
        statement = sqlite_insert(handle.table).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=[handle.table.c.pk],
            set_={name: value for name, value in values.items() if name != "pk"},
        )
        self._execute(statement)

    def _fetch(self, store: StoreSchema, key: Any) -> Optional[dict]:
        table = self._tables[store.name].table
        row = self._execute(
            sa.select(table.c.body).where(table.c.pk == _literal(key))
        ).first()
        return json.loads(row.body) if row is not None else None

    def _remove(self, store: StoreSchema, key: Any) -> None:
        table = self._tables[store.name].table
        self._execute(table.delete().where(table.c.pk == _literal(key)))

    def _fetch_all(self, store: StoreSchema) -> list[dict]:
        return self._select(store, None, [])

    def _fetch_equal(self, store: StoreSchema, index: IndexSpec, key: Any) -> list[dict]:
        columns = self._tables[store.name].columns_for(index)
        return self._select(store, index, self._equal_clauses(columns, key))

    def _fetch_range(
        self,
        store: StoreSchema,
        index: Optional[IndexSpec],
        key_range: KeyRange,
    ) -> list[dict]:
        columns = self._tables[store.name].columns_for(index)
        return self._select(store, index, self._range_clauses(columns, key_range))

    def _count(
        self,
        store: StoreSchema,
        index: Optional[IndexSpec],
        query: Optional[Query],
    ) -> int:
        handle = self._tables[store.name]
        columns = handle.columns_for(index)
        where = [column.is_not(None) for column in columns]
        if isinstance(query, KeyRange):
            where.extend(self._range_clauses(columns, query))
        elif query is not None:
            parts = query if isinstance(query, tuple) else (query,)
            if not all(is_valid_key(part) for part in parts):
                return 0
            where.extend(self._equal_clauses(columns, query))
        statement = sa.select(sa.func.count()).select_from(handle.table).where(*where)
        return self._execute(statement).scalar_one()

    def _commit(self) -> None:
        try:
            if self.mode == "readwrite":
                self._trans.commit()
            else:
                self._trans.rollback()
        except SQLAlchemyError as e:
            raise StorageError(f"Commit failed: {e}")
        finally:
            self._conn.close()

    def _rollback(self) -> None:
        try:
            self._trans.rollback()
        except SQLAlchemyError as e:
            logger.warning("storage_rollback_failed", error=str(e))
        finally:
            self._conn.close()


class SQLiteObjectStorage(BaseObjectStorage):
    """
    SQLite-backed object storage.

    Usage:
        storage = await SQLiteObjectStorage("sqlite:///finledger.db").init()
        await storage.add(Stores.USERS, {"id": "...", "username": "alice"})
    """

    def __init__(
        self,
        database_url: str = "sqlite:///finledger.db",
        schema: DatabaseSchema = FINANCE_SCHEMA,
        connect_attempts: int = 3,
    ):
        super().__init__(schema)
        self.database_url = database_url
        self.connect_attempts = connect_attempts
        self._engine: Optional[Engine] = None

        self._metadata = sa.MetaData()
        self._tables = {
            store.name: _StoreTable(store, self._metadata)
            for store in schema.stores
        }
        self._version_table = sa.Table(
            VERSION_TABLE,
            self._metadata,
            sa.Column("name", sa.String(64), primary_key=True),
            sa.Column("version", sa.Integer(), nullable=False),
        )

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def _create_engine(self) -> Engine:
        url = sa.make_url(self.database_url)
        if url.get_backend_name() != "sqlite":
            raise StorageConnectionError(f"Only sqlite URLs are supported, got {url.drivername}")
        if url.database in (None, "", ":memory:"):
            # One shared connection, or every checkout would see an empty database
            return sa.create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return sa.create_engine(url)

    def _ensure_schema(self, conn: Connection) -> Optional[int]:
        """
        Bring the database up to the target version.

        Returns the version found before the upgrade (None for a new database).
        """
        inspector = sa.inspect(conn)
        existing_tables = set(inspector.get_table_names())

        stored_version = None
        if VERSION_TABLE in existing_tables:
            stored_version = conn.execute(
                sa.select(self._version_table.c.version)
                .where(self._version_table.c.name == self.schema.name)
            ).scalar_one_or_none()

        if stored_version is not None and stored_version > self.schema.version:
            raise StorageConnectionError(
                f"Database '{self.schema.name}' is at version {stored_version}, "
                f"newer than supported version {self.schema.version}"
            )

        for name, handle in self._tables.items():
            if name not in existing_tables:
                handle.table.create(conn)
                continue

            present = {column["name"] for column in inspector.get_columns(name)}
            missing = [path for path in handle.paths if column_name(path) not in present]
            for path in missing:
                conn.execute(sa.text(
                    f'ALTER TABLE "{name}" ADD COLUMN "{column_name(path)}" BLOB'
                ))
            if missing:
                self._backfill(conn, handle, missing)
            for index in handle.table.indexes:
                index.create(conn, checkfirst=True)

        if VERSION_TABLE not in existing_tables:
            self._version_table.create(conn)
        if stored_version is None:
            conn.execute(self._version_table.insert().values(
                name=self.schema.name, version=self.schema.version
            ))
        elif stored_version < self.schema.version:
            conn.execute(
                self._version_table.update()
                .where(self._version_table.c.name == self.schema.name)
                .values(version=self.schema.version)
            )
        return stored_version

    @staticmethod
    def _backfill(conn: Connection, handle: _StoreTable, paths: list[str]) -> None:
        table = handle.table
        rows = conn.execute(sa.select(table.c.pk, table.c.body)).all()
        for row in rows:
            record = json.loads(row.body)
            values = {}
            for path in paths:
                value = resolve_path(record, path)
                values[column_name(path)] = value if is_valid_key(value) else None
            conn.execute(table.update().where(table.c.pk == _literal(row.pk)).values(**values))

    def _open(self) -> Engine:
        engine = self._create_engine()
        try:
            with engine.begin() as conn:
                previous = self._ensure_schema(conn)
        except BaseException:
            engine.dispose()
            raise
        if previous != self.schema.version:
            logger.info(
                "storage_schema_upgraded",
                database=self.schema.name,
                from_version=previous,
                to_version=self.schema.version,
            )
        return engine

    async def init(self) -> "SQLiteObjectStorage":
        """
        Open the database, creating or upgrading the schema.

        Transient engine failures are retried; the final failure
        surfaces as ConnectionError.
        """
        if self._engine is not None:
            return self
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.connect_attempts),
                wait=wait_exponential(multiplier=0.05, max=1),
                retry=retry_if_exception_type(SQLAlchemyError),
                reraise=True,
            ):
                with attempt:
                    self._engine = self._open()
        except SQLAlchemyError as e:
            logger.error("storage_open_failed", url=self._safe_url(), error=str(e))
            raise StorageConnectionError(f"Failed to open database: {e}")
        logger.debug(
            "storage_opened",
            backend="sqlite",
            url=self._safe_url(),
            version=self.schema.version,
        )
        return self

    def _safe_url(self) -> str:
        return sa.make_url(self.database_url).render_as_string(hide_password=True)

    def _begin(self, stores: tuple[str, ...], mode: TransactionMode) -> _SQLiteTransaction:
        return _SQLiteTransaction(self, stores, mode)

    async def clear(self, store: str) -> None:
        self._require_open()
        handle = self._tables.get(store)
        if handle is None:
            raise StorageError(f"Unknown store: {store}")
        async with self._lock:
            try:
                with self._engine.begin() as conn:
                    conn.execute(handle.table.delete())
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to clear {store}: {e}")

    async def close(self) -> None:
        async with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None

    async def delete_database(self) -> None:
        """Drop every table, close, and remove the database file."""
        async with self._lock:
            if self._engine is None:
                self._engine = self._create_engine()
            engine = self._engine
            try:
                with engine.begin() as conn:
                    self._metadata.drop_all(conn)
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to delete database: {e}")
            finally:
                engine.dispose()
                self._engine = None

            database = engine.url.database
            if database not in (None, "", ":memory:"):
                Path(database).unlink(missing_ok=True)
        logger.info("storage_deleted", backend="sqlite", url=self._safe_url())
