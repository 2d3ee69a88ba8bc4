"""
Application Wiring for finledger

This module builds the component graph:

    storage + cache -> IdentityManager -> Transaction/Category/Budget services

DESIGN DECISION: Nothing here is a module-level singleton. Each call to
create_app_components() returns a fresh, independent graph, so tests can
hand in an in-memory store and cache and never touch global state or
the filesystem.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from finledger.audit import AuditLogger, configure_logging
from finledger.config import Settings, get_settings
from finledger.identity import IdentityManager
from finledger.ledger import BudgetService, CategoryService, TransactionService
from finledger.models.common import Clock, utc_now
from finledger.services.cache import (
    FileKeyValueCache,
    KeyValueCacheInterface,
)
from finledger.services.storage import (
    MemoryObjectStorage,
    ObjectStorageInterface,
    SQLiteObjectStorage,
)


logger = structlog.get_logger(__name__)


@dataclass
class AppComponents:
    """Everything a presentation layer needs, sharing one storage and cache."""

    storage: ObjectStorageInterface
    cache: KeyValueCacheInterface
    audit_logger: AuditLogger
    identity: IdentityManager
    transactions: TransactionService
    categories: CategoryService
    budgets: BudgetService

    async def start(self) -> "AppComponents":
        """Open storage and restore any cached session."""
        await self.identity.init()
        return self

    async def shutdown(self) -> None:
        await self.storage.close()


def create_storage(settings: Settings) -> ObjectStorageInterface:
    """Pick the storage backend named by FINLEDGER_STORAGE_BACKEND."""
    storage_settings = settings.storage
    if storage_settings.backend == "memory":
        return MemoryObjectStorage()
    return SQLiteObjectStorage(
        database_url=storage_settings.database_url,
        connect_attempts=storage_settings.connect_attempts,
    )


def create_cache(settings: Settings) -> KeyValueCacheInterface:
    return FileKeyValueCache(settings.session.cache_path)


def create_app_components(
    settings: Optional[Settings] = None,
    storage: Optional[ObjectStorageInterface] = None,
    cache: Optional[KeyValueCacheInterface] = None,
    clock: Clock = utc_now,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Defaults to get_settings()
        storage: Injected store; otherwise built from settings.storage
        cache: Injected cache; otherwise a file cache under settings.session
        clock: Time source shared by every service

    Returns:
        AppComponents, not yet started (call await components.start())
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)

    storage = storage or create_storage(settings)
    cache = cache or create_cache(settings)
    audit_logger = AuditLogger()

    identity = IdentityManager(
        storage,
        cache,
        audit_logger=audit_logger,
        settings=settings,
        clock=clock,
    )
    components = AppComponents(
        storage=storage,
        cache=cache,
        audit_logger=audit_logger,
        identity=identity,
        transactions=TransactionService(
            identity, audit_logger=audit_logger, settings=settings, clock=clock
        ),
        categories=CategoryService(identity, audit_logger=audit_logger, clock=clock),
        budgets=BudgetService(identity, audit_logger=audit_logger, clock=clock),
    )
    logger.info(
        "app_components_created",
        storage=type(storage).__name__,
        cache=type(cache).__name__,
        environment=settings.app.app_environment,
    )
    return components
