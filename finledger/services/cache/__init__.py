"""Durable key-value cache (session blob, preferences, app state)."""

from finledger.services.cache.interface import CacheError, CacheKeys, KeyValueCacheInterface
from finledger.services.cache.file_cache import FileKeyValueCache
from finledger.services.cache.memory import MemoryKeyValueCache

__all__ = [
    "CacheError",
    "CacheKeys",
    "FileKeyValueCache",
    "KeyValueCacheInterface",
    "MemoryKeyValueCache",
]
