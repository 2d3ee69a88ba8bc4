"""
Durable Key-Value Cache Interface

A small synchronous string store kept outside the object storage.
It holds the session blob, cached preferences and app state so that a
session can be restored without opening the main database.
"""

from abc import ABC, abstractmethod
from typing import Optional


class KeyValueCacheInterface(ABC):
    """Synchronous get/set/remove of string values by key."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a key. Removing a missing key is a no-op."""
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class CacheError(Exception):
    """The cache could not be read or written."""
    pass


class CacheKeys:
    """Well-known cache keys, namespaced by a prefix."""

    def __init__(self, prefix: str = "finledger"):
        self.prefix = prefix

    @property
    def session(self) -> str:
        return f"{self.prefix}-session"

    @property
    def preferences(self) -> str:
        return f"{self.prefix}-preferences"

    @property
    def app_state(self) -> str:
        return f"{self.prefix}-app-state"
