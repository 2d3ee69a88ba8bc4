"""In-memory key-value cache for tests."""

from typing import Optional

from finledger.services.cache.interface import KeyValueCacheInterface


class MemoryKeyValueCache(KeyValueCacheInterface):

    def __init__(self):
        self._values: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def clear(self) -> None:
        self._values.clear()

    def keys(self) -> list[str]:
        return sorted(self._values)
