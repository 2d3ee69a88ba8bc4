"""
File-backed Key-Value Cache

One UTF-8 file per key under a directory. Writes target ``<key>.tmp``
first and then ``os.replace`` into place, so a crash never leaves a
half-written session blob behind.
"""

import contextlib
import os
import re
from pathlib import Path
from typing import Optional, Union

from finledger.services.cache.interface import CacheError, KeyValueCacheInterface


_KEY_RE = re.compile(r"^[A-Za-z0-9_-]{1,100}$")
_SUFFIX = ".cache"


class FileKeyValueCache(KeyValueCacheInterface):

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory).expanduser()

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise CacheError(f"Invalid cache key: {key!r}")
        return self.directory / f"{key}{_SUFFIX}"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheError(f"Failed to read cache key {key}: {e}")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp.write_text(value, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            raise CacheError(f"Failed to write cache key {key}: {e}")

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise CacheError(f"Failed to remove cache key {key}: {e}")

    def clear(self) -> None:
        if not self.directory.is_dir():
            return
        for path in self.directory.glob(f"*{_SUFFIX}"):
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
