"""Tests for the durable key-value cache."""

import pytest

from finledger.services.cache import (
    CacheError,
    CacheKeys,
    FileKeyValueCache,
    MemoryKeyValueCache,
)


@pytest.fixture(params=["memory", "file"])
def kv(request, tmp_path):
    if request.param == "memory":
        return MemoryKeyValueCache()
    return FileKeyValueCache(tmp_path / "kv")


class TestKeyValueCache:
    """Behaviour shared by both cache implementations."""

    def test_set_then_get(self, kv):
        """Test basic storage of a string value."""
        kv.set("finledger-session", '{"user_id": "u1"}')
        assert kv.get("finledger-session") == '{"user_id": "u1"}'

    def test_missing_key_is_none(self, kv):
        """Test that absent keys read as None."""
        assert kv.get("finledger-session") is None

    def test_set_overwrites(self, kv):
        """Test that set replaces the old value."""
        kv.set("k", "one")
        kv.set("k", "two")
        assert kv.get("k") == "two"

    def test_remove_is_idempotent(self, kv):
        """Test that removing twice is fine."""
        kv.set("k", "v")
        kv.remove("k")
        kv.remove("k")
        assert kv.get("k") is None

    def test_clear(self, kv):
        """Test that clear drops every key."""
        kv.set("a", "1")
        kv.set("b", "2")
        kv.clear()
        assert kv.get("a") is None
        assert kv.get("b") is None


class TestFileKeyValueCache:
    """File-specific behaviour."""

    def test_values_survive_a_new_instance(self, tmp_path):
        """Test durability across process restarts."""
        FileKeyValueCache(tmp_path).set("finledger-session", "blob")
        assert FileKeyValueCache(tmp_path).get("finledger-session") == "blob"

    def test_no_temp_files_left_behind(self, tmp_path):
        """Test the atomic write leaves only the final file."""
        cache = FileKeyValueCache(tmp_path)
        cache.set("k", "v")
        assert [p.name for p in tmp_path.iterdir()] == ["k.cache"]

    def test_rejects_path_like_keys(self, tmp_path):
        """Test that keys cannot escape the cache directory."""
        with pytest.raises(CacheError):
            FileKeyValueCache(tmp_path).set("../escape", "v")


class TestCacheKeys:
    """Tests for the well-known key names."""

    def test_keys_use_prefix(self):
        """Test key naming."""
        keys = CacheKeys("finledger")
        assert keys.session == "finledger-session"
        assert keys.preferences == "finledger-preferences"
        assert keys.app_state == "finledger-app-state"
