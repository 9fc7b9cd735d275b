"""Tests for the in-memory storage backends."""

from __future__ import annotations

import pytest

from plotarc.errors import StorageQuotaExceeded, StorageUnavailable
from plotarc.storage.backends import (
    AuthoritativeStore,
    FallbackCache,
    MemoryAuthoritativeStore,
    MemoryFallbackCache,
    blob_size,
)


class TestProtocols:
    """Runtime protocol checks."""

    def test_memory_backends_satisfy_protocols(self) -> None:
        """Both in-memory backends pass isinstance checks."""
        assert isinstance(MemoryAuthoritativeStore(), AuthoritativeStore)
        assert isinstance(MemoryFallbackCache(), FallbackCache)


class TestMemoryAuthoritativeStore:
    """Authoritative store double."""

    @pytest.mark.asyncio
    async def test_put_then_get(self) -> None:
        """Stored records come back."""
        store = MemoryAuthoritativeStore()
        await store.put("chat-1", {"plotText": "x"})
        assert await store.get("chat-1") == {"plotText": "x"}
        assert await store.get("chat-2") is None
        assert store.put_count == 1

    @pytest.mark.asyncio
    async def test_values_are_copied(self) -> None:
        """Mutating a returned record does not change the store."""
        store = MemoryAuthoritativeStore({"chat-1": {"plotHistory": []}})
        record = await store.get("chat-1")
        assert record is not None
        record["plotHistory"].append("leak")
        assert await store.get("chat-1") == {"plotHistory": []}

    @pytest.mark.asyncio
    async def test_unavailable_raises(self) -> None:
        """An unavailable store raises on every call."""
        store = MemoryAuthoritativeStore()
        store.available = False
        with pytest.raises(StorageUnavailable, match="during get"):
            await store.get("chat-1")
        with pytest.raises(StorageUnavailable, match="during put"):
            await store.put("chat-1", {})


class TestMemoryFallbackCache:
    """Quota-limited cache double."""

    def test_set_get_delete(self) -> None:
        """Basic key/value operations."""
        cache = MemoryFallbackCache()
        cache.set("k", "v")
        assert cache.get("k") == "v"
        cache.delete("k")
        cache.delete("k")
        assert cache.get("k") is None

    def test_keys_by_prefix(self) -> None:
        """keys filters by prefix."""
        cache = MemoryFallbackCache()
        cache.set("plotarc_a", "1")
        cache.set("plotarc_b", "2")
        cache.set("other", "3")
        assert sorted(cache.keys("plotarc_")) == ["plotarc_a", "plotarc_b"]
        assert len(cache.keys()) == 3

    def test_quota_rejects_oversized_write(self) -> None:
        """Writes beyond the quota raise and leave old data alone."""
        cache = MemoryFallbackCache(quota_bytes=20)
        cache.set("a", "x" * 10)
        with pytest.raises(StorageQuotaExceeded) as exc_info:
            cache.set("b", "y" * 10)

        assert exc_info.value.key == "b"
        assert exc_info.value.needed == 11
        assert exc_info.value.quota == 20
        assert cache.get("a") == "x" * 10
        assert cache.get("b") is None

    def test_overwrite_counts_only_new_value(self) -> None:
        """Replacing a key does not double-count its old value."""
        cache = MemoryFallbackCache(quota_bytes=20)
        cache.set("a", "x" * 15)
        cache.set("a", "y" * 19)
        assert cache.used_bytes() == 20

    def test_blob_size_counts_utf8_bytes(self) -> None:
        """Sizes are measured in encoded bytes."""
        assert blob_size("k", "é") == 3
