"""Storage backend protocols and in-memory implementations.

Two backends hold conversation profiles:

- ``AuthoritativeStore``: the host-owned, possibly remote store. It is the
  source of truth whenever it answers. Its calls are awaited.
- ``FallbackCache``: a local key/value blob store with a finite quota.
  ``set`` raises ``StorageQuotaExceeded`` when a write does not fit.

Implementations handle raw reads and writes only; the profile store adds
merge rules, precedence and eviction on top.
"""

from __future__ import annotations

import copy
from typing import Any, Protocol, runtime_checkable

from plotarc.errors import StorageQuotaExceeded, StorageUnavailable

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


@runtime_checkable
class AuthoritativeStore(Protocol):
    """Protocol for the host's synchronized profile store."""

    async def get(self, conversation_id: str) -> dict[str, Any] | None:
        """Return the stored profile JSON, or None if absent."""
        ...

    async def put(self, conversation_id: str, profile: dict[str, Any]) -> None:
        """Store the full profile JSON, replacing any previous value."""
        ...


@runtime_checkable
class FallbackCache(Protocol):
    """Protocol for the local, quota-limited blob cache."""

    def get(self, key: str) -> str | None:
        """Return the stored blob, or None if absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store *value* under *key*.

        Raises:
            StorageQuotaExceeded: If the write would exceed the quota. The
                previous value (if any) is left untouched.
        """
        ...

    def delete(self, key: str) -> None:
        """Remove *key*; missing keys are ignored."""
        ...

    def keys(self, prefix: str = "") -> list[str]:
        """Return all keys starting with *prefix*."""
        ...


def blob_size(key: str, value: str) -> int:
    """Bytes a key/value pair counts against a cache quota."""
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class MemoryAuthoritativeStore:
    """In-process AuthoritativeStore.

    Values are deep-copied on the way in and out so callers cannot mutate
    stored state. Setting ``available = False`` makes every call raise
    ``StorageUnavailable``.
    """

    def __init__(self, data: dict[str, dict[str, Any]] | None = None) -> None:
        self._data: dict[str, dict[str, Any]] = copy.deepcopy(data) if data else {}
        self.available = True
        self.put_count = 0

    async def get(self, conversation_id: str) -> dict[str, Any] | None:
        self._check("get")
        value = self._data.get(conversation_id)
        return copy.deepcopy(value) if value is not None else None

    async def put(self, conversation_id: str, profile: dict[str, Any]) -> None:
        self._check("put")
        self._data[conversation_id] = copy.deepcopy(profile)
        self.put_count += 1

    def _check(self, operation: str) -> None:
        if not self.available:
            raise StorageUnavailable(operation, detail="store marked unavailable")


class MemoryFallbackCache:
    """Dict-backed FallbackCache with a byte quota."""

    def __init__(self, quota_bytes: int = DEFAULT_QUOTA_BYTES) -> None:
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        current = self.used_bytes()
        if key in self._data:
            current -= blob_size(key, self._data[key])
        needed = blob_size(key, value)
        if current + needed > self.quota_bytes:
            raise StorageQuotaExceeded(key, needed=needed, quota=self.quota_bytes)
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self._data if k.startswith(prefix)]

    def used_bytes(self) -> int:
        return sum(blob_size(k, v) for k, v in self._data.items())
