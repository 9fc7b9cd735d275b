"""Recency index over the fallback cache.

The index lists every cached profile with enough summary data for a
conversation picker, and drives eviction: dropping an entry always
deletes its cached record too, so index and cache stay in step.

The index persists itself in the same cache under ``INDEX_KEY``.
"""

from __future__ import annotations

import json
import math
from typing import TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError

from plotarc.errors import StorageQuotaExceeded
from plotarc.observability.logging import get_logger
from plotarc.storage.models import ProfileIndexEntry

if TYPE_CHECKING:
    from plotarc.storage.backends import FallbackCache

log = get_logger(__name__)

INDEX_KEY = "plotarc_index"
DEFAULT_INDEX_CAP = 30
DEFAULT_EVICT_FRACTION = 0.2

_ENTRIES_ADAPTER = TypeAdapter(dict[str, ProfileIndexEntry])


class ProfileIndex:
    """Capped, recency-ordered directory of cached profiles."""

    def __init__(
        self,
        cache: FallbackCache,
        *,
        cap: int = DEFAULT_INDEX_CAP,
        index_key: str = INDEX_KEY,
    ) -> None:
        if cap < 1:
            raise ValueError(f"Index cap must be at least 1, got {cap}")
        self.cache = cache
        self.cap = cap
        self.index_key = index_key
        self._entries: dict[str, ProfileIndexEntry] = self._read()

    # -- Queries ---------------------------------------------------------------

    def get(self, storage_key: str) -> ProfileIndexEntry | None:
        return self._entries.get(storage_key)

    def entries(self) -> list[tuple[str, ProfileIndexEntry]]:
        """All entries, most recently active first."""
        return sorted(
            self._entries.items(),
            key=lambda item: (item[1].last_active, item[0]),
            reverse=True,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, storage_key: object) -> bool:
        return storage_key in self._entries

    # -- Mutations -------------------------------------------------------------

    def upsert(self, storage_key: str, entry: ProfileIndexEntry) -> list[str]:
        """Insert or replace an entry, then enforce the cap.

        Returns:
            Storage keys evicted to respect the cap (oldest first).
        """
        self._entries[storage_key] = entry
        overflow = len(self._entries) - self.cap
        evicted = self._drop_oldest(overflow) if overflow > 0 else []
        if evicted:
            log.info("index_cap_evicted", count=len(evicted), cap=self.cap)
        self._persist()
        return evicted

    def evict_oldest(self, fraction: float = DEFAULT_EVICT_FRACTION) -> list[str]:
        """Remove the oldest *fraction* of entries and their records.

        At least one entry is removed when the index is non-empty.

        Returns:
            Storage keys evicted (oldest first).
        """
        if not self._entries:
            log.warning("index_evict_empty")
            return []
        count = max(1, math.ceil(len(self._entries) * fraction))
        evicted = self._drop_oldest(count)
        log.info("index_evicted", count=len(evicted), remaining=len(self._entries))
        self._persist()
        return evicted

    def remove(self, storage_key: str) -> bool:
        """Remove one entry and its record. Returns False if it was absent."""
        if storage_key not in self._entries:
            return False
        del self._entries[storage_key]
        self.cache.delete(storage_key)
        self._persist()
        return True

    # -- Internals -------------------------------------------------------------

    def _drop_oldest(self, count: int) -> list[str]:
        oldest = sorted(
            self._entries.items(),
            key=lambda item: (item[1].last_active, item[0]),
        )[:count]
        evicted = []
        for storage_key, _entry in oldest:
            del self._entries[storage_key]
            self.cache.delete(storage_key)
            evicted.append(storage_key)
        return evicted

    def _read(self) -> dict[str, ProfileIndexEntry]:
        raw = self.cache.get(self.index_key)
        if raw is None:
            return {}
        try:
            return _ENTRIES_ADAPTER.validate_python(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            log.warning("index_malformed", key=self.index_key, error=str(e))
            return {}

    def _persist(self) -> None:
        payload = json.dumps(
            {k: v.to_json_dict() for k, v in self._entries.items()},
            separators=(",", ":"),
        )
        try:
            self.cache.set(self.index_key, payload)
        except StorageQuotaExceeded as e:
            log.warning("index_persist_quota_exceeded", entries=len(self._entries), error=str(e))
