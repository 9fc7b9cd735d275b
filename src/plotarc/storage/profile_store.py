"""Persistence coordinator for conversation profiles.

ConversationProfileStore sits on top of the two backends:

- Reads prefer the authoritative store and fall back to the local cache
  when it is absent, unavailable, or returns something unreadable.
- Writes merge the partial update into the current profile, then write
  the authoritative store, then the cache, then the recency index.
  Each step degrades independently; ``save`` never raises for storage
  problems and reports what happened in ``SaveResult`` instead.

Saves and loads for the same conversation are serialized by a per-key
``asyncio.Lock`` so a later save always merges onto the earlier one.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Iterator, Mapping
from contextlib import asynccontextmanager, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from pydantic import ValidationError

from plotarc.clock import Clock, now_ms
from plotarc.errors import MalformedRecord, StorageQuotaExceeded
from plotarc.observability.logging import get_logger
from plotarc.storage.index import DEFAULT_EVICT_FRACTION, ProfileIndex
from plotarc.storage.models import (
    DEFAULT_HISTORY_LIMIT,
    DESCRIPTIVE_SNAPSHOT_FIELDS,
    MAX_RECENT_DIRECTIONS,
    ArcSnapshot,
    ConversationKey,
    ConversationProfile,
    PlotEntry,
    ProfileIndexEntry,
    ProfileStatus,
    ProfileUpdate,
    is_placeholder,
)

if TYPE_CHECKING:
    from plotarc.storage.backends import AuthoritativeStore, FallbackCache

log = get_logger(__name__)

_restoring: ContextVar[bool] = ContextVar("plotarc_restoring", default=False)


@dataclass(frozen=True)
class SaveResult:
    """Outcome of a save. Storage trouble shows up here, not as exceptions."""

    profile: ConversationProfile | None
    authoritative_ok: bool = True
    cached: bool = True
    storage_full: bool = False
    skipped: bool = False
    evicted: tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        return not self.skipped and (not self.authoritative_ok or not self.cached)


@dataclass(frozen=True)
class LoadResult:
    profile: ConversationProfile
    source: Literal["primary", "fallback"]


@dataclass(frozen=True)
class RestoredView:
    """What a host needs to redraw a conversation after reload."""

    plot_text: str | None
    status: str
    plot_history: list[PlotEntry] = field(default_factory=list)
    recent_directions: list[str] = field(default_factory=list)
    arc: ArcSnapshot | None = None
    participant_name: str | None = None
    sidebar_collapsed: bool = False


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


# ---------------------------------------------------------------------------
# Merge rules
# ---------------------------------------------------------------------------


def dedupe_directions(directions: list[str], limit: int = MAX_RECENT_DIRECTIONS) -> list[str]:
    """Drop blanks and repeats (first occurrence wins), then cap."""
    seen: set[str] = set()
    result: list[str] = []
    for direction in directions:
        text = direction.strip()
        if not text or text in seen:
            continue
        seen.add(text)
        result.append(text)
    return result[:limit]


def merge_arc_snapshot(current: ArcSnapshot | None, incoming: ArcSnapshot) -> ArcSnapshot:
    """Merge *incoming* onto *current* one field at a time.

    Structural fields are taken when *incoming* set them explicitly. The
    descriptive strings only replace the stored value when the new one
    carries real content, so an analysis pass that came back empty does
    not wipe an earlier one.
    """
    merged = current.model_copy(deep=True) if current is not None else ArcSnapshot()
    for name in incoming.model_fields_set:
        value = getattr(incoming, name)
        if name in DESCRIPTIVE_SNAPSHOT_FIELDS:
            if is_placeholder(value):
                continue
            value = value.strip()
        setattr(merged, name, value)
    for name, value in (incoming.model_extra or {}).items():
        setattr(merged, name, value)
    return merged


def merge_profile(
    base: ConversationProfile | None,
    key: ConversationKey,
    update: ProfileUpdate,
    *,
    now: int,
    history_limit: int = DEFAULT_HISTORY_LIMIT,
    max_recent_directions: int = MAX_RECENT_DIRECTIONS,
) -> ConversationProfile:
    """Apply a partial update to a stored profile (or an empty one)."""
    merged = (
        base.model_copy(deep=True)
        if base is not None
        else ConversationProfile(participant_id=key.participant_id)
    )

    merged.plot_text = update.plot_text
    merged.status = update.status
    merged.updated_at = now
    merged.participant_id = key.participant_id

    if update.participant_name:
        merged.participant_name = update.participant_name
    if update.plot_history:
        merged.plot_history = [entry.model_copy() for entry in update.plot_history]
    if update.recent_directions:
        merged.recent_directions = list(update.recent_directions)
    if update.arc_status is not None:
        merged.arc_snapshot = merge_arc_snapshot(merged.arc_snapshot, update.arc_status)
    if update.sidebar_collapsed is not None:
        merged.sidebar_collapsed = update.sidebar_collapsed
    if update.chat_length is not None:
        merged.chat_length = update.chat_length
    if update.last_message_time is not None:
        merged.last_message_time = update.last_message_time

    merged.plot_history = sorted(merged.plot_history, key=lambda e: e.timestamp, reverse=True)[
        :history_limit
    ]
    merged.recent_directions = dedupe_directions(merged.recent_directions, max_recent_directions)
    return merged


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ConversationProfileStore:
    """Loads, merges and saves conversation profiles across both backends."""

    def __init__(
        self,
        fallback: FallbackCache,
        authoritative: AuthoritativeStore | None = None,
        *,
        index: ProfileIndex | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_recent_directions: int = MAX_RECENT_DIRECTIONS,
        evict_fraction: float = DEFAULT_EVICT_FRACTION,
        clock: Clock = now_ms,
    ) -> None:
        if history_limit < 1:
            raise ValueError(f"history_limit must be at least 1, got {history_limit}")
        self.fallback = fallback
        self.authoritative = authoritative
        self.index = index if index is not None else ProfileIndex(fallback)
        self.history_limit = history_limit
        self.max_recent_directions = max_recent_directions
        self.evict_fraction = evict_fraction
        self._clock = clock
        self._locks: dict[str, _KeyLock] = {}

    @asynccontextmanager
    async def _locked(self, key: ConversationKey) -> AsyncIterator[None]:
        """Hold the lock for *key*, dropping it once no task holds or awaits it."""
        name = key.storage_key
        entry = self._locks.get(name)
        if entry is None:
            entry = self._locks[name] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[name]

    # -- Save ------------------------------------------------------------------

    async def save(
        self,
        key: ConversationKey,
        update: ProfileUpdate | Mapping[str, Any],
        *,
        history_limit: int | None = None,
    ) -> SaveResult:
        """Merge *update* into the stored profile and write it everywhere.

        Args:
            key: Conversation to write.
            update: Partial update. Mappings are validated as
                ``ProfileUpdate`` (camelCase or snake_case keys).
            history_limit: History entries kept for this write only.
                Defaults to the store's ``history_limit``.

        Returns:
            SaveResult describing which backends accepted the write.
        """
        if _restoring.get():
            log.warning("save_skipped_during_restore", key=str(key))
            return SaveResult(profile=None, cached=False, skipped=True)

        if not isinstance(update, ProfileUpdate):
            update = ProfileUpdate.model_validate(update)

        async with self._locked(key):
            existing = await self._load_unlocked(key)
            now = self._clock()
            profile = merge_profile(
                existing.profile if existing else None,
                key,
                update,
                now=now,
                history_limit=history_limit or self.history_limit,
                max_recent_directions=self.max_recent_directions,
            )
            record = profile.to_json_dict()

            authoritative_ok = await self._put_authoritative(key, record)
            cached, storage_full, evicted = self._write_cache(key, record)

            evicted += self.index.upsert(
                key.storage_key,
                ProfileIndexEntry(
                    participant_id=key.participant_id,
                    participant_name=profile.participant_name,
                    conversation_id=key.conversation_id,
                    last_active=now,
                    plot_history_count=len(profile.plot_history),
                    chat_length=profile.chat_length,
                ),
            )

        log.debug(
            "profile_saved",
            key=str(key),
            status=profile.status,
            authoritative_ok=authoritative_ok,
            cached=cached,
            storage_full=storage_full,
        )
        return SaveResult(
            profile=profile,
            authoritative_ok=authoritative_ok,
            cached=cached,
            storage_full=storage_full,
            evicted=tuple(evicted),
        )

    async def _put_authoritative(self, key: ConversationKey, record: dict[str, Any]) -> bool:
        if self.authoritative is None:
            return False
        try:
            await self.authoritative.put(key.conversation_id, record)
        except Exception as e:
            log.warning("authoritative_put_failed", key=str(key), error=str(e))
            return False
        return True

    def _write_cache(
        self, key: ConversationKey, record: dict[str, Any]
    ) -> tuple[bool, bool, list[str]]:
        """Write the cache, evicting once and retrying once on quota errors.

        Returns:
            ``(cached, storage_full, evicted_keys)``.
        """
        payload = json.dumps(record, separators=(",", ":"))
        try:
            self.fallback.set(key.storage_key, payload)
            return True, False, []
        except StorageQuotaExceeded as e:
            log.warning("cache_quota_exceeded", key=key.storage_key, needed=e.needed, quota=e.quota)
        except Exception as e:
            log.error("cache_write_failed", key=key.storage_key, error=str(e))
            return False, False, []

        evicted = self.index.evict_oldest(self.evict_fraction)
        try:
            self.fallback.set(key.storage_key, payload)
        except StorageQuotaExceeded as e:
            log.error(
                "cache_storage_full",
                key=key.storage_key,
                needed=e.needed,
                quota=e.quota,
                evicted=len(evicted),
            )
            return False, True, evicted
        except Exception as e:
            log.error("cache_write_failed", key=key.storage_key, error=str(e))
            return False, False, evicted
        log.info("cache_write_recovered", key=key.storage_key, evicted=len(evicted))
        return True, False, evicted

    # -- Load ------------------------------------------------------------------

    async def load(self, key: ConversationKey) -> LoadResult | None:
        """Load a profile, preferring the authoritative store.

        Returns:
            The profile with the backend it came from, or None if neither
            backend holds a readable record.
        """
        async with self._locked(key):
            return await self._load_unlocked(key)

    async def _load_unlocked(self, key: ConversationKey) -> LoadResult | None:
        if self.authoritative is not None:
            try:
                raw = await self.authoritative.get(key.conversation_id)
            except Exception as e:
                log.warning("authoritative_get_failed", key=str(key), error=str(e))
            else:
                if raw is not None:
                    try:
                        profile = decode_profile(raw, key.conversation_id)
                    except MalformedRecord as e:
                        log.warning("authoritative_record_malformed", error=str(e))
                    else:
                        return LoadResult(profile=profile, source="primary")

        try:
            cached = self.fallback.get(key.storage_key)
        except Exception as e:
            log.warning("cache_get_failed", key=key.storage_key, error=str(e))
            return None
        if cached is None:
            return None
        try:
            profile = decode_profile(cached, key.storage_key)
        except MalformedRecord as e:
            log.warning("cache_record_malformed", error=str(e))
            return None
        return LoadResult(profile=profile, source="fallback")

    # -- Restore ---------------------------------------------------------------

    def restore(
        self, profile: ConversationProfile, *, history_limit: int | None = None
    ) -> RestoredView:
        """Project a stored profile into what the host should display."""
        limit = history_limit or self.history_limit
        status = ProfileStatus.RESTORED.value if profile.plot_text else profile.status
        history = sorted(profile.plot_history, key=lambda e: e.timestamp, reverse=True)
        return RestoredView(
            plot_text=profile.plot_text,
            status=status,
            plot_history=[entry.model_copy() for entry in history[:limit]],
            recent_directions=list(profile.recent_directions),
            arc=profile.arc_snapshot.model_copy(deep=True) if profile.arc_snapshot else None,
            participant_name=profile.participant_name,
            sidebar_collapsed=profile.sidebar_collapsed,
        )

    @contextmanager
    def restoring(self) -> Iterator[None]:
        """Mark the current task as applying a restore.

        Any ``save`` issued from inside the block (for example by a display
        callback reacting to the restored state) is skipped.
        """
        token = _restoring.set(True)
        try:
            yield
        finally:
            _restoring.reset(token)

    # -- Housekeeping ----------------------------------------------------------

    async def delete(self, key: ConversationKey) -> bool:
        """Remove the cached record and index entry for *key*.

        The authoritative copy belongs to the host and is left alone.
        """
        async with self._locked(key):
            removed = self.index.remove(key.storage_key)
            if not removed:
                self.fallback.delete(key.storage_key)
        log.info("profile_deleted", key=str(key), indexed=removed)
        return removed

    def list_profiles(self) -> list[tuple[str, ProfileIndexEntry]]:
        """Index entries, most recently active first."""
        return self.index.entries()


def decode_profile(raw: Any, key: str) -> ConversationProfile:
    """Validate a stored record (JSON text or an already-parsed mapping).

    Raises:
        MalformedRecord: If the record is not valid JSON or does not match
            the profile schema.
    """
    try:
        if isinstance(raw, (str, bytes)):
            return ConversationProfile.model_validate_json(raw)
        return ConversationProfile.model_validate(raw)
    except ValidationError as e:
        raise MalformedRecord(key, detail=f"{e.error_count()} validation error(s)") from e
