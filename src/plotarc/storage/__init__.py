"""Conversation profile persistence."""

from plotarc.storage.backends import (
    AuthoritativeStore,
    FallbackCache,
    MemoryAuthoritativeStore,
    MemoryFallbackCache,
)
from plotarc.storage.index import ProfileIndex
from plotarc.storage.models import (
    ArcSnapshot,
    ConversationKey,
    ConversationProfile,
    PlotEntry,
    ProfileIndexEntry,
    ProfileStatus,
    ProfileUpdate,
    status_label,
)
from plotarc.storage.profile_store import (
    ConversationProfileStore,
    LoadResult,
    RestoredView,
    SaveResult,
)
from plotarc.storage.sqlite_cache import SqliteFallbackCache

__all__ = [
    "ArcSnapshot",
    "AuthoritativeStore",
    "ConversationKey",
    "ConversationProfile",
    "ConversationProfileStore",
    "FallbackCache",
    "LoadResult",
    "MemoryAuthoritativeStore",
    "MemoryFallbackCache",
    "PlotEntry",
    "ProfileIndex",
    "ProfileIndexEntry",
    "ProfileStatus",
    "ProfileUpdate",
    "RestoredView",
    "SaveResult",
    "SqliteFallbackCache",
    "status_label",
]
