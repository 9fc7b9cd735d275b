"""Pydantic models for persisted conversation state.

The JSON shape uses camelCase keys (``plotText``, ``plotHistory``, ...) so
records written by other clients of the authoritative store stay
readable. Python code uses the snake_case field names.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_RECENT_DIRECTIONS = 10
DEFAULT_HISTORY_LIMIT = 5
STORAGE_KEY_PREFIX = "plotarc_"

# Never produced by quote(..., safe=""), so it cannot occur inside an id
STORAGE_KEY_SEPARATOR = ":"

# Strings that analysis steps emit when they have nothing to say.
PLACEHOLDER_VALUES = frozenset(
    {
        "no data available",
        "not specified",
        "unknown",
        "n/a",
        "none",
    }
)


class ProfileStatus(str, Enum):
    """Known plot status values.

    Stored profiles keep ``status`` as a plain string; values outside this
    enum are carried through unchanged.
    """

    READY = "ready"
    PENDING = "pending"
    INJECTED = "injected"
    RESTORED = "restored"


_STATUS_LABELS = {
    ProfileStatus.READY: "Ready",
    ProfileStatus.PENDING: "Generating...",
    ProfileStatus.INJECTED: "Injected",
    ProfileStatus.RESTORED: "Restored",
}


def status_label(status: str) -> str:
    """Human-readable label for a status value (unknown values pass through)."""
    try:
        return _STATUS_LABELS[ProfileStatus(status)]
    except ValueError:
        return status


def is_placeholder(value: str | None) -> bool:
    """True for None, blank strings and known placeholder phrases."""
    if value is None:
        return True
    text = value.strip()
    return not text or text.lower() in PLACEHOLDER_VALUES


@dataclass(frozen=True)
class ConversationKey:
    """Identifies one conversation with one participant."""

    participant_id: str
    conversation_id: str

    @property
    def storage_key(self) -> str:
        """Fallback-cache key for this conversation.

        Both ids are percent-encoded, so distinct pairs never share a key.
        """
        participant = quote(self.participant_id, safe="")
        conversation = quote(self.conversation_id, safe="")
        return f"{STORAGE_KEY_PREFIX}{participant}{STORAGE_KEY_SEPARATOR}{conversation}"

    def __str__(self) -> str:
        return f"{self.participant_id}/{self.conversation_id}"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Dump to the camelCase JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


class PlotEntry(_CamelModel):
    """One plot line in a conversation's history."""

    text: str
    timestamp: int = Field(description="Epoch milliseconds when the plot was recorded")
    id: str


class ArcSnapshot(_CamelModel):
    """Arc status embedded in a conversation profile.

    The first block mirrors ``ArcStatus``; the descriptive strings at the
    end are filled by analysis steps and merged field by field.
    """

    model_config = ConfigDict(extra="allow")

    has_active_arc: bool | None = None
    template_id: str | None = None
    template_name: str | None = None
    phase_name: str | None = None
    progress: int = Field(default=0, ge=0, le=100)
    phase_index: int | None = Field(default=None, ge=0)
    total_phases: int = Field(default=0, ge=0)
    completed_arcs: int = Field(default=0, ge=0)
    completed_phases: list[str] = Field(default_factory=list)
    chosen_branch: str | None = None
    choice_count: int = Field(default=0, ge=0)

    character_analysis: str | None = None
    world_context: str | None = None
    tone: str | None = None
    pacing: str | None = None


DESCRIPTIVE_SNAPSHOT_FIELDS = ("character_analysis", "world_context", "tone", "pacing")


class ConversationProfile(_CamelModel):
    """The persisted unit: everything remembered about one conversation."""

    model_config = ConfigDict(extra="allow")

    plot_text: str | None = None
    status: str = ProfileStatus.READY.value
    updated_at: int = 0
    participant_id: str | None = None
    participant_name: str | None = None
    plot_history: list[PlotEntry] = Field(default_factory=list)
    recent_directions: list[str] = Field(default_factory=list)
    arc_snapshot: ArcSnapshot | None = None
    sidebar_collapsed: bool = False
    chat_length: int = Field(default=0, ge=0)
    last_message_time: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _status_value(cls, value: Any) -> Any:
        return value.value if isinstance(value, Enum) else value


class ProfileUpdate(_CamelModel):
    """Partial update passed to ``ConversationProfileStore.save``.

    ``plot_text`` and ``status`` are always written. Every other field is
    ``None`` when absent; absent fields never touch the stored value, and
    empty lists count as absent for the list fields.
    """

    plot_text: str | None
    status: str
    participant_name: str | None = None
    plot_history: list[PlotEntry] | None = None
    recent_directions: list[str] | None = None
    arc_status: ArcSnapshot | None = None
    sidebar_collapsed: bool | None = None
    chat_length: int | None = Field(default=None, ge=0)
    last_message_time: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _status_value(cls, value: Any) -> Any:
        return value.value if isinstance(value, Enum) else value


class ProfileIndexEntry(_CamelModel):
    """Summary of one cached profile, used for listing and eviction."""

    participant_id: str
    participant_name: str | None = None
    conversation_id: str | None = None
    last_active: int
    plot_history_count: int = 0
    chat_length: int = 0
