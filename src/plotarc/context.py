"""Read-only view of the host chat application.

The host owns the participant (character) data and the chat log. plotarc
only reads them through a ``ContextProvider``; nothing here mutates host
state.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class Participant:
    """The character a conversation is held with."""

    id: str
    name: str
    description: str = ""
    personality: str = ""
    scenario: str = ""


@dataclass(frozen=True)
class ChatMessage:
    """A single message from the host chat log."""

    name: str
    text: str
    is_user: bool = False
    send_date: str | None = None


@runtime_checkable
class ContextProvider(Protocol):
    """Protocol for host context accessors."""

    def participant(self) -> Participant | None:
        """Return the active participant, or None if nothing is selected."""
        ...

    def conversation_id(self) -> str | None:
        """Return the id of the open conversation, or None."""
        ...

    def recent_messages(self, limit: int = 10) -> list[ChatMessage]:
        """Return up to *limit* most recent messages, oldest first."""
        ...


@dataclass
class StaticContextProvider:
    """ContextProvider over fixed values, for tests and offline tools."""

    active: Participant | None = None
    conversation: str | None = None
    messages: Sequence[ChatMessage] = field(default_factory=list)

    def participant(self) -> Participant | None:
        return self.active

    def conversation_id(self) -> str | None:
        return self.conversation

    def recent_messages(self, limit: int = 10) -> list[ChatMessage]:
        if limit <= 0:
            return []
        return list(self.messages[-limit:])
