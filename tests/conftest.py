"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from plotarc.context import ChatMessage, Participant, StaticContextProvider


class FakeClock:
    """Deterministic millisecond clock; each call advances by ``step``."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1000) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        self.now += self.step
        return self.now


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def clock() -> FakeClock:
    """A fresh deterministic clock."""
    return FakeClock()


@pytest.fixture
def alice() -> Participant:
    """A participant with a full character card."""
    return Participant(
        id="alice",
        name="Alice",
        description="A wandering cartographer",
        personality="curious, guarded",
        scenario="Stranded in a mountain inn",
    )


@pytest.fixture
def chat_context(alice: Participant) -> StaticContextProvider:
    """Context provider with an open conversation and a short chat log."""
    return StaticContextProvider(
        active=alice,
        conversation="chat-1",
        messages=[
            ChatMessage(name="You", text="Why are you here?", is_user=True),
            ChatMessage(name="Alice", text="The pass is closed. I'm waiting.", send_date="t1"),
        ],
    )
