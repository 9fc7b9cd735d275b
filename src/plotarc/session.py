"""Per-conversation plot session.

PlotSession wires the host context, the arc state machine, the plot
composer and the profile store together for whichever conversation the
host currently has open. It keeps the in-memory view (current plot,
history, directions) and persists it through the store.
"""

from __future__ import annotations

import inspect
import uuid
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from plotarc.clock import Clock, now_ms
from plotarc.config import PlotArcConfig
from plotarc.errors import GenerationFailure
from plotarc.observability.logging import bind_conversation, get_logger
from plotarc.sanitize import sanitize_direction, sanitize_plot_text, validate_numeric_input
from plotarc.storage.models import (
    ArcSnapshot,
    ConversationKey,
    PlotEntry,
    ProfileStatus,
    ProfileUpdate,
)
from plotarc.storage.profile_store import RestoredView, dedupe_directions

if TYPE_CHECKING:
    from plotarc.arcs.machine import AdvanceResult, ArcInstance, NarrativeArcStateMachine
    from plotarc.context import ContextProvider
    from plotarc.generation import PlotComposer
    from plotarc.storage.profile_store import ConversationProfileStore, SaveResult

log = get_logger(__name__)

RECENT_MESSAGE_WINDOW = 10

Subscriber = Callable[[RestoredView], Awaitable[None] | None]


def inject_plot_context(payload: dict[str, Any], plot: str) -> bool:
    """Insert *plot* into a generation payload in place.

    A non-empty ``prompt`` string gets the plot prepended; otherwise a
    ``messages`` list gets a leading system message.

    Returns:
        True if the payload had a place for the plot.
    """
    prompt = payload.get("prompt")
    if isinstance(prompt, str) and prompt:
        payload["prompt"] = f"{plot}\n\n{prompt}"
        return True
    messages = payload.get("messages")
    if isinstance(messages, list):
        messages.insert(0, {"role": "system", "content": plot})
        return True
    log.warning("plot_injection_failed", keys=sorted(payload))
    return False


class PlotSession:
    """Plot state for the conversation the host has open."""

    def __init__(
        self,
        context: ContextProvider,
        machine: NarrativeArcStateMachine,
        composer: PlotComposer,
        store: ConversationProfileStore,
        config: PlotArcConfig | None = None,
        *,
        clock: Clock = now_ms,
    ) -> None:
        self.context = context
        self.machine = machine
        self.composer = composer
        self.store = store
        self.config = config or PlotArcConfig()
        self._clock = clock

        self.plot_text: str | None = None
        self.status: str = ProfileStatus.READY.value
        self.plot_history: list[PlotEntry] = []
        self.recent_directions: list[str] = []
        self.history_limit = self.config.history_limit
        self.turn_counter = 0
        self.last_generation_turn = 0
        self._subscribers: list[Subscriber] = []

    @property
    def key(self) -> ConversationKey | None:
        """Key of the open conversation, or None when nothing is open."""
        participant = self.context.participant()
        conversation_id = self.context.conversation_id()
        if participant is None or not conversation_id:
            return None
        return ConversationKey(participant.id, conversation_id)

    # -- Persistence -----------------------------------------------------------

    async def load(self) -> RestoredView | None:
        """Load the open conversation's profile and apply it.

        The arc resumes from the stored snapshot. Subscribers are notified
        inside a restore block, so a subscriber that saves in response
        does not write the restored state straight back.
        """
        key = self.key
        self.turn_counter = 0
        self.last_generation_turn = 0
        if key is None:
            log.debug("session_load_skipped", reason="no open conversation")
            return None
        with bind_conversation(key):
            return await self._load_into(key)

    async def _load_into(self, key: ConversationKey) -> RestoredView | None:
        result = await self.store.load(key)
        if result is None:
            self.plot_text = None
            self.status = ProfileStatus.READY.value
            self.plot_history = []
            self.recent_directions = []
            self.machine.reset()
            log.debug("session_started_fresh")
            return None

        view = self.store.restore(result.profile, history_limit=self.history_limit)
        with self.store.restoring():
            self.plot_text = view.plot_text
            self.status = view.status
            self.plot_history = list(view.plot_history)
            self.recent_directions = list(view.recent_directions)
            self.machine.reset()
            if view.arc is not None:
                self.machine.resume(view.arc.model_dump())
            await self._notify(view)

        log.info("session_loaded", source=result.source)
        return view

    async def save(self) -> SaveResult | None:
        """Persist the session state for the open conversation."""
        key = self.key
        if key is None:
            return None
        participant = self.context.participant()
        recent = self.context.recent_messages(1)
        update = ProfileUpdate(
            plot_text=self.plot_text,
            status=self.status,
            participant_name=participant.name if participant else None,
            plot_history=self.plot_history,
            recent_directions=self.recent_directions,
            arc_status=ArcSnapshot.model_validate(self.machine.get_status().to_dict()),
            last_message_time=recent[-1].send_date if recent else None,
        )
        result = await self.store.save(key, update, history_limit=self.history_limit)
        if result.storage_full:
            log.warning("session_storage_full", key=str(key))
        return result

    # -- Plot generation -------------------------------------------------------

    async def generate_plot(self, direction: str | None = None) -> str:
        """Compose a plot line for the current arc position.

        The top suggestion steers generation. The new plot is stored with
        status ``pending`` until it is injected or accepted.

        Raises:
            GenerationFailure: If generation fails and
                ``fallback_on_failure`` is off. Session state is unchanged.
        """
        participant = self.context.participant()
        recent = self.context.recent_messages(RECENT_MESSAGE_WINDOW)
        suggestions = self.machine.get_suggestions(participant, recent)
        cleaned_direction = sanitize_direction(direction) if direction else None

        try:
            plot = await self.composer.compose(
                participant,
                recent,
                style=self.config.style,
                intensity=self.config.intensity,
                direction=cleaned_direction,
                suggestion=suggestions[0] if suggestions else None,
            )
        except GenerationFailure:
            if not self.config.fallback_on_failure:
                raise
            plot = self.composer.fallback(participant, self.config.style)
            log.warning("plot_fallback_used", style=self.config.style.value)

        self.plot_text = plot
        self.status = ProfileStatus.PENDING.value
        if cleaned_direction:
            self._remember_direction(cleaned_direction)
        await self.save()
        await self._notify(self.view())
        return plot

    def should_generate(self) -> bool:
        """True when enough requests have passed since the last plot."""
        return self.turn_counter - self.last_generation_turn >= self.config.frequency

    async def on_generation_request(self, payload: dict[str, Any]) -> bool:
        """Host hook for an outgoing generation request.

        Counts the turn and, every ``frequency`` turns, generates a plot
        and injects it into *payload*. Generation errors are logged and the
        payload is left untouched.

        Returns:
            True if a plot was injected.
        """
        self.turn_counter += 1
        if not self.should_generate():
            log.debug(
                "plot_generation_not_due",
                turn=self.turn_counter,
                frequency=self.config.frequency,
            )
            return False
        key = self.key
        if key is None:
            return False

        with bind_conversation(key):
            try:
                plot = await self.generate_plot()
            except GenerationFailure as e:
                log.error("plot_injection_aborted", error=str(e))
                return False
            self.last_generation_turn = self.turn_counter

            if not inject_plot_context(payload, plot):
                return False
            self.add_to_history(plot)
            self.status = ProfileStatus.INJECTED.value
            await self.save()
            await self._notify(self.view())
            log.info("plot_injected", turn=self.turn_counter, length=len(plot))
        return True

    async def accept_plot(self, text: str | None = None) -> bool:
        """Accept *text* (or the current plot) as the active plot line.

        Returns:
            False if there is nothing to accept.
        """
        plot = sanitize_plot_text(text) if text is not None else self.plot_text
        if not plot:
            log.warning("accept_plot_empty")
            return False
        self.plot_text = plot
        self.status = ProfileStatus.READY.value
        self.add_to_history(plot)
        await self.save()
        await self._notify(self.view())
        return True

    # -- Arc control -----------------------------------------------------------

    async def start_arc(self, template_id: str) -> ArcInstance:
        participant = self.context.participant()
        arc = self.machine.start_arc(template_id, participant.id if participant else None)
        await self.save()
        return arc

    async def advance_phase(self) -> AdvanceResult:
        result = self.machine.advance_phase()
        await self.save()
        return result

    # -- Local state -----------------------------------------------------------

    def add_to_history(self, text: str) -> PlotEntry:
        """Record *text* as the newest history entry, trimming to the limit."""
        entry = PlotEntry(text=text, timestamp=self._clock(), id=uuid.uuid4().hex)
        self.plot_history.insert(0, entry)
        del self.plot_history[self.history_limit :]
        return entry

    def save_direction(self, text: str) -> str | None:
        """Remember a user direction. Returns the stored form, or None."""
        direction = sanitize_direction(text)
        if direction is None:
            return None
        self._remember_direction(direction)
        return direction

    def _remember_direction(self, direction: str) -> None:
        self.recent_directions = dedupe_directions(
            [direction, *self.recent_directions], self.config.max_recent_directions
        )

    def set_history_limit(self, limit: Any) -> int:
        """Change how many history entries this session keeps (clamped to 1..50)."""
        self.history_limit = validate_numeric_input(limit, 1, 50, self.config.history_limit)
        del self.plot_history[self.history_limit :]
        return self.history_limit

    def view(self) -> RestoredView:
        """Current session state in display form."""
        participant = self.context.participant()
        return RestoredView(
            plot_text=self.plot_text,
            status=self.status,
            plot_history=list(self.plot_history),
            recent_directions=list(self.recent_directions),
            arc=ArcSnapshot.model_validate(self.machine.get_status().to_dict()),
            participant_name=participant.name if participant else None,
        )

    # -- Subscribers -----------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a state-change callback. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _notify(self, view: RestoredView) -> None:
        for callback in list(self._subscribers):
            result = callback(view)
            if inspect.isawaitable(result):
                await result
