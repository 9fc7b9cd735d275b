"""Narrative arc state machine.

Tracks at most one active arc per conversation. The machine moves
Idle -> Active on ``start_arc``, stays Active while ``advance_phase``
leaves phases remaining (and on ``make_choice``), and returns to Idle when
the last phase is completed or on ``reset``.

The machine never touches storage. ``get_status`` produces plain data that
the profile store embeds in a conversation profile, and ``resume``
accepts that same data after a reload.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from plotarc.arcs.catalog import ArcTemplate, ArcTemplateCatalog
from plotarc.clock import Clock, now_ms
from plotarc.errors import InvalidBranchError, NoActiveArcError, UnknownTemplateError
from plotarc.observability.logging import get_logger

if TYPE_CHECKING:
    from plotarc.context import ChatMessage, Participant

log = get_logger(__name__)

MAX_SUGGESTIONS = 3
MAX_START_SUGGESTIONS = 2


class ChoiceKind(str, Enum):
    """Kind of choice recorded in an arc's choice log."""

    PHASE_CONTINUATION = "phase_continuation"
    BRANCH_SELECTION = "branch_selection"


class SuggestionKind(str, Enum):
    """Kind of plot direction offered by ``get_suggestions``."""

    ARC_START = "arc_start"
    PHASE_CONTINUATION = "phase_continuation"
    BRANCH = "branch"
    NEXT_PHASE = "next_phase"


@dataclass(frozen=True)
class Choice:
    """Append-only record of a choice made during an arc."""

    kind: ChoiceKind
    value: str
    timestamp: int


@dataclass
class ArcInstance:
    """Mutable progress through one arc template."""

    template: ArcTemplate
    phase_index: int = 0
    chosen_branch: str | None = None
    choice_log: list[Choice] = field(default_factory=list)
    completed_phases: list[str] = field(default_factory=list)
    subject_ref: str | None = None
    started_at: int = 0
    # choices made before a reload; the log itself is not persisted
    resumed_choice_count: int = 0

    @property
    def template_id(self) -> str:
        return self.template.id

    @property
    def total_phases(self) -> int:
        return len(self.template.phases)

    @property
    def is_complete(self) -> bool:
        return self.phase_index >= self.total_phases

    @property
    def current_phase_name(self) -> str | None:
        if self.is_complete:
            return None
        return self.template.phases[self.phase_index].name

    def progress(self) -> int:
        return round(100 * self.phase_index / self.total_phases)

    @property
    def choice_count(self) -> int:
        return self.resumed_choice_count + len(self.choice_log)


@dataclass(frozen=True)
class Suggestion:
    """A plot direction the caller may hand to the text generator."""

    kind: SuggestionKind
    description: str
    arc_progress: int = 0
    template_id: str | None = None
    phase: str | None = None
    branch: str | None = None
    options: tuple[str, ...] = ()
    subject_name: str | None = None
    recent_window: tuple[ChatMessage, ...] = ()


@dataclass(frozen=True)
class ArcStatus:
    """Serializable projection of the machine state."""

    has_active_arc: bool
    template_id: str | None
    template_name: str | None
    phase_name: str | None
    progress: int
    phase_index: int
    total_phases: int
    completed_arcs: int
    completed_phases: tuple[str, ...] = ()
    chosen_branch: str | None = None
    choice_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["completed_phases"] = list(self.completed_phases)
        return data


@dataclass(frozen=True)
class AdvanceResult:
    """Outcome of ``advance_phase``.

    ``status`` is captured after the phase index moves but before a
    completed arc is archived, so the completing call reports 100%.
    """

    completed: bool
    status: ArcStatus


def _count(snapshot: Mapping[str, Any] | None, name: str) -> int:
    value = snapshot.get(name) if snapshot else None
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(value, 0)


def format_branch_name(branch: str) -> str:
    """Turn ``enemies_to_lovers`` into ``Enemies To Lovers``."""
    return " ".join(word[:1].upper() + word[1:] for word in branch.split("_"))


class NarrativeArcStateMachine:
    """Owns the active arc and the archive of completed arcs."""

    def __init__(
        self,
        catalog: ArcTemplateCatalog | None = None,
        *,
        strict_branches: bool = True,
        clock: Clock = now_ms,
    ) -> None:
        self.catalog = catalog or ArcTemplateCatalog()
        self.strict_branches = strict_branches
        self._clock = clock
        self.active: ArcInstance | None = None
        self.archived: list[ArcInstance] = []
        # arcs completed before a reload, known only by count
        self.resumed_completed_arcs = 0
        self.milestones: list[str] = []

    @property
    def completed_arcs(self) -> int:
        return self.resumed_completed_arcs + len(self.archived)

    # -- Transitions -----------------------------------------------------------

    def start_arc(self, template_id: str, subject_ref: str | None = None) -> ArcInstance:
        """Start a new arc, discarding any active one.

        Raises:
            UnknownTemplateError: If the catalog has no such template or the
                template has no phases.
        """
        template = self.catalog.get_template(template_id)
        if template is None:
            raise UnknownTemplateError(template_id, available=self.catalog.template_ids())
        if not template.phases:
            raise UnknownTemplateError(template_id, reason="empty")

        if self.active is not None:
            log.info(
                "arc_abandoned",
                template_id=self.active.template_id,
                phase_index=self.active.phase_index,
            )

        self.active = ArcInstance(
            template=template,
            subject_ref=subject_ref,
            started_at=self._clock(),
        )
        self.milestones = []
        log.info("arc_started", template_id=template_id, subject=subject_ref)
        return self.active

    def advance_phase(self) -> AdvanceResult:
        """Complete the current phase and move to the next one.

        Raises:
            NoActiveArcError: If no arc is active.
        """
        arc = self._require_active("advance phase")
        finished = arc.template.phases[arc.phase_index].name
        arc.completed_phases.append(finished)
        arc.phase_index += 1

        status = self.get_status()
        if arc.is_complete:
            self.archived.append(arc)
            self.active = None
            log.info("arc_completed", template_id=arc.template_id, phases=arc.total_phases)
            return AdvanceResult(completed=True, status=status)

        log.debug("arc_phase_advanced", template_id=arc.template_id, phase=arc.current_phase_name)
        return AdvanceResult(completed=False, status=status)

    def make_choice(self, kind: ChoiceKind | str, value: str) -> Choice:
        """Record a choice on the active arc.

        Branch selections also set ``chosen_branch``. With
        ``strict_branches`` the value must be one of the current phase's
        branch options.

        Raises:
            NoActiveArcError: If no arc is active.
            InvalidBranchError: If strict validation rejects the branch.
        """
        arc = self._require_active("make choice")
        kind = ChoiceKind(kind)

        if kind is ChoiceKind.BRANCH_SELECTION and self.strict_branches:
            phase = arc.current_phase_name or ""
            options = arc.template.branch_options(phase)
            if value not in options:
                raise InvalidBranchError(value, phase=phase, options=options)

        choice = Choice(kind=kind, value=value, timestamp=self._clock())
        arc.choice_log.append(choice)
        if kind is ChoiceKind.BRANCH_SELECTION:
            arc.chosen_branch = value
            log.info("arc_branch_selected", template_id=arc.template_id, branch=value)
        return choice

    def reset(self) -> None:
        """Clear the active arc, the archive and the milestone log."""
        self.active = None
        self.archived = []
        self.resumed_completed_arcs = 0
        self.milestones = []
        log.debug("arc_state_reset")

    def record_milestone(self, text: str) -> None:
        """Append a free-form milestone note to the active arc.

        Raises:
            NoActiveArcError: If no arc is active.
        """
        self._require_active("record milestone")
        self.milestones.append(text)

    def resume(self, snapshot: Mapping[str, Any] | None) -> bool:
        """Re-activate an arc from a persisted status snapshot.

        Accepts the dict produced by ``ArcStatus.to_dict`` (or the stored
        snapshot of a profile). The snapshot replaces the machine state:
        its ``completed_arcs`` count carries over even when no arc is
        active, so the next status reports the same total. Returns False
        and leaves the machine idle when the snapshot has no active arc,
        names an unknown template, or points outside the template's phases.
        """
        self.active = None
        self.archived = []
        self.resumed_completed_arcs = _count(snapshot, "completed_arcs")
        if not snapshot or not snapshot.get("template_id"):
            return False
        if snapshot.get("has_active_arc") is False:
            return False

        template = self.catalog.get_template(snapshot["template_id"])
        if template is None or not template.phases:
            log.warning("arc_resume_unknown_template", template_id=snapshot["template_id"])
            return False

        phase_index = snapshot.get("phase_index")
        if phase_index is None:
            phase_name = snapshot.get("phase_name")
            names = template.phase_names
            phase_index = names.index(phase_name) if phase_name in names else None
        if not isinstance(phase_index, int) or not 0 <= phase_index < len(template.phases):
            log.warning(
                "arc_resume_bad_phase",
                template_id=template.id,
                phase_index=phase_index,
            )
            return False

        self.active = ArcInstance(
            template=template,
            phase_index=phase_index,
            chosen_branch=snapshot.get("chosen_branch"),
            completed_phases=list(snapshot.get("completed_phases") or []),
            started_at=self._clock(),
            resumed_choice_count=_count(snapshot, "choice_count"),
        )
        log.debug("arc_resumed", template_id=template.id, phase_index=phase_index)
        return True

    # -- Queries ---------------------------------------------------------------

    def get_progress(self) -> int:
        """Percentage of phases completed, 0 when idle."""
        if self.active is None:
            return 0
        return self.active.progress()

    def get_status(self) -> ArcStatus:
        arc = self.active
        if arc is None:
            return ArcStatus(
                has_active_arc=False,
                template_id=None,
                template_name=None,
                phase_name=None,
                progress=0,
                phase_index=0,
                total_phases=0,
                completed_arcs=self.completed_arcs,
            )
        return ArcStatus(
            has_active_arc=True,
            template_id=arc.template_id,
            template_name=arc.template.display_name,
            phase_name=arc.current_phase_name,
            progress=arc.progress(),
            phase_index=arc.phase_index,
            total_phases=arc.total_phases,
            completed_arcs=self.completed_arcs,
            completed_phases=tuple(arc.completed_phases),
            chosen_branch=arc.chosen_branch,
            choice_count=arc.choice_count,
        )

    def get_suggestions(
        self,
        subject: Participant | None = None,
        recent_window: Sequence[ChatMessage] = (),
    ) -> list[Suggestion]:
        """Return up to three plot directions for the current state.

        Idle: two generic arc-start suggestions. Active: continuation of the
        current phase, then its branch options in template order, then the
        next phase if one remains, truncated to three.
        """
        subject_name = subject.name if subject is not None else None
        window = tuple(recent_window)
        arc = self.active

        if arc is None:
            starts = [
                Suggestion(
                    kind=SuggestionKind.ARC_START,
                    description="Let the story develop organically",
                    subject_name=subject_name,
                    recent_window=window,
                ),
                Suggestion(
                    kind=SuggestionKind.ARC_START,
                    description="Give the story a structured arc",
                    options=tuple(self.catalog.template_ids()),
                    subject_name=subject_name,
                    recent_window=window,
                ),
            ]
            return starts[:MAX_START_SUGGESTIONS]

        progress = arc.progress()
        current = arc.template.phases[arc.phase_index]
        suggestions = [
            Suggestion(
                kind=SuggestionKind.PHASE_CONTINUATION,
                description=f"Continue {current.description}",
                arc_progress=progress,
                template_id=arc.template_id,
                phase=current.name,
                subject_name=subject_name,
                recent_window=window,
            )
        ]
        for option in arc.template.branch_options(current.name):
            suggestions.append(
                Suggestion(
                    kind=SuggestionKind.BRANCH,
                    description=f"Try {format_branch_name(option)}",
                    arc_progress=progress,
                    template_id=arc.template_id,
                    phase=current.name,
                    branch=option,
                    subject_name=subject_name,
                    recent_window=window,
                )
            )
        if arc.phase_index + 1 < arc.total_phases:
            upcoming = arc.template.phases[arc.phase_index + 1]
            suggestions.append(
                Suggestion(
                    kind=SuggestionKind.NEXT_PHASE,
                    description=f"Move to {upcoming.description}",
                    arc_progress=progress,
                    template_id=arc.template_id,
                    phase=upcoming.name,
                    subject_name=subject_name,
                    recent_window=window,
                )
            )
        return suggestions[:MAX_SUGGESTIONS]

    # -- Helpers ---------------------------------------------------------------

    def _require_active(self, operation: str) -> ArcInstance:
        if self.active is None:
            raise NoActiveArcError(operation)
        return self.active
