"""Tests for the narrative arc state machine."""

from __future__ import annotations

import pytest

from plotarc.arcs.catalog import ArcTemplate, ArcTemplateCatalog, BranchPoint, Phase
from plotarc.arcs.machine import (
    ChoiceKind,
    NarrativeArcStateMachine,
    SuggestionKind,
    format_branch_name,
)
from plotarc.context import ChatMessage, Participant
from plotarc.errors import InvalidBranchError, NoActiveArcError, UnknownTemplateError

THREE_PHASE = ArcTemplate(
    "trio",
    "Trio Arc",
    (
        Phase("opening", "the opening move", 30),
        Phase("middle", "the turning point", 40),
        Phase("ending", "the final act", 30),
    ),
    (BranchPoint("opening", ("bold", "cautious")),),
)
EMPTY = ArcTemplate("empty", "Empty Arc", ())


def _machine(**kwargs: object) -> NarrativeArcStateMachine:
    catalog = ArcTemplateCatalog([THREE_PHASE, EMPTY, *ArcTemplateCatalog()])
    return NarrativeArcStateMachine(catalog, clock=lambda: 42, **kwargs)  # type: ignore[arg-type]


class TestStartArc:
    """Idle -> Active."""

    def test_start_creates_active_instance(self) -> None:
        """start_arc activates the template at phase zero."""
        machine = _machine()
        arc = machine.start_arc("trio", subject_ref="alice")

        assert machine.active is arc
        assert arc.phase_index == 0
        assert arc.subject_ref == "alice"
        assert arc.started_at == 42
        assert arc.current_phase_name == "opening"

    def test_unknown_template_raises(self) -> None:
        """Unknown ids raise with the available ids attached."""
        machine = _machine()
        with pytest.raises(UnknownTemplateError) as exc_info:
            machine.start_arc("space_opera")

        assert exc_info.value.template_id == "space_opera"
        assert "trio" in exc_info.value.available
        assert machine.active is None

    def test_empty_template_raises(self) -> None:
        """Templates without phases cannot be started."""
        machine = _machine()
        with pytest.raises(UnknownTemplateError, match="has no phases"):
            machine.start_arc("empty")

    def test_restart_discards_without_archiving(self) -> None:
        """Starting a new arc drops the current one instead of archiving it."""
        machine = _machine()
        machine.start_arc("trio")
        machine.advance_phase()
        machine.start_arc("romance")

        assert machine.active is not None
        assert machine.active.template_id == "romance"
        assert machine.archived == []


class TestAdvancePhase:
    """Phase progression and completion."""

    def test_three_phase_progression(self) -> None:
        """Three advances complete a three-phase arc; a fourth fails."""
        machine = _machine()
        machine.start_arc("trio")

        results = [machine.advance_phase().completed for _ in range(3)]

        assert results == [False, False, True]
        with pytest.raises(NoActiveArcError, match="Cannot advance phase"):
            machine.advance_phase()

    def test_completed_arc_is_archived(self) -> None:
        """Completing the last phase archives the instance."""
        machine = _machine()
        machine.start_arc("trio")
        for _ in range(3):
            machine.advance_phase()

        assert machine.active is None
        assert len(machine.archived) == 1
        assert machine.archived[0].completed_phases == ["opening", "middle", "ending"]
        assert machine.get_status().completed_arcs == 1

    def test_progress_is_monotonic(self) -> None:
        """Progress never decreases while the arc runs."""
        machine = _machine()
        machine.start_arc("trio")
        seen = [machine.get_progress()]
        for _ in range(2):
            seen.append(machine.advance_phase().status.progress)

        assert seen == [0, 33, 67]
        assert seen == sorted(seen)

    def test_completing_snapshot_reports_100_then_idle_reports_0(self) -> None:
        """The completing call's status shows 100; later reads show 0."""
        machine = _machine()
        machine.start_arc("trio")
        machine.advance_phase()
        machine.advance_phase()

        result = machine.advance_phase()

        assert result.completed is True
        assert result.status.progress == 100
        assert result.status.has_active_arc is True
        assert result.status.phase_name is None
        assert machine.get_progress() == 0
        assert machine.get_status().has_active_arc is False

    def test_progress_ignores_weights(self) -> None:
        """Progress is the plain phase ratio."""
        machine = _machine()
        machine.start_arc("romance")
        machine.advance_phase()
        assert machine.get_progress() == 20

    def test_advance_without_arc_raises(self) -> None:
        """advance_phase on an idle machine raises."""
        with pytest.raises(NoActiveArcError):
            _machine().advance_phase()


class TestMakeChoice:
    """Choice log and branch selection."""

    def test_branch_selection_sets_chosen_branch(self) -> None:
        """Branch selections are logged and remembered."""
        machine = _machine()
        machine.start_arc("trio")

        choice = machine.make_choice(ChoiceKind.BRANCH_SELECTION, "bold")

        assert choice.kind is ChoiceKind.BRANCH_SELECTION
        assert choice.timestamp == 42
        assert machine.active is not None
        assert machine.active.chosen_branch == "bold"
        assert machine.active.choice_log == [choice]

    def test_string_kind_is_accepted(self) -> None:
        """Choice kinds can be passed as their string values."""
        machine = _machine()
        machine.start_arc("trio")
        choice = machine.make_choice("phase_continuation", "keep going")

        assert choice.kind is ChoiceKind.PHASE_CONTINUATION
        assert machine.active is not None
        assert machine.active.chosen_branch is None

    def test_unknown_kind_raises_value_error(self) -> None:
        """Kinds outside the enum are rejected."""
        machine = _machine()
        machine.start_arc("trio")
        with pytest.raises(ValueError):
            machine.make_choice("teleport", "x")

    def test_invalid_branch_rejected_when_strict(self) -> None:
        """Strict machines reject branches the phase does not offer."""
        machine = _machine()
        machine.start_arc("trio")

        with pytest.raises(InvalidBranchError) as exc_info:
            machine.make_choice(ChoiceKind.BRANCH_SELECTION, "reckless")

        assert exc_info.value.options == ["bold", "cautious"]
        assert machine.active is not None
        assert machine.active.choice_log == []

    def test_any_branch_accepted_when_lenient(self) -> None:
        """Non-strict machines record any branch string."""
        machine = _machine(strict_branches=False)
        machine.start_arc("trio")
        machine.make_choice(ChoiceKind.BRANCH_SELECTION, "reckless")

        assert machine.active is not None
        assert machine.active.chosen_branch == "reckless"

    def test_choice_without_arc_raises(self) -> None:
        """make_choice on an idle machine raises."""
        with pytest.raises(NoActiveArcError, match="Cannot make choice"):
            _machine().make_choice(ChoiceKind.PHASE_CONTINUATION, "x")

    def test_choice_count_in_status(self) -> None:
        """Status reports the number of logged choices."""
        machine = _machine()
        machine.start_arc("trio")
        machine.make_choice(ChoiceKind.PHASE_CONTINUATION, "a")
        machine.make_choice(ChoiceKind.BRANCH_SELECTION, "cautious")

        status = machine.get_status()
        assert status.choice_count == 2
        assert status.chosen_branch == "cautious"


class TestSuggestions:
    """get_suggestions output."""

    def test_idle_gives_two_start_suggestions(self) -> None:
        """An idle machine offers organic play or a structured arc."""
        machine = _machine()
        suggestions = machine.get_suggestions()

        assert len(suggestions) == 2
        assert all(s.kind is SuggestionKind.ARC_START for s in suggestions)
        assert suggestions[0].description == "Let the story develop organically"
        assert "trio" in suggestions[1].options

    def test_active_order_and_cap(self) -> None:
        """Continuation first, then branches, truncated to three."""
        machine = _machine()
        machine.start_arc("romance")

        suggestions = machine.get_suggestions()

        assert [s.kind for s in suggestions] == [
            SuggestionKind.PHASE_CONTINUATION,
            SuggestionKind.BRANCH,
            SuggestionKind.BRANCH,
        ]
        assert suggestions[0].description == "Continue Meeting and initial attraction"
        assert suggestions[1].description == "Try Friends To Lovers"
        assert suggestions[2].branch == "enemies_to_lovers"

    def test_next_phase_offered_when_room(self) -> None:
        """Without branches, the next phase follows the continuation."""
        machine = _machine()
        machine.start_arc("trio")
        machine.advance_phase()

        suggestions = machine.get_suggestions()

        assert [s.kind for s in suggestions] == [
            SuggestionKind.PHASE_CONTINUATION,
            SuggestionKind.NEXT_PHASE,
        ]
        assert suggestions[1].description == "Move to the final act"
        assert suggestions[1].phase == "ending"
        assert all(s.arc_progress == 33 for s in suggestions)

    def test_last_phase_has_only_continuation(self) -> None:
        """The final phase has nothing after it."""
        machine = _machine()
        machine.start_arc("trio")
        machine.advance_phase()
        machine.advance_phase()

        suggestions = machine.get_suggestions()
        assert [s.kind for s in suggestions] == [SuggestionKind.PHASE_CONTINUATION]

    def test_subject_and_window_carried(self) -> None:
        """Suggestions carry the subject name and recent window."""
        machine = _machine()
        machine.start_arc("trio")
        window = [ChatMessage(name="Alice", text="Hi")]

        suggestions = machine.get_suggestions(Participant(id="a", name="Alice"), window)

        assert suggestions[0].subject_name == "Alice"
        assert suggestions[0].recent_window == tuple(window)

    def test_recomputed_each_call(self) -> None:
        """Suggestions follow the current phase."""
        machine = _machine()
        machine.start_arc("trio")
        before = machine.get_suggestions()[0].phase
        machine.advance_phase()
        after = machine.get_suggestions()[0].phase

        assert (before, after) == ("opening", "middle")


class TestResetAndResume:
    """reset, milestones and resume."""

    def test_reset_is_idempotent(self) -> None:
        """Resetting twice looks the same as resetting once."""
        machine = _machine()
        machine.start_arc("trio")
        machine.record_milestone("met at the inn")
        for _ in range(3):
            machine.advance_phase()
        machine.start_arc("trio")

        machine.reset()
        once = (machine.active, machine.archived, machine.milestones, machine.get_status())
        machine.reset()
        twice = (machine.active, machine.archived, machine.milestones, machine.get_status())

        assert once == twice
        assert once[0] is None
        assert once[1] == []

    def test_record_milestone(self) -> None:
        """Milestones accumulate for the active arc."""
        machine = _machine()
        machine.start_arc("trio")
        machine.record_milestone("first kiss")
        assert machine.milestones == ["first kiss"]

    def test_record_milestone_without_arc_raises(self) -> None:
        """Milestones need an active arc."""
        with pytest.raises(NoActiveArcError):
            _machine().record_milestone("x")

    def test_resume_from_status(self) -> None:
        """A status snapshot round-trips through resume."""
        machine = _machine()
        machine.start_arc("trio")
        machine.advance_phase()
        snapshot = machine.get_status().to_dict()

        other = _machine()
        assert other.resume(snapshot) is True
        assert other.active is not None
        assert other.active.phase_index == 1
        assert other.active.completed_phases == ["opening"]
        assert other.get_progress() == 33

    def test_resume_carries_counts(self) -> None:
        """Completed arcs and choices survive a resume and keep counting."""
        machine = _machine()
        machine.start_arc("trio")
        for _ in range(3):
            machine.advance_phase()
        machine.start_arc("trio")
        machine.make_choice(ChoiceKind.BRANCH_SELECTION, "bold")
        snapshot = machine.get_status().to_dict()

        other = _machine()
        assert other.resume(snapshot) is True
        assert other.get_status().completed_arcs == 1
        assert other.get_status().choice_count == 1

        other.make_choice(ChoiceKind.PHASE_CONTINUATION, "keep going")
        for _ in range(3):
            other.advance_phase()
        assert other.get_status().completed_arcs == 2

    def test_resume_idle_snapshot_keeps_completed_count(self) -> None:
        """An idle snapshot still restores how many arcs were completed."""
        machine = _machine()
        assert machine.resume({"has_active_arc": False, "completed_arcs": 3}) is False
        assert machine.active is None
        assert machine.get_status().completed_arcs == 3

        machine.reset()
        assert machine.get_status().completed_arcs == 0

    def test_resume_by_phase_name(self) -> None:
        """A snapshot without an index resumes from the phase name."""
        machine = _machine()
        assert machine.resume({"template_id": "trio", "phase_name": "ending"}) is True
        assert machine.active is not None
        assert machine.active.phase_index == 2

    @pytest.mark.parametrize(
        "snapshot",
        [
            None,
            {},
            {"has_active_arc": False, "template_id": "trio", "phase_index": 0},
            {"template_id": "space_opera", "phase_index": 0},
            {"template_id": "trio", "phase_index": 3},
            {"template_id": "trio", "phase_name": "epilogue"},
        ],
    )
    def test_resume_rejects_unusable_snapshots(self, snapshot: dict[str, object] | None) -> None:
        """Bad snapshots leave the machine idle."""
        machine = _machine()
        machine.start_arc("trio")
        assert machine.resume(snapshot) is False
        assert machine.active is None


def test_format_branch_name() -> None:
    """Snake-case branch ids become title case."""
    assert format_branch_name("enemies_to_lovers") == "Enemies To Lovers"
    assert format_branch_name("slow_burn") == "Slow Burn"
