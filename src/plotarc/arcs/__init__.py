"""Narrative arc templates and the arc state machine."""

from plotarc.arcs.catalog import (
    BUILTIN_TEMPLATES,
    ArcTemplate,
    ArcTemplateCatalog,
    BranchPoint,
    Phase,
)
from plotarc.arcs.machine import (
    AdvanceResult,
    ArcInstance,
    ArcStatus,
    Choice,
    ChoiceKind,
    NarrativeArcStateMachine,
    Suggestion,
    SuggestionKind,
    format_branch_name,
)

__all__ = [
    "BUILTIN_TEMPLATES",
    "AdvanceResult",
    "ArcInstance",
    "ArcStatus",
    "ArcTemplate",
    "ArcTemplateCatalog",
    "BranchPoint",
    "Choice",
    "ChoiceKind",
    "NarrativeArcStateMachine",
    "Phase",
    "Suggestion",
    "SuggestionKind",
    "format_branch_name",
]
