"""Arc template registry.

An arc template is an ordered list of weighted phases plus optional
branch points. Templates are immutable; the catalog is a read-only lookup
that never raises for unknown ids.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Phase:
    """One named stage of an arc.

    ``weight`` is descriptive metadata (relative share of the arc); it does
    not influence progress or suggestion order.
    """

    name: str
    description: str
    weight: int = 0


@dataclass(frozen=True)
class BranchPoint:
    """Alternative directions offered while an arc is in ``from_phase``."""

    from_phase: str
    options: tuple[str, ...]


@dataclass(frozen=True)
class ArcTemplate:
    """Immutable arc definition.

    Raises:
        ValueError: If phase names repeat or a branch point references a
            phase that does not exist.
    """

    id: str
    display_name: str
    phases: tuple[Phase, ...]
    branch_points: tuple[BranchPoint, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        names = [p.name for p in self.phases]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(
                f"Template '{self.id}' has duplicate phase names: {', '.join(duplicates)}"
            )
        known = set(names)
        for bp in self.branch_points:
            if bp.from_phase not in known:
                raise ValueError(
                    f"Template '{self.id}' branch point references unknown phase "
                    f"'{bp.from_phase}'"
                )

    @property
    def phase_names(self) -> list[str]:
        return [p.name for p in self.phases]

    def branch_options(self, phase_name: str) -> list[str]:
        """Return branch options for *phase_name* in declaration order."""
        options: list[str] = []
        for bp in self.branch_points:
            if bp.from_phase == phase_name:
                options.extend(bp.options)
        return options


def _template(
    id: str,
    display_name: str,
    phases: list[tuple[str, str, int]],
    branching: list[tuple[str, tuple[str, ...]]] | None = None,
) -> ArcTemplate:
    return ArcTemplate(
        id=id,
        display_name=display_name,
        phases=tuple(Phase(name, desc, weight) for name, desc, weight in phases),
        branch_points=tuple(BranchPoint(src, opts) for src, opts in (branching or [])),
    )


BUILTIN_TEMPLATES: tuple[ArcTemplate, ...] = (
    _template(
        "romance",
        "Romance Arc",
        [
            ("introduction", "Meeting and initial attraction", 20),
            ("getting_to_know", "Developing relationship", 25),
            ("complication", "Conflict or obstacle", 20),
            ("tension", "Emotional climax", 20),
            ("resolution", "Relationship resolution", 15),
        ],
        [
            ("introduction", ("friends_to_lovers", "enemies_to_lovers", "strangers_to_lovers")),
            ("getting_to_know", ("slow_burn", "quick_connection", "friendship_first")),
            ("complication", ("external_obstacle", "internal_conflict", "misunderstanding")),
        ],
    ),
    _template(
        "adventure",
        "Adventure Arc",
        [
            ("call_to_adventure", "The quest begins", 15),
            ("preparation", "Gathering resources/companions", 20),
            ("challenges", "Obstacles and trials", 30),
            ("climax", "Major confrontation", 25),
            ("resolution", "Victory and return", 10),
        ],
        [
            ("call_to_adventure", ("mysterious_map", "urgent_quest", "accidental_discovery")),
            ("challenges", ("physical_trials", "moral_dilemmas", "mystery_solving")),
        ],
    ),
    _template(
        "mystery",
        "Mystery Arc",
        [
            ("hook", "Mystery introduced", 15),
            ("investigation", "Gathering clues", 35),
            ("revelation", "Key discovery", 25),
            ("confrontation", "Confronting the truth", 15),
            ("conclusion", "Case solved", 10),
        ],
        [
            ("hook", ("crime_scene", "missing_person", "strange_event")),
            ("investigation", ("detective_work", "interviews", "forensic_analysis")),
        ],
    ),
    _template(
        "friendship",
        "Friendship Arc",
        [
            ("first_meeting", "Characters meet", 25),
            ("bonding", "Getting to know each other", 30),
            ("test", "Friendship tested", 25),
            ("growth", "Stronger bond", 20),
        ],
        [
            ("first_meeting", ("unlikely_meeting", "forced_together", "mutual_interest")),
            ("bonding", ("shared_interests", "helping_each_other", "adventure_together")),
        ],
    ),
    _template(
        "hero_journey",
        "Hero's Journey",
        [
            ("ordinary_world", "Normal life", 10),
            ("call_to_adventure", "Called to action", 15),
            ("refusal", "Initial hesitation", 5),
            ("mentor", "Guidance received", 10),
            ("crossing_threshold", "Commit to journey", 15),
            ("tests", "Trials and allies", 20),
            ("ordeal", "Major crisis", 15),
            ("reward", "Achievement", 5),
            ("return", "Return transformed", 5),
        ],
    ),
)


class ArcTemplateCatalog:
    """Read-only registry of arc templates keyed by id."""

    def __init__(self, templates: Iterable[ArcTemplate] | None = None) -> None:
        source = BUILTIN_TEMPLATES if templates is None else templates
        self._templates: dict[str, ArcTemplate] = {}
        for template in source:
            if template.id in self._templates:
                raise ValueError(f"Duplicate arc template id '{template.id}'")
            self._templates[template.id] = template

    def get_template(self, template_id: str) -> ArcTemplate | None:
        """Return the template for *template_id*, or None if unknown."""
        return self._templates.get(template_id)

    def template_ids(self) -> list[str]:
        return list(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self) -> Iterator[ArcTemplate]:
        return iter(self._templates.values())
