"""Plot composition: prompt assembly around an injected text generator.

The generator is any object with ``async generate(prompt) -> str``; the
host decides which model answers. PlotComposer only builds the prompt,
awaits the generator and cleans what comes back.
"""

from __future__ import annotations

import random
import re
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from plotarc.arcs.machine import SuggestionKind, format_branch_name
from plotarc.arcs.prose import (
    DEFAULT_NAME,
    branch_plot,
    clean_plot_context,
    contextual_hint,
    extract_recent_context,
    fallback_context,
    phase_plot,
)
from plotarc.config import Intensity, PlotStyle
from plotarc.errors import GenerationFailure
from plotarc.observability.logging import get_logger

if TYPE_CHECKING:
    from plotarc.arcs.machine import Suggestion
    from plotarc.context import ChatMessage, Participant

log = get_logger(__name__)


@runtime_checkable
class TextGenerator(Protocol):
    """Anything that can turn a prompt into text."""

    async def generate(self, prompt: str) -> str: ...


PLOT_GENERATION_PROMPT = """\
You are a narrative architect creating compelling story hooks for immersive \
roleplay. Based on the character information and recent conversation context \
provided, generate a plot context that drives the story forward.

CHARACTER INFORMATION:
Name: {{ name }}
Personality: {{ personality }}
Description: {{ description }}
Scenario: {{ scenario }}

RECENT CONVERSATION CONTEXT:
{{ recent_chat }}

TASK:
Generate a plot context (2-4 sentences) that creates tension or emotional \
stakes, gives the character a clear motivation, and feels natural within the \
roleplay.

STORY DIRECTION:
{{ direction }}

STYLE: {{ style }}
INTENSITY: {{ intensity }}

FORMAT:
Return ONLY the plot context wrapped in square brackets, for example \
"[A figure from Character's past returns carrying evidence that changes everything]".

PLOT CONTEXT:"""

STYLE_DESCRIPTIONS = {
    PlotStyle.NATURAL: "organic story development with realistic character reactions",
    PlotStyle.DRAMATIC: "high-stakes situations with intense emotional weight",
    PlotStyle.ROMANTIC: "deep emotional connections with relationship tension",
    PlotStyle.MYSTERIOUS: "intriguing unknowns with suspenseful revelations",
    PlotStyle.ADVENTURE: "exciting challenges with heroic growth and discovery",
    PlotStyle.COMEDY: "light-hearted situations with amusing complications",
}

INTENSITY_DESCRIPTIONS = {
    Intensity.SUBTLE: "lightly atmospheric, gentle undertones",
    Intensity.MODERATE: "noticeable narrative drive with room for natural flow",
    Intensity.INTENSE: "intense plot pressure with urgent conflicts",
}

NOT_SPECIFIED = "Not specified"
NO_RECENT_CHAT = "No conversation history available."
NO_DIRECTION = "Let the story unfold with natural progression"

_VAR_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_prompt(template: str, values: dict[str, Any]) -> str:
    """Substitute ``{{ name }}`` placeholders; unknown names stay as-is."""

    def replace_match(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in values:
            return str(values[name])
        return match.group(0)

    return _VAR_PATTERN.sub(replace_match, template)


class PlotComposer:
    """Builds plot prompts and turns generator output into a plot line."""

    def __init__(self, generator: TextGenerator, rng: random.Random | None = None) -> None:
        self.generator = generator
        self.rng = rng or random.Random()

    def arc_guidance(self, suggestion: Suggestion | None, recent_chat: str = "") -> str | None:
        """Guidance text for the prompt derived from an arc suggestion.

        Returns None for idle suggestions, which carry no arc position.
        """
        if suggestion is None or suggestion.kind is SuggestionKind.ARC_START:
            return None
        hint = contextual_hint(recent_chat, rng=self.rng)
        if suggestion.kind is SuggestionKind.BRANCH and suggestion.branch:
            line = branch_plot(suggestion.branch, suggestion.subject_name, hint)
            heading = f"Branch: {format_branch_name(suggestion.branch)}"
        else:
            line = phase_plot(suggestion.phase or "", suggestion.subject_name, hint)
            heading = f"Phase: {suggestion.phase}"
        return (
            f"Arc: {suggestion.template_id} ({suggestion.arc_progress}% complete)\n"
            f"{heading}\n"
            f"Aim: {suggestion.description}\n"
            f"Example: {line}"
        )

    def build_prompt(
        self,
        participant: Participant | None,
        recent: Sequence[ChatMessage] = (),
        *,
        style: PlotStyle | str = PlotStyle.NATURAL,
        intensity: Intensity | str = Intensity.MODERATE,
        direction: str | None = None,
        suggestion: Suggestion | None = None,
    ) -> str:
        recent_chat = extract_recent_context(recent)
        style_key = _coerce(PlotStyle, style, PlotStyle.NATURAL)
        intensity_key = _coerce(Intensity, intensity, Intensity.MODERATE)
        prompt = render_prompt(
            PLOT_GENERATION_PROMPT,
            {
                "name": participant.name if participant else DEFAULT_NAME,
                "personality": (participant.personality if participant else "") or NOT_SPECIFIED,
                "description": (participant.description if participant else "") or NOT_SPECIFIED,
                "scenario": (participant.scenario if participant else "") or NOT_SPECIFIED,
                "recent_chat": recent_chat or NO_RECENT_CHAT,
                "direction": direction or NO_DIRECTION,
                "style": STYLE_DESCRIPTIONS[style_key],
                "intensity": INTENSITY_DESCRIPTIONS[intensity_key],
            },
        )
        guidance = self.arc_guidance(suggestion, recent_chat)
        if guidance:
            prompt += f"\n\nCURRENT STORY ARC:\n{guidance}"
        return prompt

    async def compose(
        self,
        participant: Participant | None,
        recent: Sequence[ChatMessage] = (),
        *,
        style: PlotStyle | str = PlotStyle.NATURAL,
        intensity: Intensity | str = Intensity.MODERATE,
        direction: str | None = None,
        suggestion: Suggestion | None = None,
    ) -> str:
        """Generate and clean one plot line.

        Raises:
            GenerationFailure: If the generator raises or returns nothing
                usable after cleanup.
        """
        prompt = self.build_prompt(
            participant,
            recent,
            style=style,
            intensity=intensity,
            direction=direction,
            suggestion=suggestion,
        )
        try:
            raw = await self.generator.generate(prompt)
        except Exception as e:
            log.warning("plot_generation_failed", error=str(e))
            raise GenerationFailure(str(e)) from e

        plot = clean_plot_context(raw)
        if not plot:
            log.warning("plot_generation_empty", raw_length=len(raw or ""))
            raise GenerationFailure("generator returned no usable text")
        log.debug(
            "plot_generated",
            length=len(plot),
            template_id=suggestion.template_id if suggestion else None,
        )
        return plot

    def fallback(
        self,
        participant: Participant | None,
        style: PlotStyle | str = PlotStyle.NATURAL,
    ) -> str:
        """Canned plot line used when generation is unavailable."""
        name = participant.name if participant else None
        style_key = _coerce(PlotStyle, style, PlotStyle.NATURAL)
        return fallback_context(name, style_key.value, rng=self.rng)


def _coerce(enum_type: Any, value: Any, default: Any) -> Any:
    try:
        return enum_type(value)
    except ValueError:
        return default
