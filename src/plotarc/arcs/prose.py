"""Static plot-line tables and text helpers.

These tables turn an arc phase or branch into a bracketed guidance line
without calling a model. ``clean_plot_context`` strips model artifacts
from generated text before it is shown or stored.
"""

from __future__ import annotations

import random
import re
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from plotarc.context import ChatMessage

# {name} is the participant name, {hint} a contextual hint.
PHASE_PLOTS: dict[str, str] = {
    "introduction": "{name} takes in their new surroundings, aware that everything is about to change. Recent conversation suggests {hint}",
    "getting_to_know": "{name} discovers layers to their situation that weren't obvious at first. The conversation patterns indicate {hint}",
    "complication": "{name} faces an unexpected obstacle that threatens to derail their progress. Recent developments suggest {hint}",
    "tension": "{name} experiences mounting pressure as stakes escalate. The conversation dynamics reveal {hint}",
    "resolution": "{name} reaches a pivotal moment that changes everything. The ongoing dialogue points to {hint}",
    "call_to_adventure": "{name} receives an irresistible summons that promises to test everything they thought they knew about themselves. Chat context suggests {hint}",
    "preparation": "{name} carefully gathers what they'll need for the journey ahead, sensing that preparation now could determine success later. Recent conversation indicates {hint}",
    "challenges": "{name} confronts a series of trials that push them beyond their comfort zone. The ongoing dialogue reveals {hint}",
    "climax": "{name} faces the ultimate test that will define who they become. Recent developments point to {hint}",
    "hook": "{name} notices a detail that doesn't quite fit, suggesting something significant is about to be revealed. Chat analysis shows {hint}",
    "investigation": "{name} pieces together clues that paint an increasingly complex picture. Recent conversation patterns indicate {hint}",
    "revelation": "{name} uncovers a truth that changes their understanding of everything. The dialogue suggests {hint}",
    "confrontation": "{name} faces the person or truth they've been seeking. Recent developments point to {hint}",
    "first_meeting": "{name} encounters someone who immediately catches their attention in ways they didn't expect. Chat context suggests {hint}",
    "bonding": "{name} discovers shared interests and values that create an unexpected connection. Recent conversation indicates {hint}",
    "test": "{name}'s relationship faces a crucial test that reveals deeper truths. The ongoing dialogue reveals {hint}",
    "growth": "{name} emerges from their trials with a stronger, more authentic connection. Recent developments show {hint}",
    "ordinary_world": "{name} operates within the familiar rhythms of their established life, though subtle signs suggest change is coming. Chat analysis indicates {hint}",
    "mentor": "{name} encounters guidance from an unexpected source that offers new perspective. Recent conversation suggests {hint}",
    "tests": "{name} faces trials that reveal their true capabilities while forging important alliances. The dialogue points to {hint}",
    "ordeal": "{name} confronts their deepest fears and emerges transformed by the experience. Recent developments indicate {hint}",
    "reward": "{name} achieves something meaningful that validates their journey and growth. Chat context shows {hint}",
    "return": "{name} brings hard-won wisdom back to their world, forever changed by what they discovered. Recent conversation patterns suggest {hint}",
}

DEFAULT_PHASE_PLOT = (
    "{name} continues to develop in ways that reflect their deepest nature and current "
    "circumstances, guided by the unfolding dynamics of their situation"
)

BRANCH_PLOTS: dict[str, str] = {
    "friends_to_lovers": "{name} and their trusted friend share a moment that reveals deeper feelings neither expected, while recent conversation suggests {hint}",
    "enemies_to_lovers": "{name} discovers unexpected vulnerability in their adversary, while chat dynamics reveal {hint}",
    "strangers_to_lovers": "{name} encounters someone whose presence immediately shifts their world perspective, with conversation patterns indicating {hint}",
    "slow_burn": "{name} nurtures a connection that grows stronger with each meaningful interaction, as recent dialogue shows {hint}",
    "quick_connection": "{name} experiences an immediate, profound bond that transcends the ordinary, while conversation suggests {hint}",
    "friendship_first": "{name} builds a foundation of trust and understanding that could evolve into something deeper, as chat analysis reveals {hint}",
    "external_obstacle": "{name} faces formidable opposition from circumstances beyond their control, while recent conversation points to {hint}",
    "internal_conflict": "{name} wrestles with doubts that threaten their confidence and direction, as dialogue patterns suggest {hint}",
    "misunderstanding": "{name} navigates a communication breakdown that threatens to derail progress, while chat context shows {hint}",
    "mysterious_map": "{name} uncovers a cryptic map or clue that promises adventure and revelation, with recent conversation indicating {hint}",
    "urgent_quest": "{name} receives a time-sensitive call to action that cannot be ignored, as dialogue dynamics reveal {hint}",
    "accidental_discovery": "{name} stumbles upon something significant through pure chance, while conversation patterns suggest {hint}",
    "physical_trials": "{name} faces demanding challenges that test their physical and mental endurance, as recent chat shows {hint}",
    "moral_dilemmas": "{name} must navigate complex ethical choices that reveal their core values, with conversation indicating {hint}",
    "mystery_solving": "{name} pieces together clues in a puzzle that will unlock deeper truths, while dialogue suggests {hint}",
    "refusal": "{name} initially resists the call to adventure, citing familiar fears and comforts, as conversation reveals {hint}",
    "crossing_threshold": "{name} commits to the journey despite uncertainty, with recent dialogue showing {hint}",
}

DEFAULT_BRANCH_PLOT = (
    "{name} explores new narrative possibilities that align with their deepest motivations "
    "and current circumstances, guided by {hint}"
)

LABEL_HINTS: dict[str, tuple[str, ...]] = {
    "romantic": ("romantic tension", "emotional connections", "relationship dynamics"),
    "adventurous": ("thrill-seeking energy", "quest opportunities", "heroic challenges"),
    "mysterious": ("hidden depths", "intriguing unknowns", "secrets waiting to be revealed"),
    "conflictual": ("mounting tension", "rivalry potential", "opposition dynamics"),
    "heroic": ("leadership opportunities", "courage-testing moments", "responsibility pressures"),
    "comedic": ("amusing complications", "lighthearted situations", "humorous misunderstandings"),
    "tragic": ("sacrifice possibilities", "loss and redemption", "tragic consequences"),
    "philosophical": ("deep reflection", "meaning-seeking moments", "wisdom challenges"),
    "supernatural": ("mystical elements", "otherworldly influences", "magical possibilities"),
    "social": ("community bonds", "relationship building", "group dynamics"),
    "neutral": ("natural story progression", "character development", "authentic reactions"),
}

# (keywords in recent chat, hint, substring that marks the hint as already covered)
_CHAT_DYNAMICS: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("feel", "emotion", "heart"), "emotional undercurrents", "emotional"),
    (("problem", "challenge", "difficult"), "mounting tension", "tension"),
    (("learn", "discover", "realize"), "growing awareness", "reveal"),
    (("understand", "connect", "bond"), "deepening bonds", "relationship"),
)

FALLBACK_CONTEXTS: dict[str, tuple[str, ...]] = {
    "natural": (
        "{name} faces a moment that could change everything, forcing them to choose between comfort and growth",
        "{name} recognizes an opportunity that aligns perfectly with their deepest desires, but taking it requires courage",
        "{name} encounters a situation that reveals something fundamental about their true nature",
    ),
    "dramatic": (
        "{name} discovers a secret that threatens everything they believed about their world",
        "{name} faces an impossible choice between two things they hold dear",
        "{name} realizes their actions have set in motion consequences they never anticipated",
    ),
    "romantic": (
        "{name} feels a connection that goes beyond attraction, suggesting a soul-deep recognition",
        "{name} encounters someone who sees through their defenses to the person they truly are",
        "{name} experiences a moment that makes them question everything they thought they wanted",
    ),
    "mysterious": (
        "{name} uncovers a clue that suggests a much larger conspiracy than they imagined",
        "{name} realizes someone they trust has been hiding dangerous secrets",
        "{name} discovers that what they thought was random is actually part of an intricate plan",
    ),
    "adventure": (
        "{name} receives a call to action that promises to test every skill they've ever learned",
        "{name} faces a challenge that could establish their legend or lead to their downfall",
        "{name} discovers a path forward that requires them to become someone entirely new",
    ),
    "comedy": (
        "{name} finds themselves in a ridiculous situation that somehow reveals profound truth",
        "{name} attempts to maintain dignity while chaos unfolds around them",
        "{name} discovers that the most serious moments often contain the most humor",
    ),
}

DEFAULT_NAME = "Character"


def extract_recent_context(
    messages: Sequence[ChatMessage],
    max_messages: int = 5,
    max_chars: int | None = None,
) -> str:
    """Render the last *max_messages* messages as ``Speaker: text`` lines.

    Args:
        messages: Chat messages, oldest first.
        max_messages: How many trailing messages to include.
        max_chars: Optional per-line length cap.

    Returns:
        Newline-joined lines, or an empty string when there are no messages.
    """
    lines = []
    for msg in list(messages)[-max_messages:] if max_messages > 0 else []:
        speaker = "User" if msg.is_user else (msg.name or DEFAULT_NAME)
        line = f"{speaker}: {msg.text}"
        if max_chars is not None:
            line = line[:max_chars]
        lines.append(line)
    return "\n".join(lines)


def contextual_hint(
    recent_chat: str,
    labels: Sequence[str] = ("neutral",),
    rng: random.Random | None = None,
) -> str:
    """Build a short hint from analysis labels and cues in the recent chat."""
    rng = rng or random.Random()
    hints: list[str] = []
    for label in labels:
        options = LABEL_HINTS.get(label)
        if options:
            hints.append(rng.choice(options))

    lowered = recent_chat.lower()
    for keywords, hint, covered in _CHAT_DYNAMICS:
        if any(k in lowered for k in keywords) and not any(covered in h for h in hints):
            hints.append(hint)

    return ", ".join(hints[:3]) if hints else "complex character motivations"


def phase_plot(phase_name: str, name: str | None, hint: str) -> str:
    """Bracketed guidance line for an arc phase."""
    template = PHASE_PLOTS.get(phase_name, DEFAULT_PHASE_PLOT)
    return f"[{template.format(name=name or DEFAULT_NAME, hint=hint)}]"


def branch_plot(branch: str, name: str | None, hint: str) -> str:
    """Bracketed guidance line for a branch option."""
    template = BRANCH_PLOTS.get(branch, DEFAULT_BRANCH_PLOT)
    return f"[{template.format(name=name or DEFAULT_NAME, hint=hint)}]"


def fallback_context(
    name: str | None,
    style: str = "natural",
    rng: random.Random | None = None,
) -> str:
    """Pick a canned plot line for *style* (unknown styles use ``natural``)."""
    rng = rng or random.Random()
    lines = FALLBACK_CONTEXTS.get(style, FALLBACK_CONTEXTS["natural"])
    return f"[{rng.choice(lines).format(name=name or DEFAULT_NAME)}]"


_ARTIFACT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"<breflect>[\s\S]*?</breflect>", re.IGNORECASE),
    re.compile(r"\[\s*The AI (?:embodies|acts as|is playing|responds as)[\s\S]*?\]", re.IGNORECASE),
    re.compile(r"\[\s*AI (?:response|action|behavior)[\s\S]*?\]", re.IGNORECASE),
    re.compile(r"\[\s*(?:Thought|Reasoning|Planning|Processing)[:\s][\s\S]*?\]", re.IGNORECASE),
    re.compile(r"Start Reply With[:\s]*", re.IGNORECASE),
    re.compile(r"\[\s*Start[^\]]*?\]", re.IGNORECASE),
    re.compile(r"\[\s*system[^\]]*?\]", re.IGNORECASE),
    re.compile(r"\[\s*instruction[^\]]*?\]", re.IGNORECASE),
    re.compile(r"<\w+[^>]*>"),
    re.compile(r"</\w+>"),
    re.compile(r"<\w+[^>]*$", re.MULTILINE),
    re.compile(r"\[\s*internal[^\]]*?\]", re.IGNORECASE),
)

_NARRATIVE_HINT = re.compile(r"[A-Z][a-z]|[.!?]")


def clean_plot_context(raw: str | None) -> str:
    """Strip model artifacts from generated plot text.

    Removes reasoning blocks, system/instruction markers and XML tags,
    collapses whitespace, drops surrounding quotes and empty brackets, and
    wraps narrative-looking text in square brackets.
    """
    if not raw or not isinstance(raw, str):
        return ""

    cleaned = raw
    for pattern in _ARTIFACT_PATTERNS:
        cleaned = pattern.sub("", cleaned)

    cleaned = cleaned.strip().strip("\"'").strip()
    cleaned = re.sub(r"\s+", " ", cleaned)
    cleaned = re.sub(r"\[\s*\]", "", cleaned).strip()

    if cleaned and not (cleaned.startswith("[") and cleaned.endswith("]")):
        if _NARRATIVE_HINT.search(cleaned):
            cleaned = f"[{cleaned}]"
    return cleaned
