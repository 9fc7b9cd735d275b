"""Input sanitization for user-supplied plot text and settings."""

from __future__ import annotations

import html
import re
from typing import Any

from plotarc.observability.logging import get_logger

log = get_logger(__name__)

MAX_PLOT_LENGTH = 5000
MAX_DIRECTION_LENGTH = 500

# Control characters other than newline and carriage return.
_CONTROL_CHARS = re.compile(r"[\x00-\x09\x0b\x0c\x0e-\x1f\x7f]")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _trim(text: Any, max_length: int, kind: str) -> str | None:
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    if len(trimmed) > max_length:
        log.warning("input_truncated", kind=kind, length=len(trimmed), max_length=max_length)
        trimmed = trimmed[:max_length]
    return trimmed


def sanitize_plot_text(text: Any, max_length: int = MAX_PLOT_LENGTH) -> str | None:
    """Trim, truncate, drop control characters and HTML-escape plot text.

    Returns:
        The cleaned text, or None for non-strings and blank input.
    """
    trimmed = _trim(text, max_length, "plot_text")
    if trimmed is None:
        return None
    return html.escape(_CONTROL_CHARS.sub("", trimmed))


def sanitize_direction(text: Any, max_length: int = MAX_DIRECTION_LENGTH) -> str | None:
    """Trim, truncate and HTML-escape a story direction."""
    trimmed = _trim(text, max_length, "direction")
    if trimmed is None:
        return None
    return html.escape(trimmed)


def validate_numeric_input(value: Any, minimum: int, maximum: int, default: int) -> int:
    """Parse an integer setting and clamp it to ``[minimum, maximum]``.

    Leading digits are honoured (``"12 turns"`` parses as 12); anything
    unparseable yields *default*.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        number = int(value)
    else:
        match = _LEADING_INT.match(str(value)) if value is not None else None
        if match is None:
            return default
        number = int(match.group(1))

    if number < minimum:
        log.warning("value_below_minimum", value=number, minimum=minimum)
        return minimum
    if number > maximum:
        log.warning("value_above_maximum", value=number, maximum=maximum)
        return maximum
    return number
