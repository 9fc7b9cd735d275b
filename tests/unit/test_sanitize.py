"""Tests for input sanitization helpers."""

from __future__ import annotations

import pytest

from plotarc.sanitize import (
    MAX_DIRECTION_LENGTH,
    MAX_PLOT_LENGTH,
    sanitize_direction,
    sanitize_plot_text,
    validate_numeric_input,
)


class TestSanitizePlotText:
    """Plot text cleanup."""

    def test_escapes_markup_and_drops_control_chars(self) -> None:
        """HTML is escaped and control characters removed."""
        assert sanitize_plot_text("  <b>hi</b>\x07 ") == "&lt;b&gt;hi&lt;/b&gt;"

    def test_keeps_newlines(self) -> None:
        """Line breaks survive."""
        assert sanitize_plot_text("one\ntwo") == "one\ntwo"

    def test_truncates(self) -> None:
        """Overlong text is cut to the maximum."""
        result = sanitize_plot_text("x" * (MAX_PLOT_LENGTH + 100))
        assert result is not None
        assert len(result) == MAX_PLOT_LENGTH

    @pytest.mark.parametrize("value", [None, 42, "", "   \n "])
    def test_rejects_non_text(self, value: object) -> None:
        """Non-strings and blank strings give None."""
        assert sanitize_plot_text(value) is None


class TestSanitizeDirection:
    """Direction cleanup."""

    def test_escapes_quotes_and_ampersands(self) -> None:
        """Directions are HTML-escaped."""
        assert sanitize_direction(' say "hi" & go ') == "say &quot;hi&quot; &amp; go"

    def test_truncates_to_direction_limit(self) -> None:
        """Directions have their own, shorter limit."""
        result = sanitize_direction("y" * 1000)
        assert result is not None
        assert len(result) == MAX_DIRECTION_LENGTH

    def test_blank_is_none(self) -> None:
        """Whitespace-only directions are dropped."""
        assert sanitize_direction("   ") is None


class TestValidateNumericInput:
    """Integer parsing and clamping."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (7, 7),
            (7.9, 7),
            ("12 turns", 12),
            (" +8", 8),
            ("-3", 1),
            (0, 1),
            (99, 50),
            ("abc", 5),
            (None, 5),
            (True, 5),
            ([], 5),
        ],
    )
    def test_parse_and_clamp(self, value: object, expected: int) -> None:
        """Values are parsed leniently and clamped to the range."""
        assert validate_numeric_input(value, 1, 50, 5) == expected
