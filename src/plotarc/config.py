"""Configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

from plotarc.sanitize import validate_numeric_input
from plotarc.storage.backends import DEFAULT_QUOTA_BYTES
from plotarc.storage.index import DEFAULT_EVICT_FRACTION, DEFAULT_INDEX_CAP
from plotarc.storage.models import DEFAULT_HISTORY_LIMIT, MAX_RECENT_DIRECTIONS

DEFAULT_FREQUENCY = 3
HISTORY_LIMIT_RANGE = (1, 50)
FREQUENCY_RANGE = (1, 100)

USER_CONFIG_PATH = Path.home() / ".config" / "plotarc" / "config.yaml"


class PlotStyle(str, Enum):
    """Tone requested from plot generation."""

    NATURAL = "natural"
    DRAMATIC = "dramatic"
    ROMANTIC = "romantic"
    MYSTERIOUS = "mysterious"
    ADVENTURE = "adventure"
    COMEDY = "comedy"


class Intensity(str, Enum):
    """How strongly a plot line should steer the next reply."""

    SUBTLE = "subtle"
    MODERATE = "moderate"
    INTENSE = "intense"


@dataclass
class PlotArcConfig:
    """Runtime settings for a plot session and its storage.

    Attributes:
        history_limit: Plot history entries kept per conversation.
        max_recent_directions: Distinct directions remembered per conversation.
        index_cap: Maximum conversations tracked by the cache index.
        evict_fraction: Share of the index evicted when the cache is full.
        cache_quota_bytes: Byte quota of the local fallback cache.
        cache_path: SQLite file for the fallback cache; None keeps it in memory.
        frequency: Generate a new plot every N generation requests.
        style: Default plot style.
        intensity: Default plot intensity.
        strict_branches: Reject branch choices the current phase does not offer.
        fallback_on_failure: Use a canned plot line when generation fails.
        debug_mode: Verbose logging for troubleshooting.
    """

    history_limit: int = DEFAULT_HISTORY_LIMIT
    max_recent_directions: int = MAX_RECENT_DIRECTIONS
    index_cap: int = DEFAULT_INDEX_CAP
    evict_fraction: float = DEFAULT_EVICT_FRACTION
    cache_quota_bytes: int = DEFAULT_QUOTA_BYTES
    cache_path: Path | None = None
    frequency: int = DEFAULT_FREQUENCY
    style: PlotStyle = PlotStyle.NATURAL
    intensity: Intensity = Intensity.MODERATE
    strict_branches: bool = True
    fallback_on_failure: bool = False
    debug_mode: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlotArcConfig:
        """Create config from a dictionary.

        Numeric values are clamped to their allowed ranges. Unknown style
        or intensity values fall back to the defaults.

        Args:
            data: Mapping with any subset of the dataclass fields.

        Returns:
            PlotArcConfig instance.
        """
        cache_path = data.get("cache_path")
        try:
            evict_fraction = float(data.get("evict_fraction", DEFAULT_EVICT_FRACTION))
        except (TypeError, ValueError):
            evict_fraction = DEFAULT_EVICT_FRACTION
        if not 0 < evict_fraction <= 1:
            evict_fraction = DEFAULT_EVICT_FRACTION

        return cls(
            history_limit=validate_numeric_input(
                data.get("history_limit"), *HISTORY_LIMIT_RANGE, DEFAULT_HISTORY_LIMIT
            ),
            max_recent_directions=validate_numeric_input(
                data.get("max_recent_directions"), 1, 100, MAX_RECENT_DIRECTIONS
            ),
            index_cap=validate_numeric_input(data.get("index_cap"), 1, 1000, DEFAULT_INDEX_CAP),
            evict_fraction=evict_fraction,
            cache_quota_bytes=validate_numeric_input(
                data.get("cache_quota_bytes"), 1024, 1 << 30, DEFAULT_QUOTA_BYTES
            ),
            cache_path=Path(cache_path).expanduser() if cache_path else None,
            frequency=validate_numeric_input(
                data.get("frequency"), *FREQUENCY_RANGE, DEFAULT_FREQUENCY
            ),
            style=_enum_value(PlotStyle, data.get("style"), PlotStyle.NATURAL),
            intensity=_enum_value(Intensity, data.get("intensity"), Intensity.MODERATE),
            strict_branches=bool(data.get("strict_branches", True)),
            fallback_on_failure=bool(data.get("fallback_on_failure", False)),
            debug_mode=bool(data.get("debug_mode", False)),
        )

    def with_env_overrides(self) -> PlotArcConfig:
        """Apply ``PLOTARC_*`` environment overrides on top of this config."""
        history_limit = os.getenv("PLOTARC_HISTORY_LIMIT")
        if history_limit:
            self.history_limit = validate_numeric_input(
                history_limit, *HISTORY_LIMIT_RANGE, self.history_limit
            )
        frequency = os.getenv("PLOTARC_FREQUENCY")
        if frequency:
            self.frequency = validate_numeric_input(frequency, *FREQUENCY_RANGE, self.frequency)
        cache_path = os.getenv("PLOTARC_CACHE_PATH")
        if cache_path:
            self.cache_path = Path(cache_path).expanduser()
        return self


def _enum_value(enum_type: type[Enum], value: Any, default: Any) -> Any:
    if value is None:
        return default
    try:
        return enum_type(str(value).lower())
    except ValueError:
        return default


class ConfigError(Exception):
    """Raised when a configuration file cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load config at {path}: {reason}")


def load_config(path: Path) -> PlotArcConfig:
    """Load configuration from a YAML file, then apply env overrides.

    An empty file yields the defaults.

    Raises:
        ConfigError: If the file is missing or cannot be parsed.
    """
    if not path.exists():
        raise ConfigError(path, "File not found")

    yaml = YAML(typ="safe")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)
    except Exception as e:
        raise ConfigError(path, str(e)) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(path, "Top-level value must be a mapping")
    return PlotArcConfig.from_dict(dict(data)).with_env_overrides()


def load_user_config(path: Path | None = None) -> PlotArcConfig:
    """Load the user-level config if present, else defaults plus env overrides."""
    config_path = path or USER_CONFIG_PATH
    if config_path.exists():
        return load_config(config_path)
    return PlotArcConfig().with_env_overrides()
