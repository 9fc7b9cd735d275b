"""Test CLI commands."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from plotarc import __version__
from plotarc.cli import app
from plotarc.observability import close_file_logging
from plotarc.storage import (
    ArcSnapshot,
    ConversationKey,
    ConversationProfileStore,
    PlotEntry,
    ProfileIndex,
    ProfileUpdate,
)
from plotarc.storage.sqlite_cache import SqliteFallbackCache

if TYPE_CHECKING:
    from pathlib import Path

runner = CliRunner()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("PLOTARC_HISTORY_LIMIT", "PLOTARC_FREQUENCY", "PLOTARC_CACHE_PATH"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text("history_limit: 5\n")
    return path


@pytest.fixture
def cache_file(tmp_path: Path) -> Path:
    """A cache database holding two conversations."""
    path = tmp_path / "cache.db"
    timestamps = iter([1_700_000_000_000, 1_700_000_060_000])

    async def populate(store: ConversationProfileStore) -> None:
        await store.save(
            ConversationKey("bob", "chat-9"),
            ProfileUpdate(plot_text=None, status="ready", participant_name="Bob"),
        )
        await store.save(
            ConversationKey("alice", "chat-1"),
            ProfileUpdate(
                plot_text="[A storm rolls in]",
                status="injected",
                participant_name="Alice",
                plot_history=[PlotEntry(text="[A storm rolls in]", timestamp=5, id="p1")],
                recent_directions=["head north"],
                arc_status=ArcSnapshot(
                    has_active_arc=True,
                    template_id="romance",
                    template_name="Romance Arc",
                    phase_name="introduction",
                    progress=0,
                ),
            ),
        )

    with SqliteFallbackCache(path) as cache:
        store = ConversationProfileStore(
            cache, index=ProfileIndex(cache), clock=lambda: next(timestamps)
        )
        asyncio.run(populate(store))
    return path


def test_version_command() -> None:
    """Test plotarc version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert f"plotarc v{__version__}" in result.stdout


def test_no_args_shows_help() -> None:
    """Test that no arguments shows help."""
    result = runner.invoke(app, [])
    # no_args_is_help=True returns exit code 2 (not 0 like --help)
    assert result.exit_code == 2
    assert "plotarc" in result.stdout


def test_templates_lists_builtins() -> None:
    """templates prints the built-in catalog."""
    result = runner.invoke(app, ["templates"])
    assert result.exit_code == 0
    assert "Arc Templates" in result.stdout
    assert "romance" in result.stdout
    assert "mystery" in result.stdout


class TestProfiles:
    """profiles command."""

    def test_lists_most_recent_first(self, cache_file: Path, config_file: Path) -> None:
        """Cached conversations are listed newest first."""
        result = runner.invoke(
            app, ["--cache", str(cache_file), "--config", str(config_file), "profiles"]
        )

        assert result.exit_code == 0
        assert "Cached Profiles (2)" in result.stdout
        assert result.stdout.index("Alice") < result.stdout.index("Bob")

    def test_empty_cache(self, tmp_path: Path, config_file: Path) -> None:
        """An empty cache says so."""
        path = tmp_path / "empty.db"
        SqliteFallbackCache(path).close()

        result = runner.invoke(
            app, ["--cache", str(path), "--config", str(config_file), "profiles"]
        )

        assert result.exit_code == 0
        assert "No cached profiles." in result.stdout

    def test_missing_cache_file(self, tmp_path: Path, config_file: Path) -> None:
        """A nonexistent cache path is an error."""
        missing = tmp_path / "nope.db"
        result = runner.invoke(
            app, ["--cache", str(missing), "--config", str(config_file), "profiles"]
        )

        assert result.exit_code == 1
        assert "Cache file not found" in result.stdout
        assert not missing.exists()

    def test_no_cache_configured(self, config_file: Path) -> None:
        """Without --cache or config the command fails."""
        result = runner.invoke(app, ["--config", str(config_file), "profiles"])

        assert result.exit_code == 1
        assert "No cache file configured" in result.stdout

    def test_cache_path_from_config(self, cache_file: Path, tmp_path: Path) -> None:
        """cache_path in the config file is honoured."""
        config = tmp_path / "with-cache.yaml"
        config.write_text(f"cache_path: {cache_file}\n")

        result = runner.invoke(app, ["--config", str(config), "profiles"])

        assert result.exit_code == 0
        assert "Cached Profiles (2)" in result.stdout

    def test_bad_config(self, cache_file: Path, tmp_path: Path) -> None:
        """A broken config file is reported."""
        config = tmp_path / "bad.yaml"
        config.write_text("- not\n- a mapping\n")

        result = runner.invoke(
            app, ["--cache", str(cache_file), "--config", str(config), "profiles"]
        )

        assert result.exit_code == 1
        assert "Error:" in result.stdout

    def test_log_flag_writes_next_to_cache(self, cache_file: Path, config_file: Path) -> None:
        """--log creates a logs directory beside the cache file."""
        result = runner.invoke(
            app, ["--cache", str(cache_file), "--config", str(config_file), "--log", "profiles"]
        )
        close_file_logging()

        assert result.exit_code == 0
        assert (cache_file.parent / "logs" / "debug.jsonl").exists()


class TestShow:
    """show command."""

    def test_shows_restored_view(self, cache_file: Path, config_file: Path) -> None:
        """The restored status, plot, arc and history are printed."""
        result = runner.invoke(
            app,
            ["--cache", str(cache_file), "--config", str(config_file), "show", "alice", "chat-1"],
        )

        assert result.exit_code == 0
        assert "Status: Restored" in result.stdout
        assert "[A storm rolls in]" in result.stdout
        assert "Romance Arc" in result.stdout
        assert "head north" in result.stdout
        assert "History" in result.stdout

    def test_profile_without_plot(self, cache_file: Path, config_file: Path) -> None:
        """A profile without a plot keeps its stored status."""
        result = runner.invoke(
            app,
            ["--cache", str(cache_file), "--config", str(config_file), "show", "bob", "chat-9"],
        )

        assert result.exit_code == 0
        assert "Status: Ready" in result.stdout
        assert "Plot: none" in result.stdout

    def test_unknown_conversation(self, cache_file: Path, config_file: Path) -> None:
        """Unknown conversations exit with an error."""
        result = runner.invoke(
            app,
            ["--cache", str(cache_file), "--config", str(config_file), "show", "carol", "x"],
        )

        assert result.exit_code == 1
        assert "No profile for carol/x" in result.stdout


class TestEvictAndDelete:
    """evict and delete commands."""

    def test_evict_fraction(self, cache_file: Path, config_file: Path) -> None:
        """evict drops the oldest share of profiles."""
        result = runner.invoke(
            app,
            ["--cache", str(cache_file), "--config", str(config_file), "evict", "-f", "0.5"],
        )

        assert result.exit_code == 0
        assert "Evicted 1 profile(s)" in result.stdout
        assert "plotarc_bob:chat-9" in result.stdout

    def test_evict_rejects_out_of_range(self, cache_file: Path, config_file: Path) -> None:
        """Fractions above 1 are rejected by option validation."""
        result = runner.invoke(
            app,
            ["--cache", str(cache_file), "--config", str(config_file), "evict", "-f", "2"],
        )
        assert result.exit_code == 2

    def test_delete(self, cache_file: Path, config_file: Path) -> None:
        """delete removes a profile; a second delete fails."""
        args = [
            "--cache", str(cache_file), "--config", str(config_file), "delete", "alice", "chat-1"
        ]

        first = runner.invoke(app, args)
        second = runner.invoke(app, args)

        assert first.exit_code == 0
        assert "Deleted alice/chat-1" in first.stdout
        assert second.exit_code == 1
        assert "No indexed profile" in second.stdout
