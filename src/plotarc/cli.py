"""plotarc CLI - typer application entry point."""

from __future__ import annotations

import asyncio
import atexit
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from plotarc.arcs.catalog import ArcTemplateCatalog
from plotarc.config import ConfigError, PlotArcConfig, load_config, load_user_config
from plotarc.observability import close_file_logging, configure_logging, get_logs_dir
from plotarc.storage.index import ProfileIndex
from plotarc.storage.models import ConversationKey, status_label
from plotarc.storage.profile_store import ConversationProfileStore
from plotarc.storage.sqlite_cache import SqliteFallbackCache

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="plotarc",
    help="plotarc: narrative arcs and plot memory for roleplay chats.",
    no_args_is_help=True,
)
console = Console()

# Global state set by the callback and read by commands
_verbose: int = 0
_log_enabled: bool = False
_cache_override: Path | None = None
_config_path: Path | None = None


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_to_file: Annotated[
        bool,
        typer.Option(
            "--log",
            help="Write debug.jsonl under logs/ next to the cache file.",
        ),
    ] = False,
    cache: Annotated[
        Path | None,
        typer.Option(
            "--cache",
            help="SQLite cache file (overrides config and PLOTARC_CACHE_PATH).",
        ),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Config YAML (default: ~/.config/plotarc/config.yaml).",
        ),
    ] = None,
) -> None:
    """plotarc: narrative arcs and plot memory for roleplay chats."""
    global _verbose, _log_enabled, _cache_override, _config_path
    _verbose = verbose
    _log_enabled = log_to_file
    _cache_override = cache
    _config_path = config

    configure_logging(verbosity=verbose)


def _load_settings() -> PlotArcConfig:
    try:
        if _config_path is not None:
            settings = load_config(_config_path)
        else:
            settings = load_user_config()
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    if _cache_override is not None:
        settings.cache_path = _cache_override
    if settings.debug_mode and _verbose < 2:
        configure_logging(verbosity=2)
    return settings


def _open_store() -> tuple[ConversationProfileStore, SqliteFallbackCache]:
    """Open the configured cache file and a store over it.

    Raises:
        typer.Exit: If no cache file is configured or it does not exist.
    """
    settings = _load_settings()
    cache_path = settings.cache_path
    if cache_path is None:
        console.print("[red]Error:[/red] No cache file configured.")
        console.print("Pass [cyan]--cache PATH[/cyan] or set PLOTARC_CACHE_PATH.")
        raise typer.Exit(1)
    if not cache_path.exists():
        console.print(f"[red]Error:[/red] Cache file not found: {cache_path}")
        raise typer.Exit(1)

    if _log_enabled:
        verbosity = 2 if settings.debug_mode else _verbose
        configure_logging(verbosity=verbosity, log_to_file=True, log_root=cache_path.parent)
        atexit.register(close_file_logging)
        console.print(f"[dim]Logging to {get_logs_dir()}[/dim]")

    cache = SqliteFallbackCache(cache_path, quota_bytes=settings.cache_quota_bytes)
    store = ConversationProfileStore(
        cache,
        index=ProfileIndex(cache, cap=settings.index_cap),
        history_limit=settings.history_limit,
        max_recent_directions=settings.max_recent_directions,
        evict_fraction=settings.evict_fraction,
    )
    return store, cache


def _format_ms(epoch_ms: int) -> str:
    if epoch_ms <= 0:
        return "-"
    return datetime.fromtimestamp(epoch_ms / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M")


@app.command()
def version() -> None:
    """Show version information."""
    from plotarc import __version__

    console.print(f"plotarc v{__version__}")


@app.command()
def templates() -> None:
    """List the built-in arc templates."""
    catalog = ArcTemplateCatalog()

    table = Table(title="Arc Templates")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Phases")
    table.add_column("Branch Points", style="dim")

    for template in catalog:
        branches = ", ".join(
            f"{bp.from_phase}: {len(bp.options)}" for bp in template.branch_points
        )
        table.add_row(
            template.id,
            template.display_name,
            " > ".join(template.phase_names),
            branches or "-",
        )
    console.print(table)


@app.command()
def profiles() -> None:
    """List cached conversation profiles, most recent first."""
    store, cache = _open_store()
    with cache:
        entries = store.list_profiles()

    if not entries:
        console.print("[dim]No cached profiles.[/dim]")
        return

    table = Table(title=f"Cached Profiles ({len(entries)})")
    table.add_column("Participant", style="cyan")
    table.add_column("Conversation")
    table.add_column("Last Active", style="dim")
    table.add_column("History", justify="right")

    for _key, entry in entries:
        table.add_row(
            entry.participant_name or entry.participant_id,
            entry.conversation_id or "-",
            _format_ms(entry.last_active),
            str(entry.plot_history_count),
        )
    console.print(table)


@app.command()
def show(
    participant: Annotated[str, typer.Argument(help="Participant id.")],
    conversation: Annotated[str, typer.Argument(help="Conversation id.")],
) -> None:
    """Show the restored view of one cached conversation."""
    store, cache = _open_store()
    key = ConversationKey(participant, conversation)
    with cache:
        result = asyncio.run(store.load(key))

    if result is None:
        console.print(f"[yellow]No profile for {key}[/yellow]")
        raise typer.Exit(1)

    view = store.restore(result.profile)
    console.print(f"[bold]{view.participant_name or participant}[/bold] / {conversation}")
    console.print(f"  Status: {status_label(view.status)}")
    if view.plot_text:
        console.print(f"  Plot: {view.plot_text}", markup=False)
    else:
        console.print("  Plot: [dim]none[/dim]")

    arc = view.arc
    if arc is not None and arc.has_active_arc:
        console.print(
            f"  Arc: [cyan]{arc.template_name or arc.template_id}[/cyan] "
            f"- {arc.phase_name} ({arc.progress}%)"
        )
        if arc.chosen_branch:
            console.print(f"  Branch: {arc.chosen_branch}")

    if view.recent_directions:
        console.print(f"  Directions: {', '.join(view.recent_directions)}", markup=False)

    if view.plot_history:
        console.print()
        console.print("[bold]History[/bold]")
        for entry in view.plot_history:
            console.print(f"  [dim]{_format_ms(entry.timestamp)}[/dim] ", end="")
            console.print(entry.text, markup=False)


@app.command()
def evict(
    fraction: Annotated[
        float | None,
        typer.Option(
            "--fraction",
            "-f",
            min=0.01,
            max=1.0,
            help="Share of the oldest profiles to drop (default: from config).",
        ),
    ] = None,
) -> None:
    """Drop the oldest cached profiles to free space."""
    store, cache = _open_store()
    with cache:
        evicted = store.index.evict_oldest(fraction or store.evict_fraction)

    if not evicted:
        console.print("[dim]Nothing to evict.[/dim]")
        return
    console.print(f"[green]✓[/green] Evicted {len(evicted)} profile(s)")
    for key in evicted:
        console.print(f"  [dim]{key}[/dim]")


@app.command()
def delete(
    participant: Annotated[str, typer.Argument(help="Participant id.")],
    conversation: Annotated[str, typer.Argument(help="Conversation id.")],
) -> None:
    """Remove one cached conversation profile."""
    store, cache = _open_store()
    key = ConversationKey(participant, conversation)
    with cache:
        removed = asyncio.run(store.delete(key))

    if not removed:
        console.print(f"[yellow]No indexed profile for {key}[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Deleted {key}")
