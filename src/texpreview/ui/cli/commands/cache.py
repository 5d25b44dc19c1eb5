"""Inspect and maintain the preview cache."""

from __future__ import annotations

from enum import Enum
from typing import Annotated

import typer

from texpreview.core.cache import ArtifactCache, CacheTier, PersistentTier
from texpreview.core.config import load_config
from texpreview.core.store import ExpiryPolicy

from ..state import get_cli_state


class TierChoice(str, Enum):
    ALL = "all"
    PERSISTENT = "persistent"
    TEMPORARY = "temporary"
    LIVE = "live"


app = typer.Typer(help="Inspect and maintain the preview cache.", no_args_is_help=True)


def _open_cache(ctx: typer.Context) -> ArtifactCache:
    state = get_cli_state(ctx)
    config = load_config(state.config_path)
    return ArtifactCache(persistent=PersistentTier(expiry=ExpiryPolicy.parse(config.expiry)))


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"


@app.command()
def clear(
    ctx: typer.Context,
    tier: Annotated[
        TierChoice,
        typer.Option("--tier", "-t", case_sensitive=False, help="Tier to clear."),
    ] = TierChoice.ALL,
    purge_all: Annotated[
        bool,
        typer.Option("--all", help="Also delete stray files left in the cache directories."),
    ] = False,
) -> None:
    """Remove cached previews."""
    cache = _open_cache(ctx)
    try:
        scope = None if tier is TierChoice.ALL else CacheTier(tier.value)
        removed = cache.clear(scope, purge_all=purge_all)
    finally:
        cache.close()
    noun = "entry" if removed == 1 else "entries"
    get_cli_state(ctx).console.print(f"Removed {removed} cache {noun}.")


@app.command()
def gc(ctx: typer.Context) -> None:
    """Delete persistent previews whose expiry policy says they are stale."""
    cache = _open_cache(ctx)
    try:
        removed = cache.gc()
    finally:
        cache.close()
    noun = "entry" if removed == 1 else "entries"
    get_cli_state(ctx).console.print(f"Expired {removed} cache {noun}.")


@app.command()
def info(ctx: typer.Context) -> None:
    """Show entry counts and disk usage per tier."""
    from rich import box
    from rich.table import Table

    cache = _open_cache(ctx)
    try:
        stats = cache.stats()
        location = cache.tier(CacheTier.PERSISTENT).root
    finally:
        cache.close()

    table = Table(title="Preview cache", box=box.SQUARE, header_style="bold cyan")
    table.add_column("Tier", style="magenta")
    table.add_column("Entries", justify="right")
    table.add_column("Size", justify="right")
    for tier, (entries, size) in stats.items():
        table.add_row(tier.value, str(entries), _format_size(size))

    console = get_cli_state(ctx).console
    console.print(table)
    console.print(f"Persistent cache: {location}")


__all__ = ["app", "clear", "gc", "info"]
