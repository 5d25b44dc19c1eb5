"""CLI command implementations exposed via `texpreview.ui.cli`.

The Typer commands live in sibling modules; they are re-exported here so they
can be imported using dotted paths (e.g. ``texpreview.ui.cli.commands.render``).
"""

from __future__ import annotations

from .cache import app as cache_app
from .render import render


__all__ = ["cache_app", "render"]
