"""Render every math fragment of a LaTeX file to preview images."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
import shutil
from typing import Annotated

import typer

from texpreview.adapters.document import TextDocument
from texpreview.adapters.latex.engines import AsyncioProcessRunner
from texpreview.api import PreviewScope, PreviewService
from texpreview.core.cache import Artifact
from texpreview.core.config import PreviewConfig, load_config
from texpreview.core.fragments import Fragment
from texpreview.core.pipeline import RunState
from texpreview.core.scheduling import AsyncioScheduler

from ..diagnostics import CliEmitter, ToolchainMessageRenderer
from ..state import CLIState, emit_warning, get_cli_state


@dataclass(slots=True)
class RenderedFragment:
    """Outcome for one fragment, as reported by the ``render`` command."""

    index: int
    line: int
    fragment: Fragment
    artifact: Artifact | None
    output: Path | None
    error: str | None


def render(
    ctx: typer.Context,
    input_path: Annotated[
        Path,
        typer.Argument(
            metavar="FILE",
            help="LaTeX source whose math fragments are rendered.",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
            resolve_path=True,
        ),
    ],
    output_dir: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Copy rendered images into this directory.",
            file_okay=False,
            dir_okay=True,
            resolve_path=True,
        ),
    ] = None,
    backend: Annotated[
        str | None,
        typer.Option("--backend", "-b", help="Toolchain: dvipng, dvisvgm or ghostscript."),
    ] = None,
    resolution: Annotated[
        int | None,
        typer.Option("--resolution", "-r", min=1, help="Output resolution in DPI."),
    ] = None,
    temporary: Annotated[
        bool,
        typer.Option("--temporary", help="Keep results out of the persistent cache."),
    ] = False,
) -> None:
    """Render the math fragments of FILE and report their geometry."""
    state = get_cli_state(ctx)
    config = load_config(
        state.config_path,
        overrides={
            "backend": backend,
            "resolution": resolution,
            "tier": "temporary" if temporary else None,
            "debug": True if state.show_tracebacks else None,
        },
    )
    if temporary and output_dir is None:
        emit_warning("Temporary previews are deleted on exit; pass --output to keep them.")

    document = TextDocument.from_file(input_path, config=config)
    results, runs = asyncio.run(_render_document(document, config, state, output_dir))

    if not results:
        state.console.print(f"No math fragments found in {input_path.name}.")
        return

    _print_results(state, results)
    failed = [item for item in results if item.artifact is None]
    if failed:
        renderer = ToolchainMessageRenderer(state.err_console, verbosity=state.verbosity)
        for run in runs:
            if not run.succeeded or run.errors:
                renderer.render(run.messages)
        raise typer.Exit(code=1)


async def _render_document(
    document: TextDocument,
    config: PreviewConfig,
    state: CLIState,
    output_dir: Path | None,
) -> tuple[list[RenderedFragment], list[RunState]]:
    runner = AsyncioProcessRunner()
    runs: list[RunState] = []
    service = PreviewService(
        document,
        config=config,
        scheduler=AsyncioScheduler(),
        runner=runner,
        emitter=CliEmitter(state),
    )
    service.add_finish_hook(lambda code, log_path, run: runs.append(run))
    try:
        service.preview(PreviewScope.BUFFER)
        await runner.wait()
        return _collect(document, service, output_dir), runs
    finally:
        service.close()


def _collect(
    document: TextDocument, service: PreviewService, output_dir: Path | None
) -> list[RenderedFragment]:
    if output_dir is not None:
        output_dir.mkdir(parents=True, exist_ok=True)
    results: list[RenderedFragment] = []
    for index, (fragment, region) in enumerate(service.results(), start=1):
        artifact = region.artifact
        error = region.host.get(region.handle, "error") or (artifact.error if artifact else None)
        output: Path | None = None
        if artifact is not None:
            output = artifact.path
            if output_dir is not None:
                output = output_dir / f"fragment-{index:03d}{artifact.path.suffix}"
                shutil.copy2(artifact.path, output)
        results.append(
            RenderedFragment(
                index=index,
                line=document.content.count("\n", 0, fragment.start) + 1,
                fragment=fragment,
                artifact=artifact,
                output=output,
                error=error,
            )
        )
    return results


def _print_results(state: CLIState, results: list[RenderedFragment]) -> None:
    from rich import box
    from rich.markup import escape
    from rich.table import Table

    table = Table(box=box.SIMPLE, header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Line", justify="right")
    table.add_column("Fragment", style="magenta", overflow="ellipsis", max_width=40)
    table.add_column("Size", justify="right")
    table.add_column("Depth (em)", justify="right")
    table.add_column("Result")

    for item in results:
        artifact = item.artifact
        if artifact is None:
            size = depth = "-"
            outcome = f"[red]{escape((item.error or 'failed').splitlines()[0])}[/red]"
        else:
            size = f"{artifact.width}x{artifact.height}"
            depth = f"{artifact.depth:.3f}"
            outcome = escape(str(item.output))
            if item.error:
                outcome += f"\n[yellow]{escape(item.error.splitlines()[0])}[/yellow]"
        snippet = " ".join(item.fragment.text.split())
        table.add_row(str(item.index), str(item.line), escape(snippet), size, depth, outcome)

    state.console.print(table)


__all__ = ["RenderedFragment", "render"]
