"""Toolchain helpers: backend strategies, process runners and output parsing."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
import os
from pathlib import Path
import shutil

from .backends import BACKENDS, Backend, expand_command, get_backend
from .filters import (
    CompileFilter,
    DvipngFilter,
    DvisvgmFilter,
    GhostscriptFilter,
    LineBuffer,
    OutputFilter,
    PageReport,
    SnippetReport,
)
from .log import MessageSeverity, ToolchainLogParser, ToolchainMessage, parse_lines, parse_log
from .runner import (
    SPAWN_FAILURE_CODE,
    AsyncioProcessRunner,
    ProcessHandle,
    ProcessRunner,
    SubprocessRunner,
)


# TeX wraps its transcript at 79 columns by default, which splits markers.
MAX_PRINT_LINE = "10000"


def _looks_like_path(binary: str) -> bool:
    """Return True when ``binary`` already encodes a filesystem path."""
    if Path(binary).is_absolute():
        return True
    separators = [os.sep]
    if os.altsep:
        separators.append(os.altsep)
    return any(sep and sep in binary for sep in separators)


def missing_executables(commands: Iterable[Sequence[str]]) -> list[str]:
    """Return the executables of ``commands`` that cannot be found."""
    missing: list[str] = []
    for argv in commands:
        if not argv:
            continue
        binary = str(argv[0])
        if _looks_like_path(binary):
            found = Path(binary).exists()
        else:
            found = shutil.which(binary) is not None
        if not found and binary not in missing:
            missing.append(binary)
    return missing


def build_preview_env(document_dir: Path | None = None) -> dict[str, str]:
    """Construct the environment handed to toolchain processes."""
    env = os.environ.copy()
    env["max_print_line"] = MAX_PRINT_LINE
    if document_dir is not None:
        # The trailing separator keeps TeX's default search path.
        env["TEXINPUTS"] = f"{document_dir}{os.pathsep}{env.get('TEXINPUTS', '')}"
    return env


__all__ = [
    "BACKENDS",
    "AsyncioProcessRunner",
    "Backend",
    "CompileFilter",
    "DvipngFilter",
    "DvisvgmFilter",
    "GhostscriptFilter",
    "LineBuffer",
    "MessageSeverity",
    "OutputFilter",
    "PageReport",
    "ProcessHandle",
    "ProcessRunner",
    "SPAWN_FAILURE_CODE",
    "SnippetReport",
    "SubprocessRunner",
    "ToolchainLogParser",
    "ToolchainMessage",
    "build_preview_env",
    "expand_command",
    "get_backend",
    "missing_executables",
    "parse_lines",
    "parse_log",
]
