"""Diagnostic emitter and toolchain message rendering for the CLI."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any, ClassVar

from texpreview.adapters.latex.engines import MessageSeverity, ToolchainMessage
from texpreview.core.diagnostics import DiagnosticEmitter, format_event_message

from .state import CLIState, emit_error, emit_warning, get_cli_state, render_message


if TYPE_CHECKING:
    from rich.console import Console


class CliEmitter(DiagnosticEmitter):
    """Emit diagnostics using the rich-enabled CLI helpers."""

    def __init__(self, state: CLIState | None = None, *, debug_enabled: bool | None = None) -> None:
        self._state = state or get_cli_state()
        if debug_enabled is None:
            debug_enabled = self._state.show_tracebacks
        self.debug_enabled = bool(debug_enabled)

    def warning(self, message: str, exc: BaseException | None = None) -> None:
        emit_warning(message, exception=exc)

    def error(self, message: str, exc: BaseException | None = None) -> None:
        emit_error(message, exception=exc)

    def event(self, name: str, payload: Mapping[str, Any]) -> None:
        data = dict(payload)
        self._state.record_event(name, data)
        if name == "preview_cached" and self._state.verbosity < 1:
            return
        message = format_event_message(name, data)
        if message:
            render_message("info", message)


class ToolchainMessageRenderer:
    """Print structured toolchain messages with severity colours."""

    _SUMMARY_STYLE: ClassVar[dict[MessageSeverity, str]] = {
        MessageSeverity.INFO: "cyan",
        MessageSeverity.WARNING: "bold yellow",
        MessageSeverity.ERROR: "bold red",
    }
    _DETAIL_STYLE: ClassVar[dict[MessageSeverity, str]] = {
        MessageSeverity.INFO: "cyan",
        MessageSeverity.WARNING: "yellow",
        MessageSeverity.ERROR: "red",
    }

    def __init__(self, console: Console, *, verbosity: int = 0) -> None:
        self.console = console
        self.verbosity = verbosity

    def render(self, messages: Iterable[ToolchainMessage]) -> int:
        """Print ``messages``; info lines only show up when verbose. Return the count."""
        from rich.text import Text

        shown = 0
        for message in messages:
            if message.severity is MessageSeverity.INFO and self.verbosity < 1:
                continue
            text = Text(message.summary, style=self._SUMMARY_STYLE[message.severity])
            for detail in message.details:
                text.append("\n  " + detail, style=self._DETAIL_STYLE[message.severity])
            self.console.print(text)
            shown += 1
        return shown


__all__ = ["CliEmitter", "ToolchainMessageRenderer"]
