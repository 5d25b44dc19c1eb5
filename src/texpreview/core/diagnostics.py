"""Diagnostic abstractions shared across the preview pipeline."""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import Any, Protocol, runtime_checkable


logger = logging.getLogger(__name__)


@runtime_checkable
class DiagnosticEmitter(Protocol):
    """Interface used to surface warnings, errors, and structured events."""

    debug_enabled: bool

    def warning(self, message: str, exc: BaseException | None = None) -> None: ...

    def error(self, message: str, exc: BaseException | None = None) -> None: ...

    def event(self, name: str, payload: Mapping[str, Any]) -> None: ...


class NullEmitter:
    """Emitter that ignores every diagnostic."""

    debug_enabled: bool = False

    def warning(self, message: str, exc: BaseException | None = None) -> None:
        return

    def error(self, message: str, exc: BaseException | None = None) -> None:
        return

    def event(self, name: str, payload: Mapping[str, Any]) -> None:
        return


class LoggingEmitter:
    """Emitter that forwards diagnostics to the standard logging module."""

    def __init__(
        self, *, logger_obj: logging.Logger | None = None, debug_enabled: bool = False
    ) -> None:
        self._logger = logger_obj or logger
        self.debug_enabled = debug_enabled

    def warning(self, message: str, exc: BaseException | None = None) -> None:
        if exc is not None:
            self._logger.warning(message, exc_info=exc)
        else:
            self._logger.warning(message)

    def error(self, message: str, exc: BaseException | None = None) -> None:
        if exc is not None:
            self._logger.error(message, exc_info=exc)
        else:
            self._logger.error(message)

    def event(self, name: str, payload: Mapping[str, Any]) -> None:
        message = format_event_message(name, payload)
        if message:
            self._logger.info(message)
            return
        self._logger.debug("diagnostic event %s: %s", name, dict(payload))


def _short(key: Any) -> str:
    text = str(key or "")
    return text[:12] if text else "<unknown>"


def format_event_message(name: str, payload: Mapping[str, Any]) -> str | None:
    """Return a human-friendly summary for selected diagnostic events."""
    data = dict(payload)

    if name == "preview_build":
        count = data.get("count", 0)
        backend = data.get("backend") or "?"
        generation = data.get("generation") or 0
        suffix = f", retry {generation}" if generation else ""
        noun = "fragment" if count == 1 else "fragments"
        return f"Rendering {count} {noun} with {backend}{suffix}"

    if name == "preview_cached":
        tier = data.get("tier") or "cache"
        return f"Reusing cached preview {_short(data.get('key'))} ({tier})"

    if name == "batch_resubmitted":
        remaining = data.get("remaining", 0)
        failed = data.get("failed_index")
        return f"Fragment #{failed} produced no output; resubmitting {remaining} fragment(s)"

    if name == "fragment_error":
        index = data.get("index")
        summary = data.get("summary") or "error"
        return f"Fragment #{index}: {summary}"

    if name == "compile_failed":
        code = data.get("returncode")
        log_path = data.get("log") or "<no log>"
        return f"Compilation failed with status {code} (log: {log_path})"

    return None


__all__ = [
    "DiagnosticEmitter",
    "LoggingEmitter",
    "NullEmitter",
    "format_event_message",
]
