"""Incremental parsing of toolchain output into structured messages."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
import re


class MessageSeverity(Enum):
    """Classification severity extracted from toolchain output."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(slots=True)
class ToolchainMessage:
    """Structured message extracted from a compiler or rasterizer transcript."""

    severity: MessageSeverity
    summary: str
    details: list[str] = field(default_factory=list)


_MESSAGE_PATTERNS: list[tuple[re.Pattern[str], MessageSeverity]] = [
    (re.compile(r"^! Preview: (?P<summary>.+)$"), MessageSeverity.INFO),
    (re.compile(r"^! (?P<summary>.+)$"), MessageSeverity.ERROR),
    (re.compile(r"^\S+:\d+: (?P<summary>.+)$"), MessageSeverity.ERROR),
    (re.compile(r"^LaTeX Error: (?P<summary>.+)$"), MessageSeverity.ERROR),
    (re.compile(r"^LaTeX Warning: (?P<summary>.+)$"), MessageSeverity.WARNING),
    (re.compile(r"^Package (?P<context>\S+) Warning: (?P<summary>.+)$"), MessageSeverity.WARNING),
    (re.compile(r"^Class (?P<context>\S+) Warning: (?P<summary>.+)$"), MessageSeverity.WARNING),
    (re.compile(r"^Missing character:(?P<summary>.+)$", re.I), MessageSeverity.WARNING),
    (re.compile(r"^dvipng warning: (?P<summary>.+)$", re.I), MessageSeverity.WARNING),
    (re.compile(r"^dvipng: (?P<summary>.+)$", re.I), MessageSeverity.ERROR),
    (re.compile(r"^(?:dvisvgm )?(?:ERROR|error): (?P<summary>.+)$"), MessageSeverity.ERROR),
    (re.compile(r"^WARNING: (?P<summary>.+)$"), MessageSeverity.WARNING),
    (re.compile(r"^(?:GPL )?Ghostscript.*?(?P<summary>Unrecoverable error.*)$"), MessageSeverity.ERROR),
    (re.compile(r"^Error: (?P<summary>.+)$"), MessageSeverity.ERROR),
    (re.compile(r"^Preview: (?P<summary>.+)$"), MessageSeverity.INFO),
    (re.compile(r"^This is (?P<summary>.+)$"), MessageSeverity.INFO),
]

_ERROR_CONTINUATIONS = (
    "Emergency stop.",
    "==> Fatal error occurred, no output PDF file produced!",
)

_DETAIL_PREFIXES = (
    "Type ",
    "Enter file name",
    "or enter new name",
    "<read ",
    "<recently read>",
    "<argument>",
    "<to be read again>",
    "<inserted text>",
    "*** ",
    "l.",
)


class ToolchainLogParser:
    """Incrementally classify transcript lines into messages."""

    def __init__(self) -> None:
        self._current: ToolchainMessage | None = None
        self._messages: list[ToolchainMessage] = []

    @property
    def messages(self) -> Sequence[ToolchainMessage]:
        """Return the messages accumulated so far."""
        return tuple(self._messages)

    def process_line(self, line: str) -> list[ToolchainMessage]:
        """Process a transcript line and return messages that just completed."""
        payload = line.rstrip("\r\n")
        if not payload.strip() or self._should_ignore(payload):
            return []

        severity, summary = self._match_message(payload)
        if severity is not None:
            if (
                self._current is not None
                and self._current.severity is MessageSeverity.ERROR
                and summary in _ERROR_CONTINUATIONS
            ):
                self._current.details.append(summary)
                return []
            completed = self._finalize_current()
            self._current = ToolchainMessage(severity=severity, summary=summary or payload)
            return completed

        if self._current is not None and self._is_detail_line(payload):
            self._current.details.append(payload.strip())
            return []

        # Unclassified chatter (file lists, page counters) is not a message.
        return self._finalize_current()

    def finalize(self) -> list[ToolchainMessage]:
        """Flush any pending message."""
        return self._finalize_current()

    def errors(self) -> list[ToolchainMessage]:
        return [m for m in self._messages if m.severity is MessageSeverity.ERROR]

    def _finalize_current(self) -> list[ToolchainMessage]:
        if self._current is None:
            return []
        current, self._current = self._current, None
        self._messages.append(current)
        return [current]

    @staticmethod
    def _is_detail_line(line: str) -> bool:
        return line.startswith(_DETAIL_PREFIXES) or (line.startswith(" ") and bool(line.strip()))

    @staticmethod
    def _should_ignore(line: str) -> bool:
        trimmed = line.strip()
        return trimmed.startswith(("Output written on", "Transcript written on"))

    @staticmethod
    def _match_message(line: str) -> tuple[MessageSeverity | None, str | None]:
        for pattern, severity in _MESSAGE_PATTERNS:
            match = pattern.match(line)
            if match:
                summary = (match.groupdict().get("summary") or "").strip()
                return severity, summary or line.strip()
        return None, None


def parse_lines(lines: Iterable[str]) -> list[ToolchainMessage]:
    """Parse an iterable of transcript lines into messages."""
    parser = ToolchainLogParser()
    for line in lines:
        parser.process_line(line)
    parser.finalize()
    return list(parser.messages)


def parse_log(log_path: Path) -> list[ToolchainMessage]:
    """Parse a log file into structured messages."""
    if not log_path.exists():
        return []
    with log_path.open("r", encoding="utf-8", errors="replace") as handle:
        return parse_lines(handle)


__all__ = [
    "MessageSeverity",
    "ToolchainLogParser",
    "ToolchainMessage",
    "parse_lines",
    "parse_log",
]
