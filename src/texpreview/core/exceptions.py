"""Custom exception hierarchy for the fragment preview pipeline."""

from __future__ import annotations

from pathlib import Path


class PreviewError(RuntimeError):
    """Base exception for preview generation failures."""


class ToolchainMissingError(PreviewError):
    """Raised when a required compiler or rasterizer executable is absent."""

    def __init__(self, missing: list[str], *, backend: str | None = None) -> None:
        self.missing = list(missing)
        self.backend = backend
        formatted = ", ".join(sorted(self.missing))
        label = f" for backend '{backend}'" if backend else ""
        super().__init__(f"Missing toolchain executables{label}: {formatted}")


class CompileError(PreviewError):
    """Raised (or reported) when the compile stage exits with a non-nominal status."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        log_path: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.log_path = log_path


class FragmentError(PreviewError):
    """A single fragment failed while its siblings rendered."""

    def __init__(self, message: str, *, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class TruncatedBatchError(PreviewError):
    """The extraction stage stopped before producing every fragment's output."""

    def __init__(self, message: str, *, failed_index: int, remaining: int) -> None:
        super().__init__(message)
        self.failed_index = failed_index
        self.remaining = remaining


class ConfigError(PreviewError):
    """Raised when the preview configuration cannot be loaded or validated."""


def exception_messages(exc: BaseException) -> list[str]:
    """Return the collected message chain for an exception and its causes."""
    messages: list[str] = []
    visited: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in visited:
        visited.add(id(current))
        text = str(current).strip()
        if text:
            first_line = text.splitlines()[0].strip()
            if first_line:
                messages.append(first_line)
        current = current.__cause__ or current.__context__
    return messages


def exception_hint(exc: BaseException) -> str | None:
    """Return the most specific message available for an exception chain."""
    messages = exception_messages(exc)
    return messages[-1] if messages else None


__all__ = [
    "CompileError",
    "ConfigError",
    "FragmentError",
    "PreviewError",
    "ToolchainMissingError",
    "TruncatedBatchError",
    "exception_hint",
    "exception_messages",
]
