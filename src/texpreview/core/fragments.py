"""Value objects describing previewable fragments and their document."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class FragmentKind(Enum):
    """Whether a fragment sits inside running text or on its own line."""

    INLINE = "inline"
    BLOCK = "block"


@dataclass(frozen=True, slots=True)
class Fragment:
    """A delimited span of source text rendered as one preview image.

    ``start``/``end`` are character offsets into the document, ``text`` is the
    raw source including its delimiters.
    """

    start: int
    end: int
    text: str
    kind: FragmentKind = FragmentKind.INLINE
    environment: str | None = None
    number: int | None = None

    @property
    def range(self) -> tuple[int, int]:
        return (self.start, self.end)

    def overlaps(self, start: int, end: int) -> bool:
        return self.start < end and start < self.end


@dataclass(frozen=True, slots=True)
class Appearance:
    """Document-wide appearance context shared by every fragment of a batch."""

    document_class: str = "article"
    preamble: str = ""
    foreground: str | None = None
    background: str | None = None

    @property
    def context_id(self) -> tuple[str, str]:
        """Fragments sharing this pair can be compiled in one source file."""
        return (self.document_class, self.preamble)


@runtime_checkable
class DocumentModel(Protocol):
    """Query interface over the document hosting the fragments."""

    def collect_fragments(self, start: int, end: int) -> list[Fragment]: ...

    def text(self, start: int, end: int) -> str: ...

    def appearance(self) -> Appearance: ...

    def section_bounds(self, position: int) -> tuple[int, int]: ...

    def __len__(self) -> int: ...


__all__ = ["Appearance", "DocumentModel", "Fragment", "FragmentKind"]
