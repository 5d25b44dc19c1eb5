"""Plain-text LaTeX documents implementing the document model."""

from __future__ import annotations

from pathlib import Path
import re

from texpreview.core.config import PreviewConfig
from texpreview.core.fragments import Appearance, Fragment
from texpreview.core.regions import IntervalRegionHost

from .scanner import body_start, scan_fragments


_DOCUMENT_CLASS = re.compile(r"\\documentclass(?:\[[^\]]*\])?\{[^}]*\}")
_SECTION = re.compile(r"\\(?:part|chapter|section|subsection|subsubsection)\*?\s*[\[{]")


class TextDocument:
    """A LaTeX buffer held in memory.

    Edits made through :meth:`insert`, :meth:`delete` and :meth:`replace` are
    forwarded to :attr:`region_host` so tracked regions follow the text.
    """

    def __init__(
        self,
        text: str = "",
        *,
        path: Path | None = None,
        config: PreviewConfig | None = None,
        region_host: IntervalRegionHost | None = None,
    ) -> None:
        self._text = text
        self.path = path
        self.config = config or PreviewConfig()
        self.region_host = region_host if region_host is not None else IntervalRegionHost()
        self._fragments: list[Fragment] | None = None

    @classmethod
    def from_file(cls, path: Path, *, config: PreviewConfig | None = None) -> TextDocument:
        return cls(path.read_text(encoding="utf-8"), path=path, config=config)

    @property
    def content(self) -> str:
        return self._text

    @property
    def directory(self) -> Path | None:
        return self.path.resolve().parent if self.path is not None else None

    def __len__(self) -> int:
        return len(self._text)

    # --------------------------------------------------------------- queries

    def text(self, start: int, end: int) -> str:
        return self._text[start:end]

    def fragments(self) -> list[Fragment]:
        if self._fragments is None:
            self._fragments = scan_fragments(self._text)
        return list(self._fragments)

    def collect_fragments(self, start: int, end: int) -> list[Fragment]:
        """Return fragments overlapping ``[start, end]``; an empty range acts as a point."""
        if start == end:
            return [f for f in self.fragments() if f.start <= start <= f.end]
        return [f for f in self.fragments() if f.overlaps(start, end)]

    def preamble(self) -> str:
        match = _DOCUMENT_CLASS.search(self._text)
        if match is None:
            return "\n".join(self.config.preamble)
        begin = self._text.find("\\begin{document}", match.end())
        stop = begin if begin >= 0 else match.end()
        return self._text[match.end() : stop].strip()

    def appearance(self) -> Appearance:
        match = _DOCUMENT_CLASS.search(self._text)
        document_class = match.group(0) if match else self.config.document_class
        return Appearance(
            document_class=document_class,
            preamble=self.preamble(),
            foreground=self.config.foreground,
            background=self.config.background,
        )

    def section_bounds(self, position: int) -> tuple[int, int]:
        """Return the range of the sectioning unit containing ``position``."""
        start = body_start(self._text)
        end = self._text.find("\\end{document}", start)
        end = len(self._text) if end < 0 else end
        for match in _SECTION.finditer(self._text, start, end):
            if match.start() <= position:
                start = match.start()
            else:
                end = match.start()
                break
        return (start, end)

    # ----------------------------------------------------------------- edits

    def insert(self, position: int, text: str) -> None:
        if not text:
            return
        position = max(0, min(position, len(self._text)))
        self._text = self._text[:position] + text + self._text[position:]
        self._fragments = None
        self.region_host.insert(position, len(text))

    def delete(self, start: int, end: int) -> None:
        start = max(0, start)
        end = min(end, len(self._text))
        if end <= start:
            return
        self._text = self._text[:start] + self._text[end:]
        self._fragments = None
        self.region_host.delete_range(start, end)

    def replace(self, start: int, end: int, text: str) -> None:
        self.delete(start, end)
        self.insert(start, text)


__all__ = ["TextDocument", "scan_fragments"]
