"""Incremental filters turning toolchain output into per-fragment reports.

Runners deliver output in arbitrary chunks. Line-oriented filters are fed the
complete lines reassembled by :class:`LineBuffer`; filters flagged with
``partial_lines`` take the raw chunks so reports printed without a trailing
newline surface while the process is still running. Pages and
snippets are numbered from 1 in document order.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import re
from typing import Protocol, runtime_checkable


TEX_POINTS_PER_INCH = 72.27
SCALED_POINTS_PER_POINT = 65536


@dataclass(slots=True)
class SnippetReport:
    """Compile-stage facts about one snippet; dimensions are in scaled points."""

    index: int
    height: int | None = None
    depth: int | None = None
    width: int | None = None
    error: str | None = None


@dataclass(slots=True)
class PageReport:
    """Extraction-stage facts about one produced image; dimensions in pixels."""

    page: int
    path: Path
    width: int | None = None
    height: int | None = None
    depth: int | None = None


@runtime_checkable
class OutputFilter(Protocol):
    """Stage-two filter recognising produced images in the tool transcript."""

    partial_lines: bool

    def feed(self, line: str) -> list[PageReport]: ...

    def finish(self) -> list[PageReport]: ...


class LineBuffer:
    """Reassemble newline-terminated lines from arbitrary output chunks."""

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, chunk: str) -> list[str]:
        head, sep, self._pending = (self._pending + chunk).rpartition("\n")
        if not sep:
            return []
        return [line + "\n" for line in head.split("\n")]

    def flush(self) -> list[str]:
        pending, self._pending = self._pending, ""
        return [pending] if pending else []


_SNIPPET = re.compile(
    r"^! Preview: Snippet (?P<index>-?\d+) (?P<phase>started|ended)"
    r"(?:\.?\s*\((?P<height>-?\d+)\+(?P<depth>-?\d+)x(?P<width>-?\d+)\))?\."
)
_FONTSIZE = re.compile(r"^Preview: Fontsize (?P<size>\d+(?:\.\d+)?)pt")


class CompileFilter:
    """Track preview markers emitted by the compiler in ``auctex`` mode."""

    def __init__(self) -> None:
        self.snippets: dict[int, SnippetReport] = {}
        self.font_size: float | None = None
        self._current: int | None = None
        self._errors: list[str] = []
        self._capturing = False

    @property
    def markers_seen(self) -> bool:
        return bool(self.snippets) or self._current is not None

    @property
    def completed(self) -> int:
        return len(self.snippets)

    def feed(self, line: str) -> list[SnippetReport]:
        text = line.rstrip("\r\n")
        match = _SNIPPET.match(text)
        if match:
            index = int(match.group("index"))
            if match.group("phase") == "started":
                self._current = index
                self._errors = []
                self._capturing = False
                return []
            report = SnippetReport(
                index=index,
                height=_optional_int(match.group("height")),
                depth=_optional_int(match.group("depth")),
                width=_optional_int(match.group("width")),
                error="\n".join(self._errors) or None,
            )
            self.snippets[index] = report
            self._current = None
            self._errors = []
            self._capturing = False
            return [report]

        size = _FONTSIZE.match(text)
        if size:
            self.font_size = float(size.group("size"))
            return []

        if self._current is None:
            return []
        if text.startswith("! "):
            self._capturing = True
            self._errors.append(text[2:].strip())
        elif self._capturing:
            if text.strip():
                self._errors.append(text.strip())
            else:
                self._capturing = False
        return []


class DvipngFilter:
    """Recognise ``[N depth=.. height=..]`` page reports printed by dvipng."""

    partial_lines = True
    _PAGE = re.compile(r"\[(?P<page>\d+)(?P<body>[^\[\]]*)\]")
    _DIMENSION = re.compile(r"\b(?P<name>depth|height|width)=(?P<value>-?\d+)")

    def __init__(self, workdir: Path, basename: str, suffix: str = ".png") -> None:
        self.workdir = workdir
        self.basename = basename
        self.suffix = suffix
        self._buffer = ""

    def feed(self, line: str) -> list[PageReport]:
        # Reports may straddle lines; keep whatever follows the last bracket.
        self._buffer += line.replace("\n", " ")
        reports: list[PageReport] = []
        consumed = 0
        for match in self._PAGE.finditer(self._buffer):
            reports.append(self._report(match))
            consumed = match.end()
        tail = self._buffer[consumed:]
        self._buffer = tail[tail.rfind("[") :] if "[" in tail else ""
        return reports

    def finish(self) -> list[PageReport]:
        self._buffer = ""
        return []

    def _report(self, match: re.Match[str]) -> PageReport:
        page = int(match.group("page"))
        dims = {
            item.group("name"): int(item.group("value"))
            for item in self._DIMENSION.finditer(match.group("body"))
        }
        return PageReport(
            page=page,
            path=self.workdir / f"{self.basename}-{page}{self.suffix}",
            width=dims.get("width"),
            height=dims.get("height"),
            depth=dims.get("depth"),
        )


class DvisvgmFilter:
    """Recognise ``processing page N`` / ``output written to`` pairs from dvisvgm."""

    partial_lines = False
    _PAGE = re.compile(r"^\s*processing page (?P<page>\d+)")
    _PREVIEW = re.compile(
        r"width=(?P<width>-?[\d.]+)pt,\s*height=(?P<height>-?[\d.]+)pt,"
        r"\s*depth=(?P<depth>-?[\d.]+)pt"
    )
    _SIZE = re.compile(r"graphic size: (?P<width>[\d.]+)pt x (?P<height>[\d.]+)pt")
    _WRITTEN = re.compile(r"output written to (?P<path>.+?)\s*$")

    def __init__(self, workdir: Path, basename: str, resolution: int) -> None:
        self.workdir = workdir
        self.basename = basename
        self.resolution = resolution
        self._page: int | None = None
        self._dims: dict[str, int] = {}

    def feed(self, line: str) -> list[PageReport]:
        text = line.rstrip("\r\n")
        page = self._PAGE.match(text)
        if page:
            self._page = int(page.group("page"))
            self._dims = {}
            return []
        if self._page is None:
            return []
        preview = self._PREVIEW.search(text)
        if preview:
            self._dims["depth"] = self._pixels(preview.group("depth"))
            return []
        size = self._SIZE.search(text)
        if size:
            self._dims["width"] = self._pixels(size.group("width"))
            self._dims["height"] = self._pixels(size.group("height"))
            return []
        written = self._WRITTEN.search(text)
        if written:
            report = PageReport(
                page=self._page,
                path=self.workdir / written.group("path"),
                width=self._dims.get("width"),
                height=self._dims.get("height"),
                depth=self._dims.get("depth"),
            )
            self._page = None
            self._dims = {}
            return [report]
        return []

    def finish(self) -> list[PageReport]:
        self._page = None
        return []

    def _pixels(self, points: str) -> int:
        return round(float(points) * self.resolution / TEX_POINTS_PER_INCH)


class GhostscriptFilter:
    """Recognise ``Page N`` lines; a page is done once the next starts or gs exits."""

    partial_lines = False
    _PAGE = re.compile(r"^Page (?P<page>\d+)\s*$")

    def __init__(self, workdir: Path, basename: str, suffix: str = ".png") -> None:
        self.workdir = workdir
        self.basename = basename
        self.suffix = suffix
        self._page: int | None = None

    def feed(self, line: str) -> list[PageReport]:
        match = self._PAGE.match(line.rstrip("\r\n"))
        if not match:
            return []
        reports = self._complete()
        self._page = int(match.group("page"))
        return reports

    def finish(self) -> list[PageReport]:
        return self._complete()

    def _complete(self) -> list[PageReport]:
        if self._page is None:
            return []
        page, self._page = self._page, None
        return [PageReport(page=page, path=self.workdir / f"{self.basename}-{page}{self.suffix}")]


def _optional_int(value: str | None) -> int | None:
    return int(value) if value is not None else None


__all__ = [
    "CompileFilter",
    "DvipngFilter",
    "DvisvgmFilter",
    "GhostscriptFilter",
    "LineBuffer",
    "OutputFilter",
    "PageReport",
    "SCALED_POINTS_PER_POINT",
    "SnippetReport",
    "TEX_POINTS_PER_INCH",
]
