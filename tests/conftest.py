from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
import os
from pathlib import Path
import re
from typing import Any

from PIL import Image
import pytest

from texpreview.core.cache import ArtifactCache, LiveTier, PersistentTier, TemporaryTier
from texpreview.core.user_dir import user_dir_context


_PREVIEW = re.compile(r"\\begin\{preview\}(?P<body>.*?)\\end\{preview\}", re.S)

TOOL_NAMES = ("latex", "pdflatex", "dvipng", "dvisvgm", "gs")


@dataclass
class RecordingEmitter:
    debug_enabled: bool = False
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def warning(self, message: str, exc: BaseException | None = None) -> None:
        self.warnings.append(message)

    def error(self, message: str, exc: BaseException | None = None) -> None:
        self.errors.append(message)

    def event(self, name: str, payload: Mapping[str, Any]) -> None:
        self.events.append((name, dict(payload)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@dataclass(slots=True)
class FakeHandle:
    argv: list[str]
    returncode: int | None = None
    killed: bool = False

    def kill(self) -> None:
        self.killed = True


@dataclass(slots=True)
class FakeToolchain:
    """Runner standing in for ``latex`` + ``dvipng``.

    The compile stage prints ``auctex`` preview markers for every preview
    environment of the source and writes the DVI file; the extract stage writes
    one PNG per page and, like dvipng, prints its ``[N depth=.. height=..]``
    reports on one line that only ends when the run does. With ``chunk`` set,
    output is delivered in pieces of that many characters.
    """

    concurrent: bool = False
    broken: set[str] = field(default_factory=set)
    truncate: set[str] = field(default_factory=set)
    fail_compile: bool = False
    depth: int = 3
    size: tuple[int, int] = (40, 12)
    chunk: int | None = None
    compiled: list[list[str]] = field(default_factory=list)
    handles: list[FakeHandle] = field(default_factory=list)

    def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        on_output: Callable[[str], None],
        on_exit: Callable[[int], None],
    ) -> FakeHandle:
        handle = FakeHandle(list(argv))
        self.handles.append(handle)
        assert env["max_print_line"] == "10000"
        tool = Path(argv[0]).name
        if self.chunk:
            on_output = _chunked(on_output, self.chunk)
        if tool in {"latex", "pdflatex"}:
            code = self._compile(Path(cwd), argv[-1], on_output)
        else:
            code = self._extract(Path(cwd), Path(argv[-1]).stem, on_output)
        handle.returncode = code
        on_exit(code)
        return handle

    def bodies(self, source: Path) -> list[str]:
        return [m.group("body") for m in _PREVIEW.finditer(source.read_text(encoding="utf-8"))]

    def _compile(self, cwd: Path, source: str, emit: Callable[[str], None]) -> int:
        bodies = self.bodies(cwd / source)
        self.compiled.append(bodies)
        emit(f"This is pdfTeX, Version 3.141592653 (fake) ({source})\n")
        if self.fail_compile:
            emit("! LaTeX Error: File `missing.sty' not found.\n")
            return 1
        (cwd / f"{Path(source).stem}.dvi").write_bytes(b"dvi")
        emit("Preview: Fontsize 10pt\n")
        for index, body in enumerate(bodies, start=1):
            emit(f"! Preview: Snippet {index} started.\n")
            if body in self.broken:
                emit("! Undefined control sequence.\n")
                emit(f"l.{index + 9} {body}\n")
                emit("\n")
            emit(f"! Preview: Snippet {index} ended.(491520+196608x983040).\n")
        return 1

    def _extract(self, cwd: Path, basename: str, emit: Callable[[str], None]) -> int:
        emit("This is dvipng 1.15 (fake) ")
        for page, body in enumerate(self.bodies(cwd / f"{basename}.tex"), start=1):
            if body in self.truncate:
                emit(f"\ndvipng: page {page} could not be rendered\n")
                return 1
            Image.new("RGBA", self.size).save(cwd / f"{basename}-{page}.png")
            emit(f"[{page} depth={self.depth} height={self.size[1] - self.depth}] ")
        emit("\n")
        return 0


def _chunked(emit: Callable[[str], None], size: int) -> Callable[[str], None]:
    def forward(text: str) -> None:
        for start in range(0, len(text), size):
            emit(text[start : start + size])

    return forward


@pytest.fixture
def fake_bin(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Put executable placeholders for every toolchain binary on ``PATH``."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for name in TOOL_NAMES:
        binary = bin_dir / name
        binary.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
        binary.chmod(0o755)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return bin_dir


@pytest.fixture
def toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def isolated_home(tmp_path: Path):
    with user_dir_context(root=tmp_path / "home", cache_root=tmp_path / "cache") as user_dir:
        yield user_dir


@pytest.fixture
def cache(tmp_path: Path):
    cache = ArtifactCache(
        persistent=PersistentTier(tmp_path / "persistent"),
        temporary=TemporaryTier(tmp_path / "temporary"),
        live=LiveTier(tmp_path / "live"),
    )
    yield cache
    cache.close()
