"""Two-stage toolchain strategies: compile the batch source, then extract images."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from texpreview.core.exceptions import ConfigError

from .filters import DvipngFilter, DvisvgmFilter, GhostscriptFilter, OutputFilter


FilterFactory = Callable[[Path, str, int], OutputFilter]


@dataclass(frozen=True, slots=True)
class Backend:
    """Command templates, exit-code policy and output filter of one toolchain.

    Template tokens are expanded with :meth:`str.format_map`; available
    placeholders are ``source``, ``basename``, ``intermediate``, ``output``,
    ``resolution`` and ``workdir``.
    """

    name: str
    image_format: str
    intermediate_suffix: str
    compile_template: tuple[str, ...]
    extract_template: tuple[str, ...]
    filter_factory: FilterFactory
    follow: bool = False
    nominal_exit_codes: frozenset[int] = field(default_factory=lambda: frozenset({0}))
    preview_exit_codes: frozenset[int] = field(default_factory=lambda: frozenset({1}))

    def processor_id(self, resolution: int, font_size: float) -> str:
        """Identify the render settings that change the produced image or its depth."""
        return f"{self.name}:{self.compile_template[0]}@{resolution}dpi/{font_size:g}pt"

    def compile_succeeded(self, returncode: int, *, markers_seen: bool) -> bool:
        """Tell whether the compile stage exit status is nominal.

        In ``auctex`` mode every preview marker is reported as an error, so
        the compiler exits 1 even when all snippets were shipped out.
        """
        if returncode in self.nominal_exit_codes:
            return True
        return markers_seen and returncode in self.preview_exit_codes

    def output_pattern(self, basename: str) -> str:
        marker = "%p" if self.name == "dvisvgm" else "%d"
        return f"{basename}-{marker}.{self.image_format}"

    def make_filter(self, workdir: Path, basename: str, resolution: int) -> OutputFilter:
        return self.filter_factory(workdir, basename, resolution)


def _dvipng_filter(workdir: Path, basename: str, resolution: int) -> OutputFilter:
    return DvipngFilter(workdir, basename, ".png")


def _dvisvgm_filter(workdir: Path, basename: str, resolution: int) -> OutputFilter:
    return DvisvgmFilter(workdir, basename, resolution)


def _ghostscript_filter(workdir: Path, basename: str, resolution: int) -> OutputFilter:
    return GhostscriptFilter(workdir, basename, ".png")


_LATEX = ("latex", "-interaction=nonstopmode", "{source}")

BACKENDS: dict[str, Backend] = {
    "dvipng": Backend(
        name="dvipng",
        image_format="png",
        intermediate_suffix=".dvi",
        compile_template=_LATEX,
        extract_template=(
            "dvipng",
            "-picky",
            "-noghostscript",
            "-D",
            "{resolution}",
            "--depth",
            "--height",
            "--follow",
            "-o",
            "{output}",
            "{intermediate}",
        ),
        filter_factory=_dvipng_filter,
        follow=True,
    ),
    "dvisvgm": Backend(
        name="dvisvgm",
        image_format="svg",
        intermediate_suffix=".dvi",
        compile_template=_LATEX,
        extract_template=(
            "dvisvgm",
            "--no-fonts",
            "--exact-bbox",
            "--page=1-",
            "--output={output}",
            "{intermediate}",
        ),
        filter_factory=_dvisvgm_filter,
    ),
    "ghostscript": Backend(
        name="ghostscript",
        image_format="png",
        intermediate_suffix=".pdf",
        compile_template=("pdflatex", "-interaction=nonstopmode", "{source}"),
        extract_template=(
            "gs",
            "-dNOPAUSE",
            "-dBATCH",
            "-dSAFER",
            "-sDEVICE=pngalpha",
            "-r{resolution}",
            "-dTextAlphaBits=4",
            "-dGraphicsAlphaBits=4",
            "-sOutputFile={output}",
            "{intermediate}",
        ),
        filter_factory=_ghostscript_filter,
    ),
}


def get_backend(name: str) -> Backend:
    try:
        return BACKENDS[name]
    except KeyError:
        available = ", ".join(sorted(BACKENDS))
        raise ConfigError(f"Unknown preview backend '{name}' (available: {available})") from None


def expand_command(template: Sequence[str], values: Mapping[str, object]) -> list[str]:
    """Substitute ``{placeholders}`` in every token of a command template."""
    argv: list[str] = []
    for token in template:
        try:
            argv.append(token.format_map(values))
        except (KeyError, IndexError, ValueError) as exc:
            raise ConfigError(f"Invalid placeholder in command token '{token}': {exc}") from exc
    return argv


__all__ = ["BACKENDS", "Backend", "FilterFactory", "expand_command", "get_backend"]
