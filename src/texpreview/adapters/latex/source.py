"""Assemble the LaTeX source compiled for one batch of fragments."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
import re

from jinja2 import Environment, FileSystemLoader

from texpreview.core.fragments import Appearance, Fragment


TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
BATCH_TEMPLATE = "batch.tex"

_RGB = re.compile(r"^\s*\d*\.?\d+\s*,\s*\d*\.?\d+\s*,\s*\d*\.?\d+\s*$")
_HTML = re.compile(r"^#?(?P<hex>[0-9A-Fa-f]{6})$")


@dataclass(slots=True)
class SourceItem:
    """One fragment as placed in the batch source."""

    body: str
    counter: int | None = None
    color_commands: list[str] = field(default_factory=list)


def _build_environment(template_dir: Path) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        block_start_string=r"\BLOCK{",
        block_end_string="}",
        variable_start_string=r"\VAR{",
        variable_end_string="}",
        comment_start_string=r"\#{",
        comment_end_string="}",
    )


def color_spec(value: str) -> str:
    """Return the ``[model]{value}`` argument selecting ``value`` with xcolor."""
    text = value.strip()
    if _RGB.match(text):
        return "[rgb]{" + ",".join(part.strip() for part in text.split(",")) + "}"
    html = _HTML.match(text)
    if html:
        return "[HTML]{" + html.group("hex").upper() + "}"
    return "{" + text + "}"


def document_class_line(document_class: str) -> str:
    line = document_class.strip() or "article"
    if line.startswith("\\documentclass"):
        return line
    return f"\\documentclass{{{line}}}"


class BatchSourceWriter:
    """Render batch sources from the packaged Jinja2 template."""

    def __init__(self, template_dir: Path = TEMPLATE_DIR) -> None:
        self.environment = _build_environment(template_dir)
        self.template = self.environment.get_template(BATCH_TEMPLATE)

    def render(self, fragments: Sequence[Fragment], appearance: Appearance) -> str:
        """Return the LaTeX source placing every fragment on its own page.

        Colour state starts empty for every call, so a source always sets its
        colours explicitly before the first fragment; later fragments only
        repeat the instructions when the colour changes.
        """
        items: list[SourceItem] = []
        current: tuple[str | None, str | None] = (None, None)
        for fragment in fragments:
            wanted = (appearance.foreground, appearance.background)
            commands: list[str] = []
            if wanted != current:
                foreground, background = wanted
                if foreground:
                    commands.append("\\color" + color_spec(foreground))
                if background:
                    commands.append("\\pagecolor" + color_spec(background))
                current = wanted
            counter = fragment.number - 1 if fragment.number is not None else None
            items.append(SourceItem(body=fragment.text, counter=counter, color_commands=commands))

        return self.template.render(
            document_class=document_class_line(appearance.document_class),
            preamble=appearance.preamble.strip(),
            uses_color=bool(appearance.foreground or appearance.background),
            items=items,
        )

    def write(self, path: Path, fragments: Sequence[Fragment], appearance: Appearance) -> Path:
        path.write_text(self.render(fragments, appearance), encoding="utf-8")
        return path


__all__ = ["BatchSourceWriter", "SourceItem", "color_spec", "document_class_line"]
