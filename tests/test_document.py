from __future__ import annotations

from pathlib import Path

from texpreview.adapters.document import TextDocument
from texpreview.core.config import PreviewConfig
from texpreview.core.fragments import DocumentModel
from texpreview.core.regions import IntervalRegionHost


SOURCE = (
    "\\documentclass[11pt]{article}\n"
    "\\usepackage{amsmath}\n"
    "\\begin{document}\n"
    "\\section{One}\n"
    "Inline $a$ here.\n"
    "\\section{Two}\n"
    "\\begin{equation}b\\end{equation}\n"
    "\\end{document}\n"
)


def test_text_document_satisfies_document_model() -> None:
    assert isinstance(TextDocument(SOURCE), DocumentModel)


def test_collect_fragments_by_range_and_point() -> None:
    document = TextDocument(SOURCE)
    inline = SOURCE.index("$a$")

    assert [f.text for f in document.collect_fragments(0, len(document))] == [
        "$a$",
        "\\begin{equation}b\\end{equation}",
    ]
    assert [f.text for f in document.collect_fragments(inline + 1, inline + 1)] == ["$a$"]
    assert document.collect_fragments(0, inline) == []


def test_appearance_uses_document_preamble() -> None:
    appearance = TextDocument(SOURCE, config=PreviewConfig(foreground="red")).appearance()
    assert appearance.document_class == "\\documentclass[11pt]{article}"
    assert appearance.preamble == "\\usepackage{amsmath}"
    assert appearance.foreground == "red"


def test_appearance_falls_back_to_config() -> None:
    config = PreviewConfig(document_class="book", preamble=["\\usepackage{amssymb}"])
    appearance = TextDocument("Just $x$.", config=config).appearance()
    assert appearance.document_class == "book"
    assert appearance.preamble == "\\usepackage{amssymb}"


def test_section_bounds() -> None:
    document = TextDocument(SOURCE)
    first = SOURCE.index("\\section{One}")
    second = SOURCE.index("\\section{Two}")
    assert document.section_bounds(SOURCE.index("$a$")) == (first, second)
    assert document.section_bounds(SOURCE.index("equation")) == (
        second,
        SOURCE.index("\\end{document}"),
    )


def test_edits_invalidate_fragments_and_move_regions() -> None:
    document = TextDocument("x $a$ y")
    handle = document.region_host.create(2, 5)

    document.insert(0, "new ")
    assert [f.text for f in document.fragments()] == ["$a$"]
    assert document.fragments()[0].start == 6
    assert document.region_host.bounds(handle) == (6, 9)

    document.replace(7, 8, "bb")
    assert document.text(6, 10) == "$bb$"
    assert document.region_host.bounds(handle) == (6, 10)


def test_from_file_records_directory(tmp_path: Path) -> None:
    path = tmp_path / "paper.tex"
    path.write_text(SOURCE, encoding="utf-8")
    document = TextDocument.from_file(path)
    assert document.directory == tmp_path.resolve()
    assert len(document.fragments()) == 2


def test_injected_empty_region_host_is_kept() -> None:
    host = IntervalRegionHost()
    document = TextDocument(SOURCE, region_host=host)
    assert document.region_host is host
