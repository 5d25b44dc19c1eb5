from __future__ import annotations

from pathlib import Path

from texpreview.adapters.latex.engines import (
    MessageSeverity,
    ToolchainLogParser,
    parse_lines,
    parse_log,
)


def test_error_collects_context_lines() -> None:
    messages = parse_lines(
        [
            "! Undefined control sequence.\n",
            "l.7 $\\foo\n",
            "<recently read> \\foo\n",
            "(./batch1.aux)\n",
        ]
    )
    assert len(messages) == 1
    assert messages[0].severity is MessageSeverity.ERROR
    assert messages[0].summary == "Undefined control sequence."
    assert messages[0].details == ["l.7 $\\foo", "<recently read> \\foo"]


def test_preview_markers_are_informational() -> None:
    messages = parse_lines(["! Preview: Snippet 1 started.\n"])
    assert messages[0].severity is MessageSeverity.INFO


def test_warnings_and_emergency_stop() -> None:
    parser = ToolchainLogParser()
    for line in [
        "LaTeX Warning: Reference `x' on page 1 undefined.",
        "! Undefined control sequence.",
        "! Emergency stop.",
        "Transcript written on batch1.log.",
    ]:
        parser.process_line(line)
    parser.finalize()

    severities = [message.severity for message in parser.messages]
    assert severities == [MessageSeverity.WARNING, MessageSeverity.ERROR]
    assert parser.errors()[0].details == ["Emergency stop."]


def test_rasterizer_messages() -> None:
    messages = parse_lines(
        [
            "dvipng warning: No image output from inclusion of raw PostScript",
            "dvisvgm ERROR: can't open file 'x.dvi' for reading",
        ]
    )
    assert [message.severity for message in messages] == [
        MessageSeverity.WARNING,
        MessageSeverity.ERROR,
    ]


def test_parse_log_missing_file(tmp_path: Path) -> None:
    assert parse_log(tmp_path / "absent.log") == []


def test_parse_log_reads_file(tmp_path: Path) -> None:
    log = tmp_path / "batch1.log"
    log.write_text("! Missing $ inserted.\n<inserted text>\n", encoding="utf-8")
    (message,) = parse_log(log)
    assert message.summary == "Missing $ inserted."
    assert message.details == ["<inserted text>"]
