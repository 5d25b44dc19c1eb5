"""Locate previewable math fragments in LaTeX source text."""

from __future__ import annotations

from dataclasses import dataclass
import re

from texpreview.core.fragments import Fragment, FragmentKind


NUMBERED_ENVIRONMENTS = frozenset({"equation", "align", "gather", "multline", "eqnarray", "flalign"})
MULTILINE_ENVIRONMENTS = frozenset({"align", "gather", "eqnarray", "flalign"})
DISPLAY_ENVIRONMENTS = (
    NUMBERED_ENVIRONMENTS | {f"{name}*" for name in NUMBERED_ENVIRONMENTS} | {"displaymath"}
)
VERBATIM_ENVIRONMENTS = frozenset({"verbatim", "verbatim*", "lstlisting", "minted", "comment"})

_BEGIN = re.compile(r"\\begin\{(?P<name>[A-Za-z]+\*?)\}")
_BEGIN_DOCUMENT = re.compile(r"\\begin\{document\}")
_VERB = re.compile(r"\\verb\*?(?P<delim>[^A-Za-z\s*])")
_ROW_BREAK = re.compile(r"\\\\")
_NO_NUMBER = re.compile(r"\\(?:nonumber|notag)\b")
_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n")


@dataclass(slots=True)
class _Cursor:
    text: str
    position: int
    counter: int = 0


def body_start(text: str) -> int:
    """Return the offset right after ``\\begin{document}`` (0 without one)."""
    match = _BEGIN_DOCUMENT.search(text)
    return match.end() if match else 0


def scan_fragments(text: str) -> list[Fragment]:
    """Return every math fragment of ``text`` in document order."""
    fragments: list[Fragment] = []
    cursor = _Cursor(text=text, position=body_start(text))
    length = len(text)
    while cursor.position < length:
        char = text[cursor.position]
        if char == "%":
            newline = text.find("\n", cursor.position)
            cursor.position = length if newline < 0 else newline + 1
        elif char == "\\":
            fragment = _scan_command(cursor)
            if fragment is not None:
                fragments.append(fragment)
        elif char == "$":
            fragment = _scan_dollar(cursor)
            if fragment is not None:
                fragments.append(fragment)
        else:
            cursor.position += 1
    return fragments


def _scan_command(cursor: _Cursor) -> Fragment | None:
    text = cursor.text
    start = cursor.position
    following = text[start + 1 : start + 2]
    if following == "(":
        return _delimited(cursor, "\\(", "\\)", FragmentKind.INLINE)
    if following == "[":
        return _delimited(cursor, "\\[", "\\]", FragmentKind.BLOCK)

    verb = _VERB.match(text, start)
    if verb:
        closing = text.find(verb.group("delim"), verb.end())
        cursor.position = verb.end() if closing < 0 else closing + 1
        return None

    begin = _BEGIN.match(text, start)
    if begin:
        name = begin.group("name")
        closing_tag = f"\\end{{{name}}}"
        if name in VERBATIM_ENVIRONMENTS:
            closing = text.find(closing_tag, begin.end())
            cursor.position = len(text) if closing < 0 else closing + len(closing_tag)
            return None
        if name in DISPLAY_ENVIRONMENTS:
            closing = _find_closing(text, begin.end(), closing_tag)
            if closing < 0:
                cursor.position = begin.end()
                return None
            end = closing + len(closing_tag)
            body = text[begin.end() : closing]
            cursor.position = end
            return Fragment(
                start=start,
                end=end,
                text=text[start:end],
                kind=FragmentKind.BLOCK,
                environment=name,
                number=_number(cursor, name, body),
            )
        cursor.position = begin.end()
        return None

    # Control symbol or word: skip the backslash and the next character so
    # escaped dollars and percent signs are never taken as delimiters.
    cursor.position = start + 2
    return None


def _scan_dollar(cursor: _Cursor) -> Fragment | None:
    text = cursor.text
    if text.startswith("$$", cursor.position):
        return _delimited(cursor, "$$", "$$", FragmentKind.BLOCK)
    return _delimited(cursor, "$", "$", FragmentKind.INLINE)


def _delimited(cursor: _Cursor, opening: str, closing: str, kind: FragmentKind) -> Fragment | None:
    text = cursor.text
    start = cursor.position
    inner = start + len(opening)
    close_at = _find_closing(text, inner, closing, stop_at_paragraph=kind is FragmentKind.INLINE)
    if close_at < 0 or close_at == inner:
        cursor.position = inner
        return None
    end = close_at + len(closing)
    cursor.position = end
    return Fragment(start=start, end=end, text=text[start:end], kind=kind)


def _find_closing(text: str, position: int, closing: str, *, stop_at_paragraph: bool = False) -> int:
    """Return the offset of ``closing`` after ``position``, honouring escapes."""
    limit = len(text)
    if stop_at_paragraph:
        paragraph = _PARAGRAPH_BREAK.search(text, position)
        if paragraph:
            limit = paragraph.start()
    index = position
    while index < limit:
        if text.startswith(closing, index):
            return index
        char = text[index]
        if char == "\\":
            index += 2
        elif char == "%":
            newline = text.find("\n", index)
            index = limit if newline < 0 else newline + 1
        else:
            index += 1
    return -1


def _number(cursor: _Cursor, environment: str, body: str) -> int | None:
    if environment not in NUMBERED_ENVIRONMENTS:
        return None
    rows = 1
    if environment in MULTILINE_ENVIRONMENTS:
        rows = len(_ROW_BREAK.findall(body.rstrip().removesuffix("\\\\"))) + 1
        rows -= len(_NO_NUMBER.findall(body))
    elif _NO_NUMBER.search(body):
        rows = 0
    first = cursor.counter + 1
    cursor.counter += max(rows, 0)
    return first if rows > 0 else None


__all__ = [
    "DISPLAY_ENVIRONMENTS",
    "NUMBERED_ENVIRONMENTS",
    "body_start",
    "scan_fragments",
]
