"""Facade exposing the preview surface to editor integrations.

Architecture
: `PreviewService` owns one document's regions and wires the cache, the batch
  scheduler, the compile pipeline and the cursor-driven display together.
: `PreviewScope` names the ranges `preview()` accepts, from a single point to
  the whole buffer, plus their `clear-*` counterparts.

Usage Example
:
    >>> from texpreview.adapters.document import TextDocument
    >>> from texpreview.api import PreviewScope
    >>> document = TextDocument("Pythagoras: $a^2 + b^2 = c^2$.")
    >>> [fragment.text for fragment in document.collect_fragments(0, len(document))]
    ['$a^2 + b^2 = c^2$']
    >>> PreviewScope("clear-section").extent.value
    'section'
"""

from __future__ import annotations

from texpreview.core.user_dir import (
    TexpreviewUserDir,
    configure_user_dir,
    get_user_dir,
    user_dir_context,
)

from .service import LiveListener, PreviewScope, PreviewService


__all__ = [
    "LiveListener",
    "PreviewScope",
    "PreviewService",
    "TexpreviewUserDir",
    "configure_user_dir",
    "get_user_dir",
    "user_dir_context",
]
