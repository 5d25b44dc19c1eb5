"""Stable identity keys for rendered fragments."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
import hashlib
import json
from typing import Any

from .fragments import Appearance, Fragment


KEY_VERSION = 1

PreviewKey = str


@dataclass(frozen=True, slots=True)
class PreviewInputs:
    """Every input that influences the pixels of a rendered fragment."""

    processor: str
    preamble: str
    text: str
    image_format: str
    foreground: str | None = None
    background: str | None = None
    number: int | None = None


def _normalise(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _normalise(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalise(item) for item in value]
    return value


def compute_key(inputs: PreviewInputs) -> PreviewKey:
    """Return the SHA-256 digest of the canonical serialisation of ``inputs``."""
    payload = {"version": KEY_VERSION, **_normalise(asdict(inputs))}
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class ContentHasher:
    """Bind the processor identity so keys can be derived per fragment."""

    def __init__(self, processor: str, image_format: str) -> None:
        self.processor = processor
        self.image_format = image_format

    def inputs_for(self, fragment: Fragment, appearance: Appearance) -> PreviewInputs:
        preamble = "\n".join(
            part for part in (appearance.document_class, appearance.preamble) if part
        )
        return PreviewInputs(
            processor=self.processor,
            preamble=preamble,
            text=fragment.text,
            image_format=self.image_format,
            foreground=appearance.foreground,
            background=appearance.background,
            number=fragment.number,
        )

    def key_for(self, fragment: Fragment, appearance: Appearance) -> PreviewKey:
        return compute_key(self.inputs_for(fragment, appearance))


__all__ = ["KEY_VERSION", "ContentHasher", "PreviewInputs", "PreviewKey", "compute_key"]
