"""Configuration models for the preview pipeline.

PreviewConfig

`backend` (`str`)
: Toolchain strategy used to produce images: `dvipng` (compile to DVI and
  rasterize while the compiler runs), `dvisvgm` (compile to DVI then emit
  SVG), or `ghostscript` (compile to PDF then rasterize).

`resolution` (`int`)
: Output resolution in dots per inch handed to the rasterizer.

`image_format` (`str | None`)
: Override the backend's natural image format (`png`, `svg`, ...).

`foreground` / `background` (`str | None`)
: Colours applied to rendered fragments as `r,g,b` triplets in `[0, 1]` or
  LaTeX colour names. `None` keeps the document defaults.

`font_size` (`float`)
: Point size used to express fragment depth in font-relative units.

`document_class` / `preamble`
: Class and extra preamble lines used when the document does not provide
  its own appearance context.

`debounce_delay` / `defer_delay` / `cleanup_delay` (`float`)
: Quiet period before live regeneration, delay before regenerating a region
  the cursor just left, and grace period before intermediate files are
  deleted.

`live_max_count` (`int`)
: Number of live previews stored before the live tier is wiped.

`max_resubmissions` (`int`)
: How many times the remainder of a truncated batch is resubmitted.

`tier` (`str`)
: Cache tier for regular previews: `persistent` or `temporary`.

`expiry` (`str`)
: Default persistent expiry policy: `never`, `always`, `<N>d`, or
  `custom:<name>`.

`gc_interval` (`float | None`)
: Seconds between background garbage collections of the persistent tier.

`debug` (`bool`)
: Keep every intermediate file and log.

`commands` (`dict[str, list[str]]`)
: Per-stage command template overrides (`compile`, `extract`).
"""

from __future__ import annotations

from pathlib import Path
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
import yaml

from .exceptions import ConfigError


CONFIG_FILENAMES = ("texpreview.yml", "texpreview.yaml", ".texpreview.yml")

_EXPIRY_PATTERN = re.compile(r"^(never|always|\d+d|custom:[A-Za-z0-9_.-]+)$")


class PreviewConfig(BaseModel):
    """Validated settings shared by every component of the pipeline."""

    model_config = ConfigDict(extra="forbid")

    backend: Literal["dvipng", "dvisvgm", "ghostscript"] = "dvipng"
    resolution: int = Field(default=120, gt=0)
    image_format: str | None = None
    foreground: str | None = None
    background: str | None = None
    font_size: float = Field(default=10.0, gt=0)
    document_class: str = "article"
    preamble: list[str] = Field(default_factory=lambda: ["\\usepackage{amsmath}"])
    debounce_delay: float = Field(default=0.5, ge=0)
    defer_delay: float = Field(default=0.05, ge=0)
    cleanup_delay: float = Field(default=1.0, ge=0)
    live_max_count: int = Field(default=1024, gt=0)
    max_resubmissions: int = Field(default=1, ge=0)
    tier: Literal["persistent", "temporary"] = "persistent"
    expiry: str = "30d"
    gc_interval: float | None = Field(default=None, gt=0)
    live_preview: bool = True
    debug: bool = False
    commands: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("expiry")
    @classmethod
    def _check_expiry(cls, value: str) -> str:
        token = value.strip()
        if not _EXPIRY_PATTERN.match(token):
            raise ValueError(
                "expiry must be 'never', 'always', '<N>d' or 'custom:<name>', "
                f"got {value!r}"
            )
        return token

    @field_validator("commands")
    @classmethod
    def _check_commands(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        unknown = set(value) - {"compile", "extract"}
        if unknown:
            raise ValueError(f"unknown command stages: {', '.join(sorted(unknown))}")
        for stage, argv in value.items():
            if not argv:
                raise ValueError(f"command template for '{stage}' is empty")
        return value


def find_config_file(base: Path | None = None) -> Path | None:
    """Return the first configuration file found in ``base`` (or the cwd)."""
    root = (base or Path.cwd()).resolve()
    for name in CONFIG_FILENAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def load_config(
    path: Path | str | None = None,
    *,
    overrides: dict[str, Any] | None = None,
) -> PreviewConfig:
    """Load configuration from YAML, applying optional keyword overrides."""
    payload: dict[str, Any] = {}
    source = Path(path) if path is not None else find_config_file()
    if source is not None:
        try:
            raw = source.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Unable to read configuration '{source}': {exc}") from exc
        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in '{source}': {exc}") from exc
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Configuration '{source}' must be a mapping.")
        payload.update(loaded or {})

    if overrides:
        payload.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return PreviewConfig.model_validate(payload)
    except ValidationError as exc:
        label = f" '{source}'" if source is not None else ""
        raise ConfigError(f"Invalid configuration{label}: {exc}") from exc


__all__ = ["CONFIG_FILENAMES", "PreviewConfig", "find_config_file", "load_config"]
