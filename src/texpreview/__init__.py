"""Inline previews of LaTeX math fragments, rendered and cached out of process."""

from __future__ import annotations

from texpreview.adapters.document import TextDocument
from texpreview.api import PreviewScope, PreviewService
from texpreview.core.cache import Artifact, ArtifactCache, CacheTier
from texpreview.core.config import PreviewConfig, load_config
from texpreview.core.exceptions import (
    CompileError,
    ConfigError,
    PreviewError,
    ToolchainMissingError,
)
from texpreview.core.fragments import Appearance, Fragment, FragmentKind
from texpreview.core.user_dir import (
    TexpreviewUserDir,
    configure_user_dir,
    get_user_dir,
    user_dir_context,
)
from texpreview.version import get_version


__version__ = get_version()


__all__ = [
    "Appearance",
    "Artifact",
    "ArtifactCache",
    "CacheTier",
    "CompileError",
    "ConfigError",
    "Fragment",
    "FragmentKind",
    "PreviewConfig",
    "PreviewError",
    "PreviewScope",
    "PreviewService",
    "TextDocument",
    "TexpreviewUserDir",
    "ToolchainMissingError",
    "__version__",
    "configure_user_dir",
    "get_user_dir",
    "load_config",
    "user_dir_context",
]
