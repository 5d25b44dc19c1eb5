"""Centralised resolution of the texpreview user and cache directories."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
import os
from pathlib import Path


__all__ = [
    "TexpreviewUserDir",
    "configure_user_dir",
    "get_user_dir",
    "user_dir_context",
]

HOME_ENV = "TEXPREVIEW_HOME"
CACHE_ENV = "TEXPREVIEW_CACHE_DIR"

_USER_DIR: TexpreviewUserDir | None = None


def _resolve_root(root: str | Path | None) -> tuple[Path, bool]:
    if root is not None:
        return Path(root).expanduser(), True
    env_root = os.environ.get(HOME_ENV)
    if env_root:
        return Path(env_root).expanduser(), True
    return Path.home() / ".texpreview", False


def _resolve_cache_root(
    cache_root: str | Path | None,
    *,
    user_root: Path,
    root_was_explicit: bool,
) -> tuple[Path, bool]:
    if cache_root is not None:
        return Path(cache_root).expanduser(), True
    env_cache = os.environ.get(CACHE_ENV)
    if env_cache:
        return Path(env_cache).expanduser(), True
    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache:
        return Path(xdg_cache).expanduser() / "texpreview", True
    if root_was_explicit:
        return user_root / "cache", True
    return Path.home() / ".cache" / "texpreview", False


@dataclass(slots=True)
class TexpreviewUserDir:
    """Resolved user and cache roots plus helpers to manage them."""

    root: Path
    cache_root: Path
    pinned: bool = False

    def data_dir(self, *parts: str | Path, create: bool = True) -> Path:
        """Return a directory under the user root, creating it when requested."""
        target = self.root.joinpath(*parts)
        if create:
            target.mkdir(parents=True, exist_ok=True)
        return target

    def cache_dir(self, *parts: str | Path, create: bool = True) -> Path:
        """Return a directory under the cache root, creating it when requested."""
        target = self.cache_root.joinpath(*parts)
        if create:
            target.mkdir(parents=True, exist_ok=True)
        return target


def _resolve(root: str | Path | None, cache_root: str | Path | None) -> TexpreviewUserDir:
    user_root, root_was_explicit = _resolve_root(root)
    resolved_cache_root, _ = _resolve_cache_root(
        cache_root, user_root=user_root, root_was_explicit=root_was_explicit
    )
    return TexpreviewUserDir(
        root=user_root,
        cache_root=resolved_cache_root,
        pinned=root is not None or cache_root is not None,
    )


def configure_user_dir(
    *,
    root: str | Path | None = None,
    cache_root: str | Path | None = None,
) -> TexpreviewUserDir:
    """Replace the global user dir with a freshly resolved instance."""
    global _USER_DIR
    _USER_DIR = _resolve(root, cache_root)
    return _USER_DIR


def get_user_dir() -> TexpreviewUserDir:
    """Return the user dir, re-resolving it when the environment changed."""
    global _USER_DIR
    if _USER_DIR is None:
        return configure_user_dir()
    if not _USER_DIR.pinned:
        current = _resolve(None, None)
        if (current.root, current.cache_root) != (_USER_DIR.root, _USER_DIR.cache_root):
            _USER_DIR = current
    return _USER_DIR


@contextmanager
def user_dir_context(
    *,
    root: str | Path | None = None,
    cache_root: str | Path | None = None,
) -> Iterator[TexpreviewUserDir]:
    """Temporarily override the global user dir."""
    global _USER_DIR
    previous = _USER_DIR
    current = configure_user_dir(root=root, cache_root=cache_root)
    try:
        yield current
    finally:
        _USER_DIR = previous
