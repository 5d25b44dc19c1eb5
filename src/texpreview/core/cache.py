"""Content-addressed artifact cache with persistent, temporary, and live tiers."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import asdict, dataclass
from enum import Enum
import json
import logging
from pathlib import Path
import shutil
import tempfile
from typing import Any

from .store import ExpiryPolicy, JsonIndexStore, PersistentStore
from .user_dir import get_user_dir


_log = logging.getLogger(__name__)

ARTIFACT_PREFIX = "preview-"
CACHE_NAMESPACE = "previews"
DEFAULT_LIVE_MAX_COUNT = 1024


class CacheTier(Enum):
    """Storage backend an artifact lives in."""

    PERSISTENT = "persistent"
    TEMPORARY = "temporary"
    LIVE = "live"


@dataclass(frozen=True, slots=True)
class Geometry:
    """Measurements reported by the toolchain for one rendered fragment."""

    width: int = 0
    height: int = 0
    depth: float = 0.0
    error: str | None = None


@dataclass(frozen=True, slots=True)
class Artifact:
    """Rendered image plus the geometry needed to place it inline."""

    path: Path
    image_format: str
    width: int = 0
    height: int = 0
    depth: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["path"] = self.path.name
        return data

    @classmethod
    def from_dict(cls, root: Path, payload: dict[str, Any]) -> Artifact:
        return cls(
            path=root / str(payload["path"]),
            image_format=str(payload.get("image_format") or ""),
            width=int(payload.get("width") or 0),
            height=int(payload.get("height") or 0),
            depth=float(payload.get("depth") or 0.0),
            error=payload.get("error"),
        )


def artifact_filename(key: str, suffix: str) -> str:
    """Return the deterministic filename for a cached artifact."""
    return f"{ARTIFACT_PREFIX}{key}{suffix}"


def _unlink(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        _log.debug("unable to delete %s: %s", path, exc)


class _FileTier:
    """File-backed tier with an in-memory index."""

    tier: CacheTier

    def __init__(self) -> None:
        self._entries: dict[str, Artifact] = {}

    @property
    def root(self) -> Path:
        raise NotImplementedError

    def lookup(self, key: str) -> Artifact | None:
        artifact = self._entries.get(key)
        if artifact is None:
            return None
        if not artifact.path.exists():
            _log.debug("%s cache entry %s lost its file; evicting", self.tier.value, key[:12])
            self._entries.pop(key, None)
            return None
        return artifact

    def store(self, key: str, source: Path, geometry: Geometry) -> Artifact:
        artifact = _copy_artifact(self.root, key, source, geometry)
        self._entries[key] = artifact
        return artifact

    def remove(self, key: str) -> bool:
        artifact = self._entries.pop(key, None)
        if artifact is None:
            return False
        _delete_artifact_files(artifact)
        return True

    def clear(self, *, purge_all: bool = False) -> int:
        count = 0
        for key in list(self._entries):
            if self.remove(key):
                count += 1
        if purge_all:
            _purge_directory(self._existing_root())
        return count

    def keys(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def _existing_root(self) -> Path | None:
        return self.root


class TemporaryTier(_FileTier):
    """Scratch directory living as long as the process; cleared by deletion."""

    tier = CacheTier.TEMPORARY

    def __init__(self, root: Path | None = None) -> None:
        super().__init__()
        self._root = Path(root) if root is not None else None
        self._owns_root = root is None

    @property
    def root(self) -> Path:
        if self._root is None:
            self._root = Path(tempfile.mkdtemp(prefix=f"texpreview-{self.tier.value}-"))
        self._root.mkdir(parents=True, exist_ok=True)
        return self._root

    def _existing_root(self) -> Path | None:
        return self._root

    def close(self) -> None:
        """Delete the scratch directory and forget every entry."""
        self._entries.clear()
        if self._root is not None and self._owns_root:
            shutil.rmtree(self._root, ignore_errors=True)
            self._root = None


class LiveTier(TemporaryTier):
    """Temporary tier wiped wholesale once its store counter exceeds ``max_count``."""

    tier = CacheTier.LIVE

    def __init__(
        self, root: Path | None = None, *, max_count: int = DEFAULT_LIVE_MAX_COUNT
    ) -> None:
        super().__init__(root)
        self.max_count = max_count
        self.counter = 0

    def store(self, key: str, source: Path, geometry: Geometry) -> Artifact:
        self.counter += 1
        if self.counter > self.max_count:
            evicted = self.clear()
            _log.debug("live cache rolled over; evicted %d previews", evicted)
            self.counter = 1
        return super().store(key, source, geometry)

    def clear(self, *, purge_all: bool = False) -> int:
        count = super().clear(purge_all=purge_all)
        self.counter = 0
        return count


class PersistentTier:
    """Tier surviving restarts, indexed by a :class:`PersistentStore`."""

    tier = CacheTier.PERSISTENT

    def __init__(
        self,
        root: Path | None = None,
        *,
        store: PersistentStore | None = None,
        expiry: ExpiryPolicy | None = None,
    ) -> None:
        self._root = Path(root) if root is not None else None
        self._store = store
        self.expiry = expiry or ExpiryPolicy.never()

    @property
    def root(self) -> Path:
        if self._root is None:
            self._root = get_user_dir().cache_dir(CACHE_NAMESPACE)
        self._root.mkdir(parents=True, exist_ok=True)
        return self._root

    @property
    def store_backend(self) -> PersistentStore:
        if self._store is None:
            self._store = JsonIndexStore(self.root)
        return self._store

    def lookup(self, key: str) -> Artifact | None:
        payload = self.store_backend.read(key)
        if payload is None:
            return None
        try:
            artifact = Artifact.from_dict(self.root, payload)
        except (KeyError, TypeError, ValueError):
            _log.debug("discarding malformed persistent entry %s", key[:12])
            self.store_backend.unregister(key)
            return None
        if not artifact.path.exists():
            _log.debug("persistent cache entry %s lost its file; evicting", key[:12])
            self.store_backend.unregister(key)
            return None
        return artifact

    def store(
        self,
        key: str,
        source: Path,
        geometry: Geometry,
        *,
        expiry: ExpiryPolicy | None = None,
    ) -> Artifact:
        artifact = _copy_artifact(self.root, key, source, geometry)
        self.store_backend.register(key, artifact.to_dict(), expiry or self.expiry)
        return artifact

    def remove(self, key: str) -> bool:
        artifact = self.lookup(key)
        self.store_backend.unregister(key)
        if artifact is None:
            return False
        _delete_artifact_files(artifact)
        return True

    def clear(self, *, purge_all: bool = False) -> int:
        count = 0
        for key in list(self.store_backend.keys()):
            if self.remove(key):
                count += 1
        if purge_all and self._root is not None:
            _purge_directory(self._root)
        return count

    def gc(self) -> int:
        """Remove expired entries together with their files."""
        removed = self.store_backend.gc()
        for key, payload in removed:
            name = payload.get("path")
            if name:
                _delete_artifact_files(Artifact.from_dict(self.root, payload))
            else:
                _log.debug("expired entry %s carried no file", key[:12])
        return len(removed)

    def keys(self) -> Iterator[str]:
        return self.store_backend.keys()

    def __len__(self) -> int:
        return sum(1 for _ in self.store_backend.keys())


def _copy_artifact(root: Path, key: str, source: Path, geometry: Geometry) -> Artifact:
    suffix = source.suffix or ".img"
    target = (root / artifact_filename(key, suffix)).resolve()
    if Path(source).resolve() != target:
        shutil.copy2(source, target)
    artifact = Artifact(
        path=target,
        image_format=suffix.lstrip("."),
        width=geometry.width,
        height=geometry.height,
        depth=geometry.depth,
        error=geometry.error,
    )
    sidecar = target.with_suffix(".json")
    try:
        sidecar.write_text(json.dumps(artifact.to_dict(), sort_keys=True), encoding="utf-8")
    except OSError as exc:
        _log.debug("unable to write geometry record %s: %s", sidecar, exc)
    return artifact


def _delete_artifact_files(artifact: Artifact) -> None:
    _unlink(artifact.path)
    _unlink(artifact.path.with_suffix(".json"))


def _purge_directory(root: Path | None) -> None:
    if root is None or not root.exists():
        return
    for path in root.glob(f"{ARTIFACT_PREFIX}*"):
        _unlink(path)


class ArtifactCache:
    """Single-owner service exposing the three tiers behind one interface."""

    def __init__(
        self,
        *,
        persistent: PersistentTier | None = None,
        temporary: TemporaryTier | None = None,
        live: LiveTier | None = None,
    ) -> None:
        self.tiers: dict[CacheTier, Any] = {
            CacheTier.PERSISTENT: persistent if persistent is not None else PersistentTier(),
            CacheTier.TEMPORARY: temporary if temporary is not None else TemporaryTier(),
            CacheTier.LIVE: live if live is not None else LiveTier(),
        }

    def tier(self, tier: CacheTier) -> Any:
        return self.tiers[tier]

    def lookup(self, key: str, tier: CacheTier | None = None) -> Artifact | None:
        """Return the cached artifact for ``key`` or ``None`` on a miss.

        Without an explicit tier the persistent, temporary, then live tiers are
        searched in that order.
        """
        for candidate in self._select(tier):
            artifact = self.tiers[candidate].lookup(key)
            if artifact is not None:
                return artifact
        return None

    def store(
        self,
        key: str,
        source_path: Path | str | None,
        geometry: Geometry | None = None,
        tier: CacheTier = CacheTier.TEMPORARY,
        *,
        expiry: ExpiryPolicy | None = None,
    ) -> Artifact | None:
        """Copy ``source_path`` into ``tier`` and return the stored artifact."""
        if source_path is None:
            _log.warning("no artifact produced for preview %s; nothing cached", key[:12])
            return None
        source = Path(source_path)
        if not source.is_file():
            _log.warning("artifact %s for preview %s is missing; nothing cached", source, key[:12])
            return None
        backend = self.tiers[tier]
        try:
            if tier is CacheTier.PERSISTENT:
                return backend.store(key, source, geometry or Geometry(), expiry=expiry)
            return backend.store(key, source, geometry or Geometry())
        except OSError as exc:
            _log.warning("unable to cache preview %s in %s tier: %s", key[:12], tier.value, exc)
            return None

    def remove(self, key: str, tier: CacheTier | None = None) -> int:
        """Remove ``key`` from ``tier`` (all tiers when omitted)."""
        return sum(1 for candidate in self._select(tier) if self.tiers[candidate].remove(key))

    def clear(self, tier: CacheTier | None = None, *, purge_all: bool = False) -> int:
        """Drop every entry of ``tier`` (all tiers when omitted); return the count."""
        return sum(
            self.tiers[candidate].clear(purge_all=purge_all) for candidate in self._select(tier)
        )

    def gc(self) -> int:
        return self.tiers[CacheTier.PERSISTENT].gc()

    def stats(self) -> dict[CacheTier, tuple[int, int]]:
        """Return ``(entries, bytes)`` per tier."""
        result: dict[CacheTier, tuple[int, int]] = {}
        for tier, backend in self.tiers.items():
            entries = 0
            size = 0
            for key in list(backend.keys()):
                artifact = backend.lookup(key)
                if artifact is None:
                    continue
                entries += 1
                try:
                    size += artifact.path.stat().st_size
                except OSError:
                    continue
            result[tier] = (entries, size)
        return result

    def close(self) -> None:
        """Delete the scratch directories of the temporary and live tiers."""
        self.tiers[CacheTier.TEMPORARY].close()
        self.tiers[CacheTier.LIVE].close()

    @staticmethod
    def _select(tier: CacheTier | None) -> Iterable[CacheTier]:
        if tier is not None:
            return (tier,)
        return (CacheTier.PERSISTENT, CacheTier.TEMPORARY, CacheTier.LIVE)


__all__ = [
    "ARTIFACT_PREFIX",
    "Artifact",
    "ArtifactCache",
    "CacheTier",
    "Geometry",
    "LiveTier",
    "PersistentTier",
    "TemporaryTier",
    "artifact_filename",
]
