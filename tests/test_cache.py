from __future__ import annotations

from pathlib import Path

import pytest

from texpreview.core.cache import (
    ArtifactCache,
    CacheTier,
    Geometry,
    LiveTier,
    PersistentTier,
    TemporaryTier,
)
from texpreview.core.store import ExpiryPolicy, JsonIndexStore


KEY = "a" * 64
OTHER = "b" * 64


@pytest.fixture
def image(tmp_path: Path) -> Path:
    path = tmp_path / "build" / "batch1-1.png"
    path.parent.mkdir()
    path.write_bytes(b"\x89PNG fake")
    return path


@pytest.fixture
def cache(tmp_path: Path):
    cache = ArtifactCache(
        persistent=PersistentTier(tmp_path / "persistent"),
        temporary=TemporaryTier(tmp_path / "temporary"),
        live=LiveTier(tmp_path / "live", max_count=2),
    )
    yield cache
    cache.close()


def test_lookup_misses_before_store(cache: ArtifactCache) -> None:
    assert cache.lookup(KEY) is None


@pytest.mark.parametrize("tier", list(CacheTier))
def test_store_then_lookup_returns_geometry(
    cache: ArtifactCache, image: Path, tier: CacheTier
) -> None:
    stored = cache.store(KEY, image, Geometry(width=12, height=9, depth=0.25), tier)

    assert stored is not None
    found = cache.lookup(KEY, tier)
    assert found == stored
    assert found.path.exists()
    assert found.path.name.startswith("preview-")
    assert (found.width, found.height, found.depth) == (12, 9, 0.25)
    assert found.image_format == "png"


def test_store_without_source_caches_nothing(cache: ArtifactCache, tmp_path: Path) -> None:
    assert cache.store(KEY, None) is None
    assert cache.store(KEY, tmp_path / "missing.png") is None
    assert cache.lookup(KEY) is None


def test_lookup_searches_persistent_first(cache: ArtifactCache, image: Path) -> None:
    cache.store(KEY, image, Geometry(width=1), CacheTier.TEMPORARY)
    cache.store(KEY, image, Geometry(width=2), CacheTier.PERSISTENT)
    assert cache.lookup(KEY).width == 2


def test_remove_deletes_files(cache: ArtifactCache, image: Path) -> None:
    artifact = cache.store(KEY, image, Geometry(), CacheTier.PERSISTENT)

    assert cache.remove(KEY, CacheTier.PERSISTENT) == 1
    assert not artifact.path.exists()
    assert not artifact.path.with_suffix(".json").exists()
    assert cache.lookup(KEY) is None
    assert cache.remove(KEY) == 0


def test_lookup_evicts_entries_whose_file_vanished(cache: ArtifactCache, image: Path) -> None:
    for tier in CacheTier:
        artifact = cache.store(KEY, image, Geometry(), tier)
        artifact.path.unlink()
        assert cache.lookup(KEY, tier) is None
        assert KEY not in list(cache.tier(tier).keys())


def test_clear_is_idempotent(cache: ArtifactCache, image: Path) -> None:
    cache.store(KEY, image, Geometry(), CacheTier.PERSISTENT)
    cache.store(OTHER, image, Geometry(), CacheTier.TEMPORARY)

    assert cache.clear() == 2
    assert cache.clear() == 0
    assert cache.lookup(KEY) is None
    assert cache.lookup(OTHER) is None


def test_clear_single_tier_leaves_others(cache: ArtifactCache, image: Path) -> None:
    cache.store(KEY, image, Geometry(), CacheTier.PERSISTENT)
    cache.store(OTHER, image, Geometry(), CacheTier.TEMPORARY)

    assert cache.clear(CacheTier.TEMPORARY) == 1
    assert cache.lookup(KEY) is not None


def test_purge_all_removes_stray_files(cache: ArtifactCache, tmp_path: Path) -> None:
    root = cache.tier(CacheTier.PERSISTENT).root
    stray = root / "preview-orphan.png"
    stray.write_bytes(b"")
    cache.clear(CacheTier.PERSISTENT, purge_all=True)
    assert not stray.exists()


def test_live_tier_wipes_itself_past_max_count(cache: ArtifactCache, image: Path) -> None:
    first = cache.store("1" * 64, image, Geometry(), CacheTier.LIVE)
    cache.store("2" * 64, image, Geometry(), CacheTier.LIVE)
    third = cache.store("3" * 64, image, Geometry(), CacheTier.LIVE)

    live = cache.tier(CacheTier.LIVE)
    assert not first.path.exists()
    assert list(live.keys()) == ["3" * 64]
    assert third.path.exists()
    assert live.counter == 1


def test_persistent_entries_survive_reopening(tmp_path: Path, image: Path) -> None:
    root = tmp_path / "persistent"
    PersistentTier(root).store(KEY, image, Geometry(width=4))

    reopened = PersistentTier(root)
    artifact = reopened.lookup(KEY)
    assert artifact is not None and artifact.width == 4


def test_gc_removes_expired_persistent_files(tmp_path: Path, image: Path) -> None:
    now = [0.0]
    root = tmp_path / "persistent"
    tier = PersistentTier(root, store=JsonIndexStore(root, clock=lambda: now[0]))
    cache = ArtifactCache(persistent=tier, temporary=TemporaryTier(tmp_path / "t"))
    stale = cache.store(KEY, image, Geometry(), CacheTier.PERSISTENT, expiry=ExpiryPolicy.after_days(1))
    fresh = cache.store(OTHER, image, Geometry(), CacheTier.PERSISTENT)

    now[0] = 3 * 86400.0
    assert cache.gc() == 1
    assert not stale.path.exists()
    assert fresh.path.exists()


def test_stats_count_entries_per_tier(cache: ArtifactCache, image: Path) -> None:
    cache.store(KEY, image, Geometry(), CacheTier.PERSISTENT)
    stats = cache.stats()
    assert stats[CacheTier.PERSISTENT][0] == 1
    assert stats[CacheTier.PERSISTENT][1] == image.stat().st_size
    assert stats[CacheTier.LIVE] == (0, 0)


def test_close_deletes_owned_scratch_directories(tmp_path: Path, image: Path) -> None:
    cache = ArtifactCache(persistent=PersistentTier(tmp_path / "p"))
    artifact = cache.store(KEY, image, Geometry(), CacheTier.TEMPORARY)
    root = artifact.path.parent
    cache.close()
    assert not root.exists()


def test_injected_empty_tiers_are_kept(tmp_path: Path) -> None:
    persistent = PersistentTier(tmp_path / "persistent")
    temporary = TemporaryTier(tmp_path / "temporary")
    live = LiveTier(tmp_path / "live", max_count=2)
    assert len(live) == 0

    cache = ArtifactCache(persistent=persistent, temporary=temporary, live=live)

    assert cache.tier(CacheTier.PERSISTENT) is persistent
    assert cache.tier(CacheTier.TEMPORARY) is temporary
    assert cache.tier(CacheTier.LIVE) is live
    assert cache.tier(CacheTier.LIVE).max_count == 2
    cache.close()
