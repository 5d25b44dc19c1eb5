from __future__ import annotations

from pathlib import Path

import pytest

from texpreview.adapters.document import TextDocument
from texpreview.api import PreviewScope, PreviewService
from texpreview.core.cache import ArtifactCache, CacheTier, PersistentTier, TemporaryTier
from texpreview.core.config import PreviewConfig
from texpreview.core.exceptions import ToolchainMissingError
from texpreview.core.regions import DisplayState
from texpreview.core.scheduling import ManualScheduler

from conftest import FakeToolchain, RecordingEmitter


SOURCE = (
    "\\documentclass{article}\n"
    "\\begin{document}\n"
    "\\section{Intro}\n"
    "We have $x^2$ and $y^2$.\n"
    "\\section{More}\n"
    "\\begin{equation}E = mc^2\\end{equation}\n"
    "\\end{document}\n"
)


@pytest.fixture
def make_service(tmp_path: Path, fake_bin: Path, cache: ArtifactCache):
    services: list[PreviewService] = []

    def factory(
        text: str = SOURCE,
        *,
        toolchain: FakeToolchain | None = None,
        cache_override: ArtifactCache | None = None,
        **settings: object,
    ) -> PreviewService:
        config = PreviewConfig(**settings)
        service = PreviewService(
            TextDocument(text, config=config),
            config=config,
            cache=cache_override or cache,
            scheduler=ManualScheduler(),
            runner=toolchain or FakeToolchain(),
            emitter=RecordingEmitter(),
            work_root=tmp_path / "work",
        )
        services.append(service)
        return service

    yield factory
    for service in services:
        service.pipeline.flush_cleanups()


def test_preview_buffer_renders_every_fragment(make_service) -> None:
    toolchain = FakeToolchain()
    service = make_service(toolchain=toolchain)

    (batch,) = service.preview(PreviewScope.BUFFER)

    assert len(batch) == 3
    results = service.results()
    assert [fragment.text for fragment, _ in results] == [
        "$x^2$",
        "$y^2$",
        "\\begin{equation}E = mc^2\\end{equation}",
    ]
    for _, region in results:
        assert region.state is DisplayState.SHOWING_IMAGE
        assert region.artifact is not None
    assert toolchain.compiled[0][2] == "\\begin{equation}E = mc^2\\end{equation}"


def test_second_preview_is_served_from_cache(make_service) -> None:
    toolchain = FakeToolchain()
    service = make_service(toolchain=toolchain)
    service.preview(PreviewScope.BUFFER)

    assert service.preview(PreviewScope.BUFFER) == []
    assert len(toolchain.compiled) == 1
    assert "preview_cached" in service.emitter.names()


def test_font_size_change_is_not_served_from_cache(make_service) -> None:
    small_toolchain = FakeToolchain()
    small = make_service("Inline $x^2$.", toolchain=small_toolchain, font_size=10)
    small.preview()

    large_toolchain = FakeToolchain()
    large = make_service("Inline $x^2$.", toolchain=large_toolchain, font_size=12)
    assert small.hasher.processor != large.hasher.processor
    assert len(large.preview()) == 1
    assert large_toolchain.compiled == [["$x^2$"]]


def test_persistent_previews_survive_a_new_session(make_service, tmp_path: Path) -> None:
    def session_cache() -> ArtifactCache:
        return ArtifactCache(
            persistent=PersistentTier(tmp_path / "shared"),
            temporary=TemporaryTier(tmp_path / "scratch"),
        )

    first_toolchain = FakeToolchain()
    first = make_service("Inline $x^2$.", toolchain=first_toolchain, cache_override=session_cache())
    first.preview()
    first.close()

    second_toolchain = FakeToolchain()
    second = make_service(
        "Another document with $x^2$ too.",
        toolchain=second_toolchain,
        cache_override=session_cache(),
    )
    assert second.preview() == []
    assert first_toolchain.compiled == [["$x^2$"]]
    assert second_toolchain.compiled == []
    ((_, region),) = second.results()
    assert region.artifact is not None


def test_temporary_tier_setting(make_service, cache: ArtifactCache) -> None:
    service = make_service("Inline $a$.", tier="temporary")
    service.preview()
    assert cache.stats()[CacheTier.TEMPORARY][0] == 1
    assert cache.stats()[CacheTier.PERSISTENT][0] == 0


def test_point_scope_renders_one_fragment(make_service) -> None:
    toolchain = FakeToolchain()
    service = make_service(toolchain=toolchain)
    service.preview(PreviewScope.POINT, point=SOURCE.index("$y^2$") + 1)
    assert toolchain.compiled == [["$y^2$"]]


def test_section_and_region_scopes(make_service) -> None:
    toolchain = FakeToolchain()
    service = make_service(toolchain=toolchain)
    service.preview(PreviewScope.SECTION, point=SOURCE.index("$x^2$"))
    start = SOURCE.index("\\begin{equation}")
    service.preview(PreviewScope.REGION, start=start + 5, end=start)
    assert toolchain.compiled == [
        ["$x^2$", "$y^2$"],
        ["\\begin{equation}E = mc^2\\end{equation}"],
    ]


def test_scope_arguments_are_validated(make_service) -> None:
    service = make_service()
    with pytest.raises(ValueError):
        service.preview(PreviewScope.POINT)
    with pytest.raises(ValueError):
        service.preview("region", start=0)


def test_clear_scopes_remove_regions(make_service) -> None:
    service = make_service()
    service.preview(PreviewScope.BUFFER)

    service.preview(PreviewScope.CLEAR_POINT, point=SOURCE.index("$x^2$"))
    assert len(service.results()) == 2
    service.preview("clear-buffer")
    assert service.results() == []


def test_failed_fragments_are_marked(make_service) -> None:
    toolchain = FakeToolchain(truncate={"$y^2$"})
    service = make_service(toolchain=toolchain, max_resubmissions=1)
    service.preview()

    regions = {fragment.text: region for fragment, region in service.results()}
    failed = regions["$y^2$"]
    assert failed.error
    assert failed.host.get(failed.handle, "error") == "no output produced"
    assert regions["$x^2$"].artifact is not None
    assert regions["\\begin{equation}E = mc^2\\end{equation}"].artifact is not None


def test_missing_toolchain(make_service, monkeypatch, tmp_path: Path) -> None:
    service = make_service()
    monkeypatch.setenv("PATH", str(tmp_path / "nowhere"))
    with pytest.raises(ToolchainMissingError):
        service.preview()

    region = service.tracker.ensure(service.document.fragments()[0])
    assert service.regenerate(region) == []
    assert "Missing toolchain executables" in service.emitter.errors[0]


def test_auto_mode_live_preview_then_regenerate_on_leave(make_service) -> None:
    toolchain = FakeToolchain()
    service = make_service(toolchain=toolchain, debounce_delay=0.5, defer_delay=0.05)
    live: list[tuple[object, object]] = []
    service.add_live_listener(lambda region, artifact: live.append((region, artifact)))
    service.preview()
    service.auto_mode(True)
    document = service.document
    scheduler = service.scheduler

    inside = SOURCE.index("$x^2$") + 2
    service.post_command(inside)
    region = service.tracker.region_at(inside)
    assert region.state is DisplayState.SHOWING_SOURCE

    document.insert(SOURCE.index("$x^2$") + 4, "+1")
    assert region.modified
    scheduler.advance(0.5)

    assert toolchain.compiled[-1] == ["$x^2+1$"]
    assert live and live[-1][0] is region and live[-1][1] is not None
    assert region.modified

    service.post_command(0)
    scheduler.advance(0.05)

    assert len(toolchain.compiled) == 2
    assert not region.modified
    assert region.state is DisplayState.SHOWING_IMAGE
    assert region.fragment.text == "$x^2+1$"


def test_auto_mode_off_ignores_cursor(make_service) -> None:
    service = make_service()
    service.preview()
    service.post_command(SOURCE.index("$x^2$") + 1)
    for _, region in service.results():
        assert region.state is DisplayState.SHOWING_IMAGE


def test_cache_clear_by_tier(make_service) -> None:
    service = make_service()
    service.preview()
    assert service.cache_clear("temporary") == 0
    assert service.cache_clear("persistent") == 3
    assert service.cache_clear() == 0


def test_gc_runs_periodically(make_service, monkeypatch) -> None:
    service = make_service(gc_interval=10)
    calls: list[int] = []
    monkeypatch.setattr(service.cache, "gc", lambda: calls.append(1) or 0)

    service.schedule_gc()
    service.schedule_gc()
    service.scheduler.advance(25)
    assert calls == [1, 1]
    service.close()
    service.scheduler.advance(100)
    assert calls == [1, 1]


def test_configured_tier_settings_reach_the_cache(tmp_path: Path, isolated_home) -> None:
    config = PreviewConfig(live_max_count=3, expiry="7d")
    service = PreviewService(
        TextDocument(SOURCE, config=config),
        config=config,
        scheduler=ManualScheduler(),
        runner=FakeToolchain(),
        emitter=RecordingEmitter(),
        work_root=tmp_path / "work",
    )
    try:
        assert service.cache.tier(CacheTier.LIVE).max_count == 3
        persistent = service.cache.tier(CacheTier.PERSISTENT)
        assert persistent.expiry.kind == "days"
        assert persistent.expiry.days == 7
        assert persistent.root.is_relative_to(tmp_path)
    finally:
        service.close()
