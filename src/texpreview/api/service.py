"""Preview orchestration for editor integrations and the command line."""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
import logging
from pathlib import Path
from typing import Any

from texpreview.adapters.latex.engines import (
    AsyncioProcessRunner,
    Backend,
    ProcessRunner,
    get_backend,
)
from texpreview.core.batches import Batch, BatchScheduler, Delivery, PendingFragment
from texpreview.core.cache import Artifact, ArtifactCache, CacheTier, LiveTier, PersistentTier
from texpreview.core.config import PreviewConfig
from texpreview.core.diagnostics import DiagnosticEmitter, LoggingEmitter
from texpreview.core.display import DisplayController
from texpreview.core.exceptions import ToolchainMissingError
from texpreview.core.fragments import DocumentModel, Fragment
from texpreview.core.hashing import ContentHasher
from texpreview.core.live import LiveReconciler
from texpreview.core.pipeline import CompilePipeline, FinishHook
from texpreview.core.regions import RegionAnnotation, RegionAnnotationHost, RegionTracker
from texpreview.core.scheduling import AsyncioScheduler, Scheduler, TimerHandle
from texpreview.core.store import ExpiryPolicy


_log = logging.getLogger(__name__)

LiveListener = Callable[[RegionAnnotation, Artifact | None], None]


class PreviewScope(str, Enum):
    """Ranges accepted by :meth:`PreviewService.preview`."""

    POINT = "point"
    REGION = "region"
    SECTION = "section"
    BUFFER = "buffer"
    CLEAR_POINT = "clear-point"
    CLEAR_REGION = "clear-region"
    CLEAR_SECTION = "clear-section"
    CLEAR_BUFFER = "clear-buffer"

    @property
    def clearing(self) -> bool:
        return self.value.startswith("clear-")

    @property
    def extent(self) -> PreviewScope:
        return PreviewScope(self.value.removeprefix("clear-"))


class PreviewService:
    """Single entry point wiring document, cache, scheduler and pipeline together."""

    def __init__(
        self,
        document: DocumentModel,
        *,
        config: PreviewConfig | None = None,
        region_host: RegionAnnotationHost | None = None,
        cache: ArtifactCache | None = None,
        scheduler: Scheduler | None = None,
        runner: ProcessRunner | None = None,
        emitter: DiagnosticEmitter | None = None,
        backend: Backend | None = None,
        work_root: Path | None = None,
    ) -> None:
        self.config = config or PreviewConfig()
        self.document = document
        host = region_host
        if host is None:
            host = getattr(document, "region_host", None)
        if host is None:
            raise ValueError("PreviewService needs a region host for the document")

        self.emitter = emitter or LoggingEmitter(debug_enabled=self.config.debug)
        self.scheduler = scheduler or AsyncioScheduler()
        self.runner = runner or AsyncioProcessRunner()
        self.backend = backend or get_backend(self.config.backend)
        self.tier = CacheTier(self.config.tier)
        self.cache = cache or ArtifactCache(
            persistent=PersistentTier(expiry=ExpiryPolicy.parse(self.config.expiry)),
            live=LiveTier(max_count=self.config.live_max_count),
        )
        self.hasher = ContentHasher(
            self.backend.processor_id(self.config.resolution, self.config.font_size),
            self.config.image_format or self.backend.image_format,
        )

        self.tracker = RegionTracker(host)
        self.batches = BatchScheduler(
            self.cache, self.hasher, deliver=self._deliver, emitter=self.emitter
        )
        self.pipeline = CompilePipeline(
            self.backend,
            self.cache,
            scheduler=self.scheduler,
            runner=self.runner,
            config=self.config,
            deliver=self._deliver,
            resubmit=self.batches.resubmit,
            emitter=self.emitter,
            document_dir=getattr(document, "directory", None),
            work_root=work_root,
        )
        self.batches.runner = self.pipeline
        self.pipeline.add_finish_hook(self.batches.on_run_finished)

        self.live = LiveReconciler(
            self.scheduler, self._regenerate_modified, debounce_delay=self.config.debounce_delay
        )
        self.pipeline.add_finish_hook(self.live.record)
        self.display = DisplayController(
            self.tracker,
            self.scheduler,
            regenerate=self.regenerate,
            defer_delay=self.config.defer_delay,
        )
        self.live_listeners: list[LiveListener] = []

        self.tracker.add_modified_listener(self._on_region_modified)
        self.tracker.start_tracking()
        self._auto = False
        self._gc_handle: TimerHandle | None = None

    # ---------------------------------------------------------------- surface

    def preview(
        self,
        scope: PreviewScope | str = PreviewScope.BUFFER,
        *,
        point: int | None = None,
        start: int | None = None,
        end: int | None = None,
    ) -> list[Batch]:
        """Generate (or clear) previews for every fragment within ``scope``."""
        scope = PreviewScope(scope)
        lo, hi = self._resolve_range(scope.extent, point, start, end)
        if scope.clearing:
            removed = self.tracker.clear(lo, hi)
            _log.debug("cleared %d preview region(s) in %d-%d", removed, lo, hi)
            return []

        self.pipeline.ensure_toolchain()
        appearance = self.document.appearance()
        items = [
            PendingFragment(
                fragment=fragment,
                appearance=appearance,
                region=self.tracker.ensure(fragment),
                tier=self.tier,
            )
            for fragment in self.document.collect_fragments(lo, hi)
        ]
        return self.batches.collect(items)

    def auto_mode(self, enable: bool) -> None:
        """Wire or unwire cursor-driven display switching and live regeneration."""
        self._auto = enable
        self.live.enabled = enable and self.config.live_preview
        if not enable:
            self.live.cancel()
            self.display.reset()

    @property
    def auto(self) -> bool:
        return self._auto

    def post_command(self, point: int) -> None:
        """Report where the cursor ended the current interaction cycle."""
        if self._auto:
            self.display.post_command(point)

    def cache_clear(self, scope: CacheTier | str | None = None, *, purge_all: bool = False) -> int:
        """Drop cached artifacts of one tier (every tier when ``scope`` is ``None``)."""
        tier = None if scope in (None, "all") else CacheTier(scope)
        removed = self.cache.clear(tier, purge_all=purge_all)
        _log.info("cleared %d cached preview(s)", removed)
        return removed

    def add_finish_hook(self, hook: FinishHook) -> None:
        self.pipeline.add_finish_hook(hook)

    def add_live_listener(self, listener: LiveListener) -> None:
        self.live_listeners.append(listener)

    def results(self) -> list[tuple[Fragment, RegionAnnotation]]:
        return [(region.fragment, region) for region in self.tracker]

    # ------------------------------------------------------------ regeneration

    def regenerate(self, region: RegionAnnotation) -> list[Batch]:
        """Render the current text of ``region`` again."""
        if not region.alive:
            return []
        return self._submit(region, live=False)

    def _regenerate_modified(self) -> None:
        for region in self.tracker.modified():
            self._submit(region, live=region is self.tracker.active)

    def _submit(self, region: RegionAnnotation, *, live: bool) -> list[Batch]:
        try:
            self.pipeline.ensure_toolchain()
        except ToolchainMissingError as exc:
            self.emitter.error(str(exc), exc)
            return []
        fragment = self._refresh_fragment(region)
        if fragment is None:
            return []
        region.fragment = fragment
        item = PendingFragment(
            fragment=fragment,
            appearance=self.document.appearance(),
            region=region,
            tier=self.tier,
            live=live,
        )
        return self.batches.collect([item])

    def _refresh_fragment(self, region: RegionAnnotation) -> Fragment | None:
        bounds = region.bounds
        if bounds is None:
            return None
        lo, hi = bounds
        for fragment in self.document.collect_fragments(lo, hi):
            if fragment.start == lo and fragment.end <= hi:
                return fragment
        old = region.fragment
        return Fragment(
            start=lo,
            end=hi,
            text=self.document.text(lo, hi),
            kind=old.kind,
            environment=old.environment,
            number=old.number,
        )

    def _on_region_modified(self, region: RegionAnnotation) -> None:
        if self._auto:
            self.live.notify()

    def _deliver(self, delivery: Delivery) -> None:
        region = delivery.region
        if delivery.live:
            if region is not None and region.revision == delivery.revision:
                for listener in list(self.live_listeners):
                    listener(region, delivery.artifact)
            return
        if region is None:
            return
        if delivery.artifact is None:
            if region.alive and region.revision == delivery.revision:
                self.tracker.mark_error(region, delivery.error)
            return
        self.tracker.apply_artifact(region, delivery.artifact, revision=delivery.revision)

    # -------------------------------------------------------------- lifecycle

    def schedule_gc(self) -> None:
        """Collect expired persistent entries every ``gc_interval`` seconds."""
        interval = self.config.gc_interval
        if interval is None or self._gc_handle is not None:
            return
        self._gc_handle = self.scheduler.call_later(interval, self._gc_tick)

    def _gc_tick(self) -> None:
        self._gc_handle = None
        removed = self.cache.gc()
        if removed:
            _log.info("expired %d cached preview(s)", removed)
        self.schedule_gc()

    def close(self) -> None:
        if self._gc_handle is not None:
            self._gc_handle.cancel()
            self._gc_handle = None
        self.auto_mode(False)
        self.tracker.stop_tracking()
        self.pipeline.flush_cleanups()
        self.cache.close()

    def _resolve_range(
        self,
        scope: PreviewScope,
        point: int | None,
        start: int | None,
        end: int | None,
    ) -> tuple[int, int]:
        if scope is PreviewScope.BUFFER:
            return (0, len(self.document))
        if scope is PreviewScope.REGION:
            if start is None or end is None:
                raise ValueError("region scope needs both start and end")
            return (min(start, end), max(start, end))
        if point is None:
            raise ValueError(f"{scope.value} scope needs a point")
        if scope is PreviewScope.SECTION:
            return self.document.section_bounds(point)
        fragments = self.document.collect_fragments(point, point)
        if fragments:
            return fragments[0].range
        region = self.tracker.region_at(point)
        if region is not None and region.bounds is not None:
            return region.bounds
        return (point, point)

    def __enter__(self) -> PreviewService:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


__all__ = ["LiveListener", "PreviewScope", "PreviewService"]
