"""Cursor-driven switching between rendered images and their source text."""

from __future__ import annotations

from collections.abc import Callable
import logging

from .regions import RegionAnnotation, RegionTracker
from .scheduling import Scheduler, TimerHandle


_log = logging.getLogger(__name__)

RegionCallback = Callable[[RegionAnnotation], None]


class DisplayController:
    """Apply enter/leave transitions computed once per interaction cycle.

    Entering a region reveals its source (and optionally starts a live side
    preview); leaving it shows the image again, or queues a regeneration
    after ``defer_delay`` when the region was modified in the meantime.
    """

    def __init__(
        self,
        tracker: RegionTracker,
        scheduler: Scheduler,
        *,
        regenerate: RegionCallback,
        defer_delay: float = 0.05,
        on_enter: RegionCallback | None = None,
        on_leave: RegionCallback | None = None,
    ) -> None:
        self.tracker = tracker
        self.scheduler = scheduler
        self.regenerate = regenerate
        self.defer_delay = defer_delay
        self.on_enter = on_enter
        self.on_leave = on_leave
        self.current: RegionAnnotation | None = None
        self._deferred: dict[int, TimerHandle] = {}

    def post_command(self, point: int) -> None:
        """Handle the cursor ending an interaction cycle at ``point``."""
        target = self.tracker.region_at(point)
        previous = self.current
        if previous is not None and not previous.alive:
            previous = None
            self.current = None
        if target is previous:
            return
        if previous is not None:
            self._leave(previous)
        if target is not None:
            self._enter(target)
        self.current = target

    def reset(self) -> None:
        """Forget the current region and cancel deferred regenerations."""
        if self.current is not None and self.current.alive:
            self.tracker.active = None
            self.tracker.show_image(self.current)
        self.current = None
        for handle in self._deferred.values():
            handle.cancel()
        self._deferred.clear()

    def _enter(self, region: RegionAnnotation) -> None:
        handle = self._deferred.pop(region.handle, None)
        if handle is not None:
            handle.cancel()
        self.tracker.active = region
        self.tracker.show_source(region)
        if self.on_enter is not None:
            self.on_enter(region)

    def _leave(self, region: RegionAnnotation) -> None:
        if self.tracker.active is region:
            self.tracker.active = None
        if self.on_leave is not None:
            self.on_leave(region)
        if region.modified:
            _log.debug("region %d left while modified; regenerating", region.handle)
            self._deferred[region.handle] = self.scheduler.call_later(
                self.defer_delay, self._run_deferred, region
            )
            return
        self.tracker.show_image(region)

    def _run_deferred(self, region: RegionAnnotation) -> None:
        self._deferred.pop(region.handle, None)
        if not region.alive or self.tracker.active is region:
            return
        self.regenerate(region)


__all__ = ["DisplayController"]
