"""Regeneration driven by edits while a region is being typed in."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from .scheduling import THROTTLE_WINDOW, Debouncer, Scheduler, Throttler


class LiveReconciler:
    """Compose ``throttle(debounce(regenerate))`` around a regeneration callback.

    Every edit calls :meth:`notify`. The debouncer waits for a quiet period;
    the throttler keeps successive regenerations at least as far apart as the
    recent pipeline runs took, measured through :meth:`record`.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        regenerate: Callable[[], Any],
        *,
        debounce_delay: float = 0.5,
        window: int = THROTTLE_WINDOW,
    ) -> None:
        self.debouncer = Debouncer(scheduler, debounce_delay, regenerate)
        self.throttler = Throttler(scheduler, self.debouncer, window=window)
        self.enabled = True

    def notify(self) -> None:
        if self.enabled:
            self.throttler()

    def record(self, exit_code: int | None, log_path: Path | None, state: Any) -> None:
        """Finish hook feeding run durations into the throttle interval."""
        self.throttler.record(state.duration)

    @property
    def pending(self) -> bool:
        return self.debouncer.pending

    def cancel(self) -> None:
        self.throttler.cancel()
        self.debouncer.cancel()


__all__ = ["LiveReconciler"]
