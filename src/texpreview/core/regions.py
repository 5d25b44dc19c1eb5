"""Position-tracking annotations bound to previewed fragments."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
import itertools
import logging
from typing import Any, Protocol, runtime_checkable

from .cache import Artifact
from .fragments import Fragment


_log = logging.getLogger(__name__)


class RenderingMode(Enum):
    """What the host shows for a tracked range."""

    IMAGE = "image"
    SOURCE = "source"


class EditKind(Enum):
    """Edit notifications delivered by a region host."""

    INSERT_BEFORE = "insert-before"
    INSERT_AFTER = "insert-after"
    EDIT_INSIDE = "edit-inside"
    DELETED = "deleted"


class DisplayState(Enum):
    """Display state of a previewed region."""

    SHOWING_IMAGE = "showing-image"
    SHOWING_SOURCE = "showing-source"
    MODIFIED = "modified"


EditCallback = Callable[[int, EditKind], None]


@runtime_checkable
class RegionAnnotationHost(Protocol):
    """Generic trackable-range primitive provided by the hosting editor."""

    def create(self, begin: int, end: int) -> int: ...

    def bounds(self, handle: int) -> tuple[int, int] | None: ...

    def get(self, handle: int, name: str, default: Any = None) -> Any: ...

    def put(self, handle: int, name: str, value: Any) -> None: ...

    def set_rendering(self, handle: int, mode: RenderingMode) -> None: ...

    def delete(self, handle: int) -> None: ...

    def add_edit_listener(self, callback: EditCallback) -> None: ...

    def remove_edit_listener(self, callback: EditCallback) -> None: ...


@dataclass(slots=True)
class _Interval:
    start: int
    end: int
    rendering: RenderingMode = RenderingMode.SOURCE
    properties: dict[str, Any] = field(default_factory=dict)


class IntervalRegionHost:
    """In-memory host applying buffer edits to tracked intervals.

    Insertion exactly at a region's start or end grows the region to cover the
    inserted text; insertion strictly inside reports an inside edit. When a
    region ends where another begins, only the latter grows so ranges never
    come to overlap.
    """

    def __init__(self) -> None:
        self._intervals: dict[int, _Interval] = {}
        self._ids = itertools.count(1)
        self._listeners: list[EditCallback] = []

    def create(self, begin: int, end: int) -> int:
        if end < begin:
            raise ValueError(f"invalid region bounds ({begin}, {end})")
        handle = next(self._ids)
        self._intervals[handle] = _Interval(begin, end)
        return handle

    def bounds(self, handle: int) -> tuple[int, int] | None:
        interval = self._intervals.get(handle)
        if interval is None:
            return None
        return (interval.start, interval.end)

    def get(self, handle: int, name: str, default: Any = None) -> Any:
        interval = self._intervals.get(handle)
        if interval is None:
            return default
        return interval.properties.get(name, default)

    def put(self, handle: int, name: str, value: Any) -> None:
        self._intervals[handle].properties[name] = value

    def set_rendering(self, handle: int, mode: RenderingMode) -> None:
        interval = self._intervals.get(handle)
        if interval is not None:
            interval.rendering = mode

    def rendering(self, handle: int) -> RenderingMode | None:
        interval = self._intervals.get(handle)
        return interval.rendering if interval is not None else None

    def delete(self, handle: int) -> None:
        self._intervals.pop(handle, None)

    def handles(self) -> Iterator[int]:
        return iter(sorted(self._intervals, key=lambda h: self._intervals[h].start))

    def add_edit_listener(self, callback: EditCallback) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_edit_listener(self, callback: EditCallback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def insert(self, position: int, length: int) -> None:
        """Account for ``length`` characters inserted at ``position``."""
        if length <= 0:
            return
        starts_here = any(iv.start == position for iv in self._intervals.values())
        events: list[tuple[int, EditKind]] = []
        for handle, interval in self._intervals.items():
            if position < interval.start:
                interval.start += length
                interval.end += length
            elif position == interval.start:
                interval.end += length
                events.append((handle, EditKind.INSERT_BEFORE))
            elif position < interval.end:
                interval.end += length
                events.append((handle, EditKind.EDIT_INSIDE))
            elif position == interval.end and not starts_here:
                interval.end += length
                events.append((handle, EditKind.INSERT_AFTER))
        self._notify(events)

    def delete_range(self, start: int, end: int) -> None:
        """Account for the characters in ``[start, end)`` being removed."""
        if end <= start:
            return
        length = end - start

        def _map(offset: int) -> int:
            if offset <= start:
                return offset
            if offset <= end:
                return start
            return offset - length

        events: list[tuple[int, EditKind]] = []
        for handle, interval in list(self._intervals.items()):
            if end <= interval.start:
                interval.start -= length
                interval.end -= length
            elif start >= interval.end:
                continue
            elif start <= interval.start and end >= interval.end:
                del self._intervals[handle]
                events.append((handle, EditKind.DELETED))
            else:
                interval.start = _map(interval.start)
                interval.end = _map(interval.end)
                events.append((handle, EditKind.EDIT_INSIDE))
        self._notify(events)

    def _notify(self, events: list[tuple[int, EditKind]]) -> None:
        for handle, kind in events:
            for listener in list(self._listeners):
                listener(handle, kind)

    def __len__(self) -> int:
        return len(self._intervals)


@dataclass(slots=True, eq=False)
class RegionAnnotation:
    """A tracked range bound to one fragment, with its display state."""

    handle: int
    fragment: Fragment
    host: RegionAnnotationHost
    artifact: Artifact | None = None
    state: DisplayState = DisplayState.SHOWING_SOURCE
    error: bool = False
    modified: bool = False
    revision: int = 0
    alive: bool = True

    @property
    def bounds(self) -> tuple[int, int] | None:
        return self.host.bounds(self.handle) if self.alive else None

    def contains(self, position: int) -> bool:
        bounds = self.bounds
        return bounds is not None and bounds[0] <= position < bounds[1]


class RegionTracker:
    """Own the annotations of one document and keep them in sync with edits."""

    def __init__(self, host: RegionAnnotationHost) -> None:
        self.host = host
        self._regions: dict[int, RegionAnnotation] = {}
        self.active: RegionAnnotation | None = None
        self._modified_listeners: list[Callable[[RegionAnnotation], None]] = []
        self._tracking = False

    # ------------------------------------------------------------------ wiring

    def start_tracking(self) -> None:
        if not self._tracking:
            self.host.add_edit_listener(self._on_edit)
            self._tracking = True

    def stop_tracking(self) -> None:
        if self._tracking:
            self.host.remove_edit_listener(self._on_edit)
            self._tracking = False

    @property
    def tracking(self) -> bool:
        return self._tracking

    def add_modified_listener(self, callback: Callable[[RegionAnnotation], None]) -> None:
        self._modified_listeners.append(callback)

    # --------------------------------------------------------------- lifecycle

    def ensure(self, fragment: Fragment) -> RegionAnnotation:
        """Return the annotation tracking ``fragment``, creating it if needed.

        Existing annotations overlapping the fragment are dropped first.
        """
        for region in self.overlapping(fragment.start, fragment.end):
            if region.bounds == fragment.range and region.fragment.text == fragment.text:
                region.fragment = fragment
                return region
            self.remove(region)
        handle = self.host.create(fragment.start, fragment.end)
        region = RegionAnnotation(handle=handle, fragment=fragment, host=self.host)
        self._regions[handle] = region
        self.host.set_rendering(handle, RenderingMode.SOURCE)
        return region

    def remove(self, region: RegionAnnotation) -> None:
        if not region.alive:
            return
        region.alive = False
        self._regions.pop(region.handle, None)
        self.host.delete(region.handle)
        if self.active is region:
            self.active = None

    def clear(self, start: int | None = None, end: int | None = None) -> int:
        """Remove every annotation overlapping ``[start, end)``; return the count."""
        targets = (
            list(self._regions.values())
            if start is None or end is None
            else self.overlapping(start, end)
        )
        for region in targets:
            self.remove(region)
        return len(targets)

    # ----------------------------------------------------------------- queries

    def get(self, handle: int) -> RegionAnnotation | None:
        return self._regions.get(handle)

    def region_at(self, position: int) -> RegionAnnotation | None:
        for region in self._regions.values():
            if region.contains(position):
                return region
        return None

    def overlapping(self, start: int, end: int) -> list[RegionAnnotation]:
        found: list[RegionAnnotation] = []
        for region in self._regions.values():
            bounds = region.bounds
            if bounds is None:
                continue
            lo, hi = bounds
            if (lo < end and start < hi) or (lo == hi and start <= lo <= end):
                found.append(region)
        return sorted(found, key=lambda r: r.bounds or (0, 0))

    def modified(self) -> list[RegionAnnotation]:
        return [region for region in self._regions.values() if region.modified]

    def __iter__(self) -> Iterator[RegionAnnotation]:
        return iter(sorted(self._regions.values(), key=lambda r: r.bounds or (0, 0)))

    def __len__(self) -> int:
        return len(self._regions)

    # ----------------------------------------------------------------- display

    def apply_artifact(
        self, region: RegionAnnotation, artifact: Artifact | None, *, revision: int
    ) -> bool:
        """Attach a pipeline result unless the region was deleted or edited since."""
        if not region.alive or region.revision != revision:
            _log.debug("discarding stale preview for region %d", region.handle)
            return False
        region.artifact = artifact
        region.error = bool(artifact is None or artifact.error)
        region.modified = False
        if artifact is None:
            self.show_source(region)
            return True
        self.host.put(region.handle, "artifact", artifact)
        self.host.put(region.handle, "error", artifact.error)
        if self.active is region:
            self.show_source(region)
        else:
            self.show_image(region)
        return True

    def mark_error(self, region: RegionAnnotation, message: str | None = None) -> None:
        region.error = True
        region.artifact = None
        self.host.put(region.handle, "error", message or "preview failed")
        self.show_source(region)

    def show_image(self, region: RegionAnnotation) -> None:
        if not region.alive:
            return
        if region.artifact is None or region.modified:
            self.show_source(region)
            return
        region.state = DisplayState.SHOWING_IMAGE
        self.host.set_rendering(region.handle, RenderingMode.IMAGE)

    def show_source(self, region: RegionAnnotation) -> None:
        if not region.alive:
            return
        region.state = DisplayState.MODIFIED if region.modified else DisplayState.SHOWING_SOURCE
        self.host.set_rendering(region.handle, RenderingMode.SOURCE)

    def mark_modified(self, region: RegionAnnotation) -> None:
        region.modified = True
        region.revision += 1
        region.artifact = None
        self.host.put(region.handle, "artifact", None)
        self.show_source(region)
        for callback in list(self._modified_listeners):
            callback(region)

    def _on_edit(self, handle: int, kind: EditKind) -> None:
        region = self._regions.get(handle)
        if region is None:
            return
        if kind is EditKind.DELETED:
            region.alive = False
            self._regions.pop(handle, None)
            if self.active is region:
                self.active = None
            return
        self.mark_modified(region)


__all__ = [
    "DisplayState",
    "EditKind",
    "IntervalRegionHost",
    "RegionAnnotation",
    "RegionAnnotationHost",
    "RegionTracker",
    "RenderingMode",
]
