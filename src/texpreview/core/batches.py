"""Group dirty fragments into batches, serve cache hits and track claims."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
import itertools
import logging
from pathlib import Path
from typing import Any, Protocol

from .cache import Artifact, ArtifactCache, CacheTier, Geometry
from .diagnostics import DiagnosticEmitter, NullEmitter
from .fragments import Appearance, Fragment
from .hashing import ContentHasher, PreviewKey
from .regions import RegionAnnotation


_log = logging.getLogger(__name__)

_BATCH_IDS = itertools.count(1)


@dataclass(frozen=True, slots=True)
class Delivery:
    """A result (or failure) for one fragment, on its way to the display."""

    fragment: Fragment
    key: PreviewKey
    region: RegionAnnotation | None
    revision: int
    artifact: Artifact | None
    error: str | None = None
    live: bool = False
    cached: bool = False


@dataclass(frozen=True, slots=True)
class PendingFragment:
    """A fragment waiting to be rendered, with the context it renders in."""

    fragment: Fragment
    appearance: Appearance
    region: RegionAnnotation | None = None
    tier: CacheTier = CacheTier.TEMPORARY
    live: bool = False
    revision: int | None = None

    def current_revision(self) -> int:
        if self.revision is not None:
            return self.revision
        return self.region.revision if self.region is not None else 0


@dataclass(slots=True, eq=False)
class Batch:
    """Fragments compiled together in one pipeline run, in submission order."""

    fragments: list[Fragment]
    keys: list[PreviewKey]
    appearance: Appearance
    tier: CacheTier = CacheTier.TEMPORARY
    regions: list[RegionAnnotation | None] = field(default_factory=list)
    revisions: list[int] = field(default_factory=list)
    generation: int = 0
    live: bool = False
    id: int = field(default_factory=lambda: next(_BATCH_IDS))

    def __post_init__(self) -> None:
        if len(self.keys) != len(self.fragments):
            raise ValueError("every fragment of a batch needs exactly one key")
        if not self.regions:
            self.regions = [None] * len(self.fragments)
        if not self.revisions:
            self.revisions = [0] * len(self.fragments)

    def __len__(self) -> int:
        return len(self.fragments)

    def delivery(
        self, index: int, artifact: Artifact | None, error: str | None = None
    ) -> Delivery:
        return Delivery(
            fragment=self.fragments[index],
            key=self.keys[index],
            region=self.regions[index],
            revision=self.revisions[index],
            artifact=artifact,
            error=error,
            live=self.live,
        )

    def pending(self, start: int = 0) -> list[PendingFragment]:
        """Return the fragments from ``start`` onwards as pending work."""
        return [
            PendingFragment(
                fragment=self.fragments[index],
                appearance=self.appearance,
                region=self.regions[index],
                tier=self.tier,
                live=self.live,
                revision=self.revisions[index],
            )
            for index in range(start, len(self.fragments))
        ]


class BatchRunner(Protocol):
    def run(self, batch: Batch) -> Any: ...


DeliverCallback = Callable[[Delivery], None]


class BatchScheduler:
    """Turn pending fragments into batches and hand them to the pipeline.

    A fragment claimed by an in-flight batch is skipped until that batch
    finishes; cache hits are delivered right away without running anything.
    """

    def __init__(
        self,
        cache: ArtifactCache,
        hasher: ContentHasher,
        *,
        runner: BatchRunner | None = None,
        deliver: DeliverCallback | None = None,
        emitter: DiagnosticEmitter | None = None,
    ) -> None:
        self.cache = cache
        self.hasher = hasher
        self.runner = runner
        self.deliver = deliver or (lambda delivery: None)
        self.emitter = emitter or NullEmitter()
        self._claims: dict[Fragment, int] = {}
        self._in_flight: dict[int, Batch] = {}
        self._pending: list[PendingFragment] = []

    # ------------------------------------------------------------------ queue

    def enqueue(self, item: PendingFragment) -> None:
        self._pending.append(item)

    def flush(self) -> list[Batch]:
        """Collect everything queued with :meth:`enqueue`."""
        items, self._pending = self._pending, []
        return self.collect(items)

    @property
    def queued(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------- collection

    def collect(self, items: Iterable[PendingFragment], *, generation: int = 0) -> list[Batch]:
        """Submit one batch per compile context for every uncached, unclaimed item."""
        groups: dict[tuple[Appearance, CacheTier, bool], list[tuple[PendingFragment, str]]] = {}
        seen: set[Fragment] = set()
        for item in items:
            fragment = item.fragment
            if fragment in seen:
                continue
            seen.add(fragment)
            if fragment in self._claims:
                _log.debug(
                    "fragment at %d-%d already claimed by batch %d; skipping",
                    fragment.start,
                    fragment.end,
                    self._claims[fragment],
                )
                continue
            tier = CacheTier.LIVE if item.live else item.tier
            key = self.hasher.key_for(fragment, item.appearance)
            artifact = self._cached(key, tier)
            if artifact is not None:
                self.emitter.event("preview_cached", {"key": key, "tier": tier.value})
                self.deliver(
                    Delivery(
                        fragment=fragment,
                        key=key,
                        region=item.region,
                        revision=item.current_revision(),
                        artifact=artifact,
                        error=artifact.error,
                        live=item.live,
                        cached=True,
                    )
                )
                continue
            groups.setdefault((item.appearance, tier, item.live), []).append((item, key))

        batches: list[Batch] = []
        for (appearance, tier, live), entries in groups.items():
            batch = Batch(
                fragments=[item.fragment for item, _ in entries],
                keys=[key for _, key in entries],
                appearance=appearance,
                tier=tier,
                regions=[item.region for item, _ in entries],
                revisions=[item.current_revision() for item, _ in entries],
                generation=generation,
                live=live,
            )
            self._claim(batch)
            batches.append(batch)

        if batches and self.runner is None:
            raise RuntimeError("BatchScheduler has no runner to submit batches to")
        for batch in batches:
            self.runner.run(batch)
        return batches

    def resubmit(self, batch: Batch, start: int) -> list[Batch]:
        """Hand the fragments of ``batch`` from ``start`` onwards to a new batch."""
        for fragment in batch.fragments[start:]:
            if self._claims.get(fragment) == batch.id:
                del self._claims[fragment]
        return self.collect(batch.pending(start), generation=batch.generation + 1)

    # ----------------------------------------------------------------- claims

    def claimed(self, fragment: Fragment) -> bool:
        return fragment in self._claims

    def in_flight(self) -> list[Batch]:
        return list(self._in_flight.values())

    def release(self, batch: Batch) -> None:
        """Drop the claims held by ``batch``."""
        self._in_flight.pop(batch.id, None)
        for fragment in batch.fragments:
            if self._claims.get(fragment) == batch.id:
                del self._claims[fragment]

    def on_run_finished(self, exit_code: int | None, log_path: Path | None, state: Any) -> None:
        self.release(state.batch)

    def _claim(self, batch: Batch) -> None:
        self._in_flight[batch.id] = batch
        for fragment in batch.fragments:
            self._claims[fragment] = batch.id

    def _cached(self, key: PreviewKey, tier: CacheTier) -> Artifact | None:
        artifact = self.cache.lookup(key, tier)
        if artifact is not None:
            return artifact
        other = self.cache.lookup(key)
        if other is None:
            return None
        # Found in another tier: copy it over so the entry lives where it is wanted.
        geometry = Geometry(other.width, other.height, other.depth, other.error)
        return self.cache.store(key, other.path, geometry, tier) or other


__all__ = [
    "Batch",
    "BatchRunner",
    "BatchScheduler",
    "DeliverCallback",
    "Delivery",
    "PendingFragment",
]
