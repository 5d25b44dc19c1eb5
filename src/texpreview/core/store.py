"""Durable key/payload index with expiry policies backing the persistent tier."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
import json
import logging
from pathlib import Path
import time
from typing import Any, Literal, Protocol, runtime_checkable


_log = logging.getLogger(__name__)

INDEX_FILENAME = "index.json"
INDEX_VERSION = 1
_SECONDS_PER_DAY = 86400.0

ExpiryPredicate = Callable[[Mapping[str, Any], float], bool]
_EXPIRY_PREDICATES: dict[str, ExpiryPredicate] = {}


def register_expiry_predicate(name: str, predicate: ExpiryPredicate) -> None:
    """Register a named predicate usable through ``custom:<name>`` policies.

    The predicate receives the stored record (``payload``, ``created``,
    ``expiry``) and the current timestamp and returns ``True`` when the entry
    has expired.
    """
    _EXPIRY_PREDICATES[name] = predicate


def unregister_expiry_predicate(name: str) -> None:
    _EXPIRY_PREDICATES.pop(name, None)


@dataclass(frozen=True, slots=True)
class ExpiryPolicy:
    """When a persistent entry becomes eligible for garbage collection."""

    kind: Literal["never", "always", "days", "custom"] = "never"
    days: float | None = None
    name: str | None = None

    @classmethod
    def never(cls) -> ExpiryPolicy:
        return cls("never")

    @classmethod
    def always(cls) -> ExpiryPolicy:
        return cls("always")

    @classmethod
    def after_days(cls, days: float) -> ExpiryPolicy:
        return cls("days", days=float(days))

    @classmethod
    def custom(cls, name: str) -> ExpiryPolicy:
        return cls("custom", name=name)

    @classmethod
    def parse(cls, token: str | None) -> ExpiryPolicy:
        """Parse ``never``, ``always``, ``<N>d`` or ``custom:<name>``."""
        if not token:
            return cls.never()
        value = token.strip().lower()
        if value == "never":
            return cls.never()
        if value == "always":
            return cls.always()
        if value.startswith("custom:"):
            return cls.custom(token.strip()[len("custom:") :])
        if value.endswith("d"):
            try:
                return cls.after_days(float(value[:-1]))
            except ValueError:
                pass
        raise ValueError(f"Unrecognised expiry policy {token!r}")

    def to_token(self) -> str:
        if self.kind == "days":
            days = self.days or 0
            return f"{int(days) if float(days).is_integer() else days}d"
        if self.kind == "custom":
            return f"custom:{self.name}"
        return self.kind

    def is_expired(self, record: Mapping[str, Any], now: float) -> bool:
        if self.kind == "never":
            return False
        if self.kind == "always":
            return True
        if self.kind == "days":
            created = float(record.get("created") or 0.0)
            return now - created > (self.days or 0.0) * _SECONDS_PER_DAY
        predicate = _EXPIRY_PREDICATES.get(self.name or "")
        if predicate is None:
            _log.debug("unknown expiry predicate %r; keeping entry", self.name)
            return False
        return bool(predicate(record, now))


@runtime_checkable
class PersistentStore(Protocol):
    """Durable index used exclusively by the persistent cache tier."""

    def register(
        self, key: str, payload: Mapping[str, Any], expiry: ExpiryPolicy
    ) -> str: ...

    def read(self, key: str) -> dict[str, Any] | None: ...

    def unregister(self, key: str) -> None: ...

    def gc(self) -> list[tuple[str, dict[str, Any]]]: ...

    def keys(self) -> Iterator[str]: ...


class JsonIndexStore:
    """Persistent store writing a versioned JSON index next to cached files."""

    def __init__(
        self,
        root: Path,
        *,
        clock: Callable[[], float] = time.time,
        autoflush: bool = True,
    ) -> None:
        self.root = Path(root)
        self.index_path = self.root / INDEX_FILENAME
        self._clock = clock
        self.autoflush = autoflush
        self.dirty = False
        self._entries: dict[str, dict[str, Any]] = self._load()

    def register(self, key: str, payload: Mapping[str, Any], expiry: ExpiryPolicy) -> str:
        self._entries[key] = {
            "payload": dict(payload),
            "expiry": expiry.to_token(),
            "created": self._clock(),
        }
        self._touch()
        return key

    def read(self, key: str) -> dict[str, Any] | None:
        record = self._entries.get(key)
        if record is None:
            return None
        payload = record.get("payload")
        return dict(payload) if isinstance(payload, dict) else None

    def record(self, key: str) -> dict[str, Any] | None:
        record = self._entries.get(key)
        return dict(record) if record is not None else None

    def unregister(self, key: str) -> None:
        if self._entries.pop(key, None) is not None:
            self._touch()

    def keys(self) -> Iterator[str]:
        return iter(list(self._entries))

    def gc(self) -> list[tuple[str, dict[str, Any]]]:
        """Drop expired entries and return them so callers can delete files."""
        now = self._clock()
        expired: list[tuple[str, dict[str, Any]]] = []
        for key, record in list(self._entries.items()):
            try:
                policy = ExpiryPolicy.parse(record.get("expiry"))
            except ValueError:
                policy = ExpiryPolicy.always()
            if policy.is_expired(record, now):
                expired.append((key, dict(record.get("payload") or {})))
                del self._entries[key]
        if expired:
            self._touch()
        return expired

    def flush(self) -> None:
        """Persist the index to disk when modified."""
        if not self.dirty:
            return
        payload = {"version": INDEX_VERSION, "entries": self._entries}
        tmp_path = self.index_path.with_suffix(".tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
            tmp_path.replace(self.index_path)
            self.dirty = False
        except OSError as exc:
            _log.warning("unable to write preview index %s: %s", self.index_path, exc)

    def __len__(self) -> int:
        return len(self._entries)

    def _touch(self) -> None:
        self.dirty = True
        if self.autoflush:
            self.flush()

    def _load(self) -> dict[str, dict[str, Any]]:
        try:
            raw = self.index_path.read_text(encoding="utf-8")
        except OSError:
            return {}
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            _log.warning("discarding corrupt preview index %s", self.index_path)
            return {}
        if not isinstance(payload, dict) or payload.get("version") != INDEX_VERSION:
            return {}
        entries = payload.get("entries")
        if not isinstance(entries, dict):
            return {}
        return {str(k): v for k, v in entries.items() if isinstance(v, dict)}


__all__ = [
    "INDEX_FILENAME",
    "ExpiryPolicy",
    "JsonIndexStore",
    "PersistentStore",
    "register_expiry_predicate",
    "unregister_expiry_predicate",
]
