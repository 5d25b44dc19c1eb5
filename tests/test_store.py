from __future__ import annotations

import json
from pathlib import Path

import pytest

from texpreview.core.store import (
    INDEX_FILENAME,
    ExpiryPolicy,
    JsonIndexStore,
    register_expiry_predicate,
    unregister_expiry_predicate,
)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("never", ExpiryPolicy.never()),
        ("always", ExpiryPolicy.always()),
        ("7d", ExpiryPolicy.after_days(7)),
        ("custom:stale", ExpiryPolicy.custom("stale")),
        (None, ExpiryPolicy.never()),
    ],
)
def test_parse_expiry_tokens(token: str | None, expected: ExpiryPolicy) -> None:
    assert ExpiryPolicy.parse(token) == expected


def test_parse_rejects_unknown_tokens() -> None:
    with pytest.raises(ValueError):
        ExpiryPolicy.parse("sometimes")


def test_to_token_round_trips_days() -> None:
    assert ExpiryPolicy.after_days(30).to_token() == "30d"


def test_register_and_read_survive_reload(tmp_path: Path) -> None:
    store = JsonIndexStore(tmp_path)
    store.register("abc", {"path": "preview-abc.png"}, ExpiryPolicy.never())

    reloaded = JsonIndexStore(tmp_path)
    assert reloaded.read("abc") == {"path": "preview-abc.png"}
    assert list(reloaded.keys()) == ["abc"]


def test_unregister_forgets_entry(tmp_path: Path) -> None:
    store = JsonIndexStore(tmp_path)
    store.register("abc", {"path": "x"}, ExpiryPolicy.never())
    store.unregister("abc")
    store.unregister("abc")
    assert store.read("abc") is None
    assert len(JsonIndexStore(tmp_path)) == 0


def test_gc_drops_entries_older_than_their_policy(tmp_path: Path) -> None:
    clock = FakeClock()
    store = JsonIndexStore(tmp_path, clock=clock)
    store.register("old", {"path": "old"}, ExpiryPolicy.after_days(1))
    store.register("keep", {"path": "keep"}, ExpiryPolicy.never())

    assert store.gc() == []
    clock.now += 2 * 86400

    expired = store.gc()
    assert expired == [("old", {"path": "old"})]
    assert list(store.keys()) == ["keep"]


def test_always_policy_expires_on_next_gc(tmp_path: Path) -> None:
    store = JsonIndexStore(tmp_path)
    store.register("gone", {"path": "gone"}, ExpiryPolicy.always())
    assert [key for key, _ in store.gc()] == ["gone"]


def test_custom_predicate_decides_expiry(tmp_path: Path) -> None:
    register_expiry_predicate("flagged", lambda record, _now: record["payload"].get("flag"))
    try:
        store = JsonIndexStore(tmp_path)
        policy = ExpiryPolicy.custom("flagged")
        store.register("a", {"flag": True}, policy)
        store.register("b", {"flag": False}, policy)
        assert [key for key, _ in store.gc()] == ["a"]
    finally:
        unregister_expiry_predicate("flagged")


def test_corrupt_index_is_discarded(tmp_path: Path) -> None:
    (tmp_path / INDEX_FILENAME).write_text("{not json", encoding="utf-8")
    store = JsonIndexStore(tmp_path)
    assert len(store) == 0


def test_index_without_version_is_ignored(tmp_path: Path) -> None:
    payload = {"entries": {"abc": {"payload": {"path": "x"}}}}
    (tmp_path / INDEX_FILENAME).write_text(json.dumps(payload), encoding="utf-8")
    assert JsonIndexStore(tmp_path).read("abc") is None
