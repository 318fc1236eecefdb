"""Unit tests for the offline rewrite cache store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json
from pathlib import Path
import time

from clipboard_refiner.llm.cache import OfflineCacheStore
from clipboard_refiner.models.datatypes import ImageAttachment, RewriteRequest
from clipboard_refiner.models.styles import RewriteStyle


class _SteppingClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self) -> None:
        """Start at a fixed UTC instant."""

        self._now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        """Return the next instant."""

        self._now += timedelta(seconds=1)
        return self._now


def _wait_until(predicate, timeout: float = 3.0) -> bool:  # type: ignore[no-untyped-def]
    """Poll `predicate` until it holds or `timeout` elapses."""

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_cache_key_is_deterministic_and_option_sensitive() -> None:
    """Equal inputs should produce equal keys; different options should not."""

    request = RewriteRequest(text="hi there", style=RewriteStyle.PROOFREAD, aggressiveness=0.5)
    same = RewriteRequest(text="hi there", style=RewriteStyle.PROOFREAD, aggressiveness=0.5)
    other_style = RewriteRequest(text="hi there", style=RewriteStyle.SHORTER, aggressiveness=0.5)
    with_image = RewriteRequest(
        text="hi there",
        style=RewriteStyle.PROOFREAD,
        aggressiveness=0.5,
        attachments=(ImageAttachment.from_bytes(b"png-bytes"),),
    )

    key = OfflineCacheStore.key_for_request(backend="OpenAI", model="gpt-5.2", request=request)

    assert key == OfflineCacheStore.key_for_request(backend="OpenAI", model="gpt-5.2", request=same)
    assert key.startswith("OpenAI|gpt-5.2|")
    assert len(key.split("|")) == 4
    assert key != OfflineCacheStore.key_for_request(
        backend="OpenAI", model="gpt-5.2", request=other_style
    )
    assert key != OfflineCacheStore.key_for_request(
        backend="OpenAI", model="gpt-5.2", request=with_image
    )
    assert key != OfflineCacheStore.key_for_request(
        backend="xAI", model="gpt-5.2", request=request
    )


def test_inserting_past_capacity_evicts_only_the_oldest_entry(tmp_path: Path) -> None:
    """The 301st insert should remove exactly the oldest entry and keep the other 300."""

    store = OfflineCacheStore(tmp_path / "cache.json", clock=_SteppingClock(), persist_delay_seconds=60)

    for index in range(301):
        store.store(f"key-{index}", f"value-{index}")

    assert len(store) == 300
    assert store.lookup("key-0") is None
    assert store.lookup("key-1") == "value-1"
    assert store.lookup("key-300") == "value-300"
    store.clear()


def test_flush_writes_snapshot_that_reloads_in_new_store(tmp_path: Path) -> None:
    """Flushed entries should be persisted as records and reloaded lazily."""

    cache_path = tmp_path / "nested" / "cache.json"
    store = OfflineCacheStore(cache_path, persist_delay_seconds=60)
    store.store("k1", "Hello")
    store.flush()

    records = json.loads(cache_path.read_text(encoding="utf-8"))
    assert records[0]["key"] == "k1"
    assert records[0]["value"] == "Hello"
    assert records[0]["createdAt"].endswith("Z")

    reloaded = OfflineCacheStore(cache_path)
    assert reloaded.lookup("k1") == "Hello"
    assert reloaded.hits == 1


def test_reload_keeps_only_newest_entries_within_capacity(tmp_path: Path) -> None:
    """Loading a larger snapshot should keep the newest `capacity` entries."""

    cache_path = tmp_path / "cache.json"
    records = [
        {"key": f"k{index}", "value": f"v{index}", "createdAt": f"2025-01-01T00:00:0{index}Z"}
        for index in range(5)
    ]
    cache_path.write_text(json.dumps(records), encoding="utf-8")

    store = OfflineCacheStore(cache_path, capacity=3)

    assert [entry.key for entry in store.entries()] == ["k4", "k3", "k2"]


def test_malformed_snapshot_is_ignored(tmp_path: Path) -> None:
    """A corrupt snapshot should load as an empty cache instead of failing."""

    cache_path = tmp_path / "cache.json"
    cache_path.write_text("{not json", encoding="utf-8")

    store = OfflineCacheStore(cache_path)

    assert store.lookup("anything") is None
    assert len(store) == 0


def test_debounced_persistence_writes_after_delay(tmp_path: Path) -> None:
    """A store should be persisted by the debounce timer without an explicit flush."""

    cache_path = tmp_path / "cache.json"
    store = OfflineCacheStore(cache_path, persist_delay_seconds=0.05)
    store.store("k", "v")

    assert _wait_until(cache_path.exists)
    assert json.loads(cache_path.read_text(encoding="utf-8"))[0]["value"] == "v"


def test_clear_removes_entries_and_snapshot_file(tmp_path: Path) -> None:
    """Clearing should drop entries and delete the file without rewriting it."""

    cache_path = tmp_path / "cache.json"
    store = OfflineCacheStore(cache_path, persist_delay_seconds=60)
    store.store("k", "v")
    store.flush()
    assert cache_path.exists()

    store.clear()
    store.flush()

    assert not cache_path.exists()
    assert store.lookup("k") is None


def test_hit_rate_tracks_lookups(tmp_path: Path) -> None:
    """Hit rate should reflect hits over all lookups."""

    store = OfflineCacheStore(tmp_path / "cache.json", persist_delay_seconds=60)
    assert store.hit_rate() == 0.0

    store.store("k", "v")
    store.lookup("k")
    store.lookup("missing")

    assert store.hit_rate() == 0.5
    store.clear()
