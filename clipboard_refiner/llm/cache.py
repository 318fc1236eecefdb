"""Persistent content-addressed cache used as an offline fallback.

Responsibilities:
- Build stable cache keys from backend, model, source text, and request options.
- Keep at most `capacity` entries, evicting the oldest by creation time on insert.
- Load the snapshot file lazily on first access and persist it on a debounced timer
  with an atomic replace.
- Track basic hit/miss telemetry.
"""

from __future__ import annotations

from datetime import datetime, timezone
from hashlib import sha256
import json
import os
from pathlib import Path
import tempfile
import threading
from typing import Callable

from ..models.datatypes import CacheEntry, RewriteRequest
from ..telemetry.logger import EngineLogger


DEFAULT_CACHE_CAPACITY = 300
DEFAULT_PERSIST_DELAY_SECONDS = 0.35

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _sha256_hex(text: str) -> str:
    return sha256(text.encode("utf-8")).hexdigest()


class OfflineCacheStore:
    """Bounded rewrite cache backed by a JSON snapshot file."""

    def __init__(
        self,
        path: Path,
        *,
        capacity: int = DEFAULT_CACHE_CAPACITY,
        persist_delay_seconds: float = DEFAULT_PERSIST_DELAY_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        """Initialize file location, capacity, debounce delay, and clock."""

        if capacity <= 0:
            raise ValueError("`capacity` must be a positive integer.")
        self.path = Path(path)
        self.capacity = capacity
        self.persist_delay_seconds = persist_delay_seconds
        self._clock = clock or _utc_now
        self._logger = EngineLogger("offline_cache")

        self._lock = threading.Lock()
        self._io_lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._loaded = False
        self._dirty = False
        self._persist_timer: threading.Timer | None = None
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(*, backend: str, model: str, text: str, options_component: str) -> str:
        """Build the deterministic key for one backend/model/text/options tuple."""

        return "|".join(
            [backend, model, _sha256_hex(text), _sha256_hex(options_component)]
        )

    @classmethod
    def key_for_request(cls, *, backend: str, model: str, request: RewriteRequest) -> str:
        """Build the cache key for a rewrite request."""

        return cls.make_key(
            backend=backend,
            model=model,
            text=request.text,
            options_component=request.cache_key_component(),
        )

    def lookup(self, key: str) -> str | None:
        """Return the cached value for `key` and update hit/miss counters."""

        with self._lock:
            self._load_if_needed_locked()
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def store(self, key: str, value: str) -> None:
        """Insert or refresh an entry, evict past capacity, and schedule persistence."""

        with self._lock:
            self._load_if_needed_locked()
            self._entries[key] = CacheEntry(key=key, value=value, created_at=self._clock())
            if len(self._entries) > self.capacity:
                oldest_key = min(self._entries.values(), key=lambda entry: entry.created_at).key
                del self._entries[oldest_key]
            self._dirty = True
            self._schedule_persist_locked()

    def clear(self) -> None:
        """Drop every entry, cancel pending persistence, and delete the snapshot file."""

        with self._lock:
            self._loaded = True
            self._entries.clear()
            self._dirty = False
            self._cancel_timer_locked()
        with self._io_lock:
            self.path.unlink(missing_ok=True)

    def flush(self) -> None:
        """Persist pending changes immediately."""

        with self._lock:
            self._cancel_timer_locked()
        self._persist()

    def entries(self) -> list[CacheEntry]:
        """Return a snapshot of entries, newest first."""

        with self._lock:
            self._load_if_needed_locked()
            return sorted(self._entries.values(), key=lambda entry: entry.created_at, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            self._load_if_needed_locked()
            return len(self._entries)

    def hit_rate(self) -> float:
        """Return cache hit rate for the current process lifetime."""

        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / float(total)

    def _load_if_needed_locked(self) -> None:
        """Load the snapshot file once per store lifetime, keeping the newest entries."""

        if self._loaded:
            return
        self._loaded = True
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except OSError as exc:
            self._logger.warning("load_failed", error_type=type(exc).__name__)
            return

        try:
            records = json.loads(raw)
        except json.JSONDecodeError:
            self._logger.warning("load_failed", error_type="JSONDecodeError")
            return
        if not isinstance(records, list):
            self._logger.warning("load_failed", error_type="unexpected_shape")
            return

        loaded: list[CacheEntry] = []
        for record in records:
            if not isinstance(record, dict):
                continue
            try:
                loaded.append(CacheEntry.from_payload(record))
            except ValueError:
                continue
        loaded.sort(key=lambda entry: entry.created_at, reverse=True)
        self._entries = {entry.key: entry for entry in reversed(loaded[: self.capacity])}

    def _schedule_persist_locked(self) -> None:
        self._cancel_timer_locked()
        timer = threading.Timer(self.persist_delay_seconds, self._persist)
        timer.daemon = True
        self._persist_timer = timer
        timer.start()

    def _cancel_timer_locked(self) -> None:
        if self._persist_timer is not None:
            self._persist_timer.cancel()
            self._persist_timer = None

    def _persist(self) -> None:
        """Atomically write the current entries when there are unsaved changes."""

        with self._io_lock:
            with self._lock:
                if not self._dirty:
                    return
                self._dirty = False
                payload = [entry.to_payload() for entry in self._entries.values()]

            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                descriptor, temp_name = tempfile.mkstemp(
                    prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
                )
                try:
                    with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
                        json.dump(payload, handle, ensure_ascii=False)
                    os.replace(temp_name, self.path)
                except BaseException:
                    Path(temp_name).unlink(missing_ok=True)
                    raise
            except OSError as exc:
                self._logger.error("persist_failed", error_type=type(exc).__name__)
