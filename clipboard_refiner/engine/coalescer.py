"""Rate-limited delivery of streamed partial output."""

from __future__ import annotations

import threading
from typing import Callable


DEFAULT_COALESCE_INTERVAL_SECONDS = 1.0 / 30.0


class PartialCoalescer:
    """Forward the latest partial at most once per interval.

    All state is guarded by the owner's lock, which is also held while the
    delivery callback runs, so a timer flush can never overtake `flush`.
    """

    def __init__(
        self,
        deliver: Callable[[str], None],
        lock: threading.RLock,
        interval_seconds: float = DEFAULT_COALESCE_INTERVAL_SECONDS,
    ) -> None:
        self._deliver = deliver
        self._lock = lock
        self.interval_seconds = interval_seconds
        self._pending: str | None = None
        self._timer: threading.Timer | None = None
        self._closed = False

    def submit(self, text: str) -> None:
        """Buffer `text` and arm the flush timer if it is not already running."""

        with self._lock:
            if self._closed:
                return
            self._pending = text
            if self._timer is None:
                timer = threading.Timer(self.interval_seconds, self._on_timer)
                timer.daemon = True
                self._timer = timer
                timer.start()

    def flush(self) -> None:
        """Deliver any buffered partial immediately and stop accepting new ones."""

        with self._lock:
            self._closed = True
            self._cancel_timer_locked()
            pending, self._pending = self._pending, None
            if pending is not None:
                self._deliver(pending)

    def discard(self) -> None:
        """Drop any buffered partial and stop accepting new ones."""

        with self._lock:
            self._closed = True
            self._cancel_timer_locked()
            self._pending = None

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
            pending, self._pending = self._pending, None
            if pending is not None and not self._closed:
                self._deliver(pending)

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
