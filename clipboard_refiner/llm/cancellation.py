"""Cancellation handles returned by rewrite backends.

Key types:
- `CancelHandle`: idempotent cancel flag plus transport closers.
"""

from __future__ import annotations

import threading
from typing import Callable

from ..telemetry.logger import EngineLogger


_LOGGER = EngineLogger("cancel")


class CancelHandle:
    """Abort one in-flight backend request and gate its callbacks.

    Closers registered after cancellation run immediately. Callbacks routed
    through `deliver` are dropped once `cancel` has been called.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._closers: list[Callable[[], object]] = []

    @property
    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def add_closer(self, closer: Callable[[], object]) -> None:
        """Register a callable that aborts the underlying transport or process."""

        with self._lock:
            if not self._cancelled:
                self._closers.append(closer)
                return
        self._run_closer(closer)

    def cancel(self) -> None:
        """Mark the request cancelled and run every registered closer once."""

        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            closers = self._closers
            self._closers = []
        for closer in closers:
            self._run_closer(closer)

    def deliver(self, callback: Callable[..., object], *args: object) -> bool:
        """Invoke a callback unless cancelled and report whether it ran."""

        if self.is_cancelled:
            return False
        callback(*args)
        return True

    @staticmethod
    def _run_closer(closer: Callable[[], object]) -> None:
        try:
            closer()
        except Exception as exc:
            # Closing an already-finished transport may fail; cancellation still stands.
            _LOGGER.debug("closer_failed", error_type=type(exc).__name__)
