"""Rewrite history sink.

Key types:
- `HistorySink`: protocol accepting completed rewrite records.
- `InMemoryHistory`: newest-first bounded history log.
"""

from __future__ import annotations

import json
import threading
from typing import Protocol

from .models.datatypes import HistoryEntry


DEFAULT_HISTORY_LIMIT = 150


class HistorySink(Protocol):
    """Protocol for components that record completed rewrites."""

    def add_entry(self, entry: HistoryEntry) -> None:
        """Record one completed rewrite."""


class InMemoryHistory:
    """Keep the newest `limit` history entries, newest first."""

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.limit = limit
        self._lock = threading.Lock()
        self._entries: list[HistoryEntry] = []

    def add_entry(self, entry: HistoryEntry) -> None:
        with self._lock:
            self._entries.insert(0, entry)
            del self._entries[self.limit :]

    def entries(self) -> list[HistoryEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def to_json(self) -> str:
        """Serialize history to a JSON array, newest first."""

        return json.dumps([entry.to_payload() for entry in self.entries()], ensure_ascii=False, indent=2)
