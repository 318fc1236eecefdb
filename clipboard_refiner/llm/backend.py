"""Uniform contract implemented by every rewrite backend.

Responsibilities:
- Define the callback-based `rewrite` contract shared by cloud and local backends.
- Provide the background-thread helper backends use to run work off the caller thread.

Key types:
- `RewriteBackend`: protocol for backend adapters.
"""

from __future__ import annotations

import threading
from typing import Callable, Protocol

from ..errors import RewriteError
from ..models.backends import BackendType
from ..models.datatypes import BackendResult, RewriteRequest
from .cancellation import CancelHandle


PartialHandler = Callable[[str], None]
CompletionHandler = Callable[[BackendResult], None]


class RewriteBackend(Protocol):
    """Protocol for backends that turn a rewrite request into output text.

    Implementations never raise from `rewrite`: every failure is delivered as
    a `BackendResult.failure` through `on_complete`, exactly once, on a
    background thread.
    """

    backend_type: BackendType
    model: str

    def rewrite(
        self,
        request: RewriteRequest,
        on_partial: PartialHandler,
        on_complete: CompletionHandler,
    ) -> CancelHandle:
        """Start a rewrite and return a handle that aborts it."""


def start_background(name: str, target: Callable[[], None]) -> threading.Thread:
    """Run a backend job on a daemon thread."""

    thread = threading.Thread(target=target, name=name, daemon=True)
    thread.start()
    return thread


def fail_in_background(
    name: str,
    error: RewriteError,
    on_complete: CompletionHandler,
) -> CancelHandle:
    """Deliver an up-front failure asynchronously, as a real request would."""

    handle = CancelHandle()
    start_background(name, lambda: handle.deliver(on_complete, BackendResult.failure(error)))
    return handle
