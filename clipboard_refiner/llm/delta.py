"""Merge streamed text fragments into a monotonically growing output.

Backends emit pure deltas, cumulative snapshots, or a mix. One rule covers
all of them:

- an empty candidate, or a candidate that is a prefix of (or equal to) the
  accumulated text, is stale and ignored;
- a candidate that extends the accumulated text replaces it;
- anything else is appended as an incremental delta.
"""

from __future__ import annotations


def merge_stream_output(candidate: str, accumulated: str) -> tuple[str, bool]:
    """Merge one fragment and return `(new_accumulated, did_grow)`."""

    if not candidate:
        return accumulated, False
    if candidate.startswith(accumulated):
        if len(candidate) > len(accumulated):
            return candidate, True
        return accumulated, False
    if accumulated.startswith(candidate):
        return accumulated, False
    return accumulated + candidate, True

