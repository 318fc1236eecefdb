"""Server-sent event decoding for streaming backends.

Responsibilities:
- Turn transport text lines into discrete `(event, payload)` events.
- Join multi-line `data:` bodies and flush a trailing unterminated event once.

Key types:
- `ServerSentEvent`: one decoded event.
- `StreamDecoder`: incremental line-fed decoder.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator


DONE_MARKER = "[DONE]"


@dataclass(frozen=True, slots=True)
class ServerSentEvent:
    """One decoded event: optional event name and joined data payload."""

    event: str | None
    data: str

    @property
    def is_done(self) -> bool:
        """Return whether this event is the explicit end-of-stream marker."""

        return is_done_marker(self.data)


def is_done_marker(payload: str) -> bool:
    """Return whether a payload is the literal terminal marker."""

    return payload.strip() == DONE_MARKER


class StreamDecoder:
    """Incremental event-stream decoder fed one line at a time."""

    def __init__(self) -> None:
        self._event: str | None = None
        self._data_lines: list[str] = []
        self._finished = False

    def feed(self, line: str) -> list[ServerSentEvent]:
        """Consume one line and return any event it completes."""

        if line.endswith("\r"):
            line = line[:-1]
        if not line:
            return self._flush()
        if line.startswith(":"):
            return []
        if line.startswith("event:"):
            self._event = line[len("event:") :].strip()
            return []
        if line.startswith("data:"):
            self._data_lines.append(line[len("data:") :].strip())
        return []

    def finish(self) -> list[ServerSentEvent]:
        """Flush a residual buffered event at end of input, exactly once."""

        if self._finished:
            return []
        self._finished = True
        return self._flush()

    def _flush(self) -> list[ServerSentEvent]:
        if not self._data_lines:
            self._event = None
            return []
        event = ServerSentEvent(event=self._event, data="\n".join(self._data_lines))
        self._event = None
        self._data_lines = []
        return [event]


def decode_event_stream(lines: Iterable[str]) -> Iterator[ServerSentEvent]:
    """Yield events decoded from an iterable of text lines, flushing at the end."""

    decoder = StreamDecoder()
    for line in lines:
        yield from decoder.feed(line)
    yield from decoder.finish()
