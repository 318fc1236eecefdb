"""Unit tests for event-stream decoding."""

from __future__ import annotations

from clipboard_refiner.llm.sse import (
    ServerSentEvent,
    StreamDecoder,
    decode_event_stream,
    is_done_marker,
)


def test_decoder_emits_event_on_blank_line_with_event_name() -> None:
    """A blank line should complete the buffered event with its name and data."""

    decoder = StreamDecoder()

    assert decoder.feed("event: content_block_delta") == []
    assert decoder.feed('data: {"a":1}') == []
    assert decoder.feed("") == [ServerSentEvent(event="content_block_delta", data='{"a":1}')]


def test_decoder_joins_multiline_data_and_strips_carriage_returns() -> None:
    """Multiple data lines should be joined with newlines; trailing CR is ignored."""

    events = list(decode_event_stream(["data: first\r", "data: second\r", "\r"]))

    assert events == [ServerSentEvent(event=None, data="first\nsecond")]


def test_decoder_ignores_comments_and_unknown_fields() -> None:
    """Comment lines and unknown fields should not produce events."""

    events = list(decode_event_stream([": keep-alive", "id: 7", "retry: 10", "data: x", ""]))

    assert events == [ServerSentEvent(event=None, data="x")]


def test_blank_line_without_data_emits_nothing_and_resets_event_name() -> None:
    """An event name without data should be discarded at the blank line."""

    decoder = StreamDecoder()
    decoder.feed("event: ping")

    assert decoder.feed("") == []
    decoder.feed("data: payload")
    assert decoder.feed("") == [ServerSentEvent(event=None, data="payload")]


def test_finish_flushes_residual_event_exactly_once() -> None:
    """An unterminated trailing event should be flushed once at end of input."""

    decoder = StreamDecoder()
    decoder.feed("event: message_stop")
    decoder.feed("data: {}")

    assert decoder.finish() == [ServerSentEvent(event="message_stop", data="{}")]
    assert decoder.finish() == []


def test_done_marker_is_detected_as_terminal_payload() -> None:
    """The literal `[DONE]` payload should be recognized, ignoring surrounding whitespace."""

    events = list(decode_event_stream(["data: [DONE]"]))

    assert len(events) == 1
    assert events[0].is_done is True
    assert is_done_marker(" [DONE] ") is True
    assert is_done_marker('{"done": true}') is False
