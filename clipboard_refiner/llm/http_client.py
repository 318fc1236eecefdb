"""Shared HTTP plumbing for cloud rewrite backends.

Responsibilities:
- Send JSON POST requests through `requests`, blocking or streamed.
- Map HTTP status, transport, and cancellation failures to `RewriteError`.
- Drive the event-stream decoder and the delta merger for streamed responses.
- Deliver exactly one completion per request, never after cancellation.

Key types:
- `StreamAccumulator`: per-request output and error state while streaming.
- `ProviderHTTPClient`: one backend endpoint plus its auth headers.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import re
import socket
from typing import Any, Callable, Iterator, Mapping

import requests

from ..errors import RewriteError
from ..models.datatypes import BackendResult
from ..telemetry.logger import EngineLogger
from .backend import CompletionHandler, PartialHandler, start_background
from .cancellation import CancelHandle
from .delta import merge_stream_output
from .sse import decode_event_stream


DEFAULT_REQUEST_TIMEOUT_SECONDS = 120.0

TextExtractor = Callable[[dict[str, Any]], str | None]


@dataclass(slots=True)
class StreamAccumulator:
    """Growing output and most specific error seen during one streamed request."""

    text: str = ""
    error_message: str | None = None
    error: RewriteError | None = None

    def merge(self, fragment: str | None) -> bool:
        """Merge a delta or cumulative snapshot; return whether output grew."""

        if not fragment:
            return False
        self.text, grew = merge_stream_output(fragment, self.text)
        return grew

    def final_error(self) -> RewriteError:
        """Return the error to report when the stream produced no text."""

        if self.error is not None:
            return self.error
        if self.error_message:
            return RewriteError.streaming(self.error_message)
        return RewriteError.invalid_response()


StreamEventHandler = Callable[[str | None, dict[str, Any], StreamAccumulator], None]


def decode_json_object(raw: bytes | str) -> dict[str, Any] | None:
    """Decode a JSON object payload, returning `None` for anything else."""

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def extract_error_message(payload: Mapping[str, Any]) -> str | None:
    """Return `error.message` or top-level `message` when present and non-empty."""

    error_payload = payload.get("error")
    if isinstance(error_payload, dict):
        message = error_payload.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    message = payload.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return None


class ProviderHTTPClient:
    """Requests-based transport for one cloud backend endpoint."""

    _MAX_PROVIDER_MESSAGE_CHARS = 180
    _MAX_ERROR_BODY_BYTES = 32_768

    def __init__(
        self,
        *,
        backend_name: str,
        endpoint: str,
        headers: Mapping[str, str],
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize endpoint, headers, and request timeout."""

        self.backend_name = backend_name
        self.endpoint = endpoint
        self.headers = dict(headers)
        self.timeout_seconds = timeout_seconds
        self._logger = EngineLogger(f"http.{backend_name.lower()}")

    def start(
        self,
        *,
        payload: dict[str, Any],
        streaming: bool,
        extract_text: TextExtractor,
        handle_event: StreamEventHandler,
        on_partial: PartialHandler,
        on_complete: CompletionHandler,
    ) -> CancelHandle:
        """Send `payload` on a background thread and return its cancel handle."""

        handle = CancelHandle()

        def _run() -> None:
            result = self._execute(
                handle=handle,
                payload=payload,
                streaming=streaming,
                extract_text=extract_text,
                handle_event=handle_event,
                on_partial=on_partial,
            )
            if result.error is not None:
                self._logger.info(
                    "request_failed",
                    error_kind=result.error.kind.value,
                    status_code=result.error.status_code,
                )
            handle.deliver(on_complete, result)

        start_background(f"{self.backend_name}-request", _run)
        return handle

    def _execute(
        self,
        *,
        handle: CancelHandle,
        payload: dict[str, Any],
        streaming: bool,
        extract_text: TextExtractor,
        handle_event: StreamEventHandler,
        on_partial: PartialHandler,
    ) -> BackendResult:
        """Run one request to completion and return its tagged result."""

        try:
            if streaming:
                text = self._perform_stream(handle, payload, handle_event, on_partial)
            else:
                text = self._perform(handle, payload, extract_text)
                handle.deliver(on_partial, text)
            return BackendResult.success(text)
        except RewriteError as exc:
            return BackendResult.failure(exc)
        except Exception as exc:
            if handle.is_cancelled:
                return BackendResult.failure(RewriteError.cancelled())
            return BackendResult.failure(self._transport_error(exc))

    def _post(self, handle: CancelHandle, payload: dict[str, Any], *, stream: bool) -> requests.Response:
        """POST the JSON payload and register the response for cancellation."""

        if handle.is_cancelled:
            raise RewriteError.cancelled()
        headers = {"Content-Type": "application/json", **self.headers}
        if stream:
            headers["Accept"] = "text/event-stream"
        try:
            response = requests.post(
                self.endpoint,
                headers=headers,
                json=payload,
                timeout=self.timeout_seconds,
                stream=stream,
            )
        except (requests.RequestException, OSError) as exc:
            if handle.is_cancelled:
                raise RewriteError.cancelled() from exc
            raise self._transport_error(exc) from exc
        handle.add_closer(response.close)
        if handle.is_cancelled:
            raise RewriteError.cancelled()
        return response

    def _perform(
        self,
        handle: CancelHandle,
        payload: dict[str, Any],
        extract_text: TextExtractor,
    ) -> str:
        """Issue a blocking request and return the extracted output text."""

        response = self._post(handle, payload, stream=False)
        try:
            body = bytes(response.content)
        finally:
            response.close()

        status_error = self._status_error(response.status_code, body)
        if status_error is not None:
            raise status_error

        decoded = decode_json_object(body)
        if decoded is None:
            raise RewriteError.invalid_response()
        text = extract_text(decoded)
        if not text:
            raise RewriteError.invalid_response()
        return text

    def _perform_stream(
        self,
        handle: CancelHandle,
        payload: dict[str, Any],
        handle_event: StreamEventHandler,
        on_partial: PartialHandler,
    ) -> str:
        """Stream a request, reporting every growth of the merged output."""

        response = self._post(handle, payload, stream=True)
        try:
            if not 200 <= response.status_code < 300:
                body = self._read_error_body(response)
                status_error = self._status_error(response.status_code, body)
                raise status_error or RewriteError.invalid_response()

            accumulator = StreamAccumulator()
            for event in decode_event_stream(self._iter_text_lines(response)):
                if handle.is_cancelled:
                    raise RewriteError.cancelled()
                if event.is_done:
                    continue
                decoded = decode_json_object(event.data)
                if decoded is None:
                    continue
                stream_error = extract_error_message(decoded)
                if stream_error is not None:
                    accumulator.error_message = self._short_message(
                        self._redact_sensitive_tokens(stream_error)
                    )
                previous = accumulator.text
                handle_event(event.event, decoded, accumulator)
                if accumulator.text != previous:
                    handle.deliver(on_partial, accumulator.text)
        finally:
            response.close()

        if handle.is_cancelled:
            raise RewriteError.cancelled()
        if accumulator.text:
            return accumulator.text
        raise accumulator.final_error()

    @staticmethod
    def _iter_text_lines(response: requests.Response) -> Iterator[str]:
        """Yield response body lines as text regardless of declared encoding."""

        for line in response.iter_lines():
            if isinstance(line, bytes):
                yield line.decode("utf-8", errors="replace")
            else:
                yield line

    @classmethod
    def _read_error_body(cls, response: requests.Response) -> bytes:
        """Read a bounded prefix of a failed streamed response body."""

        collected = bytearray()
        for line in cls._iter_text_lines(response):
            collected.extend(line.encode("utf-8"))
            collected.extend(b"\n")
            if len(collected) >= cls._MAX_ERROR_BODY_BYTES:
                break
        return bytes(collected)

    @classmethod
    def _status_error(cls, status_code: int, body: bytes) -> RewriteError | None:
        """Map a non-2xx status to a rewrite error, or `None` when successful."""

        if status_code == 429:
            return RewriteError.rate_limited()
        if 200 <= status_code < 300:
            return None
        return RewriteError.server_error(status_code, cls._server_message(body))

    @classmethod
    def _server_message(cls, body: bytes) -> str | None:
        """Extract a concise server message from a JSON error body."""

        decoded = decode_json_object(body) if body else None
        if decoded is None:
            return None
        message = extract_error_message(decoded)
        if message is None:
            return None
        return cls._short_message(cls._redact_sensitive_tokens(message))

    @classmethod
    def _transport_error(cls, exc: BaseException) -> RewriteError:
        """Classify transport failures into timeout or network errors."""

        if isinstance(exc, (TimeoutError, socket.timeout, requests.Timeout)):
            return RewriteError.timeout()
        detail = cls._short_message(cls._redact_sensitive_tokens(str(exc))) or type(exc).__name__
        return RewriteError.network(detail)

    @staticmethod
    def _redact_sensitive_tokens(text: str) -> str:
        """Redact API-key-like tokens from provider error content."""

        redacted = re.sub(r"\b(?:sk|xai)-[A-Za-z0-9_-]{8,}\b", "[redacted-key]", text)
        redacted = re.sub(
            r"(?i)bearer\s+[A-Za-z0-9._-]{12,}",
            "Bearer [redacted-token]",
            redacted,
        )
        return redacted

    @classmethod
    def _short_message(cls, text: str) -> str:
        """Normalize and cap user-facing provider message length."""

        compact = " ".join(text.split())
        if len(compact) <= cls._MAX_PROVIDER_MESSAGE_CHARS:
            return compact
        return f"{compact[: cls._MAX_PROVIDER_MESSAGE_CHARS - 1]}..."
