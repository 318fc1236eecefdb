"""Anthropic Messages API backend.

Responsibilities:
- Build Messages API payloads with a system prompt, wrapped text, and base64 images.
- Join text content blocks from blocking responses.
- Map empty responses with known stop reasons to specific server errors.
- Merge `content_block_delta` text from streamed responses.
"""

from __future__ import annotations

from typing import Any

from ..errors import RewriteError
from ..models.backends import BackendType
from ..models.datatypes import RewriteRequest
from .backend import CompletionHandler, PartialHandler, fail_in_background
from .cancellation import CancelHandle
from .http_client import DEFAULT_REQUEST_TIMEOUT_SECONDS, ProviderHTTPClient, StreamAccumulator
from .prompts import PromptLibrary


ANTHROPIC_MESSAGES_ENDPOINT = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"

_STOP_REASON_MESSAGES = {
    "refusal": "Anthropic returned refusal for this request.",
    "model_context_window_exceeded": "Model context window exceeded. Shorten input or attachments.",
}


def stop_reason_error(stop_reason: object) -> RewriteError | None:
    """Return the server error for a stop reason that explains empty output."""

    if not isinstance(stop_reason, str):
        return None
    message = _STOP_REASON_MESSAGES.get(stop_reason)
    if message is None:
        return None
    return RewriteError.server_error(400, message)


class AnthropicBackend:
    """Rewrite backend for Anthropic's `/v1/messages` endpoint."""

    backend_type = BackendType.ANTHROPIC
    max_tokens = 4096

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = BackendType.ANTHROPIC.default_model,
        prompts: PromptLibrary | None = None,
        endpoint: str = ANTHROPIC_MESSAGES_ENDPOINT,
        api_version: str = ANTHROPIC_API_VERSION,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.model = model
        self.prompts = prompts or PromptLibrary()
        self.endpoint = endpoint
        self.api_version = api_version
        self.timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return self.backend_type.display_name

    def build_payload(self, request: RewriteRequest) -> dict[str, Any]:
        """Return the Messages API request body for a rewrite request."""

        user_content: list[dict[str, Any]] = [
            {"type": "text", "text": self.prompts.wrap_source_text(request.text)}
        ]
        user_content.extend(
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": attachment.mime_type,
                    "data": attachment.data_base64,
                },
            }
            for attachment in request.attachments
        )
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": self.prompts.system_prompt(request),
            "messages": [{"role": "user", "content": user_content}],
            "temperature": request.temperature,
            "stream": request.streaming,
        }

    def rewrite(
        self,
        request: RewriteRequest,
        on_partial: PartialHandler,
        on_complete: CompletionHandler,
    ) -> CancelHandle:
        """Start a rewrite request against the Messages API."""

        if not self.api_key:
            return fail_in_background("anthropic-request", RewriteError.invalid_api_key(), on_complete)

        client = ProviderHTTPClient(
            backend_name="anthropic",
            endpoint=self.endpoint,
            headers={"x-api-key": self.api_key, "anthropic-version": self.api_version},
            timeout_seconds=self.timeout_seconds,
        )
        return client.start(
            payload=self.build_payload(request),
            streaming=request.streaming,
            extract_text=self.extract_message_text,
            handle_event=self._handle_stream_event,
            on_partial=on_partial,
            on_complete=on_complete,
        )

    @staticmethod
    def _handle_stream_event(
        event: str | None,
        payload: dict[str, Any],
        accumulator: StreamAccumulator,
    ) -> None:
        """Merge text deltas and record stop reasons from one streamed event."""

        event_type = event or payload.get("type")
        if event_type == "content_block_delta":
            delta = payload.get("delta")
            if isinstance(delta, dict) and isinstance(delta.get("text"), str):
                accumulator.merge(delta["text"])
            return
        if event_type == "message_delta":
            delta = payload.get("delta")
            if isinstance(delta, dict):
                mapped = stop_reason_error(delta.get("stop_reason"))
                if mapped is not None:
                    accumulator.error = mapped

    @staticmethod
    def extract_message_text(payload: dict[str, Any]) -> str | None:
        """Join text blocks of a Messages API response.

        Raises:
            RewriteError: When no text was produced and the stop reason explains why.
        """

        content = payload.get("content")
        if not isinstance(content, list):
            return None
        text = "".join(
            block["text"]
            for block in content
            if isinstance(block, dict)
            and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        )
        if text:
            return text
        mapped = stop_reason_error(payload.get("stop_reason"))
        if mapped is not None:
            raise mapped
        return None
