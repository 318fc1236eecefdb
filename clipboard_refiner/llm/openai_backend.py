"""OpenAI Responses API backend.

Responsibilities:
- Build Responses API payloads with instructions, wrapped input, and images.
- Choose a reasoning effort tier or a temperature for the configured model.
- Extract output text from blocking responses and streamed events.
"""

from __future__ import annotations

from typing import Any

from ..errors import RewriteError
from ..models.backends import (
    DEFAULT_REASONING_MODEL_PREFIXES,
    BackendType,
    ReasoningEffort,
    is_reasoning_model,
)
from ..models.datatypes import RewriteRequest
from .backend import CompletionHandler, PartialHandler, fail_in_background
from .cancellation import CancelHandle
from .http_client import DEFAULT_REQUEST_TIMEOUT_SECONDS, ProviderHTTPClient, StreamAccumulator
from .prompts import PromptLibrary


OPENAI_RESPONSES_ENDPOINT = "https://api.openai.com/v1/responses"

_DELTA_EVENT_TYPES = frozenset({"response.output_text.delta", "response.output.delta"})
_SNAPSHOT_EVENT_TYPES = frozenset(
    {
        "response.output_text.done",
        "response.completed",
        "response.output_item.done",
        "response.output_text.delta",
    }
)


class OpenAIBackend:
    """Rewrite backend for OpenAI's `/v1/responses` endpoint."""

    backend_type = BackendType.OPENAI
    max_output_tokens = 4096

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = BackendType.OPENAI.default_model,
        reasoning_effort: ReasoningEffort = ReasoningEffort.NONE,
        reasoning_model_prefixes: tuple[str, ...] = DEFAULT_REASONING_MODEL_PREFIXES,
        prompts: PromptLibrary | None = None,
        endpoint: str = OPENAI_RESPONSES_ENDPOINT,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize credentials, model selection, and transport settings."""

        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.model = model
        self.reasoning_effort = reasoning_effort
        self.reasoning_model_prefixes = reasoning_model_prefixes
        self.prompts = prompts or PromptLibrary()
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return self.backend_type.display_name

    def build_payload(self, request: RewriteRequest) -> dict[str, Any]:
        """Return the Responses API request body for a rewrite request."""

        user_content: list[dict[str, Any]] = [
            {"type": "input_text", "text": self.prompts.wrap_source_text(request.text)}
        ]
        user_content.extend(
            {"type": "input_image", "image_url": attachment.data_url}
            for attachment in request.attachments
        )
        payload: dict[str, Any] = {
            "model": self.model,
            "instructions": self.prompts.system_prompt(request),
            "input": [{"role": "user", "content": user_content}],
            "stream": request.streaming,
            "max_output_tokens": self.max_output_tokens,
        }
        if self.uses_reasoning_effort:
            payload["reasoning"] = {"effort": self.reasoning_effort.value}
        else:
            payload["temperature"] = request.temperature
        return payload

    @property
    def uses_reasoning_effort(self) -> bool:
        """Return whether requests send an effort tier instead of temperature."""

        return (
            self.reasoning_effort is not ReasoningEffort.NONE
            and is_reasoning_model(self.model, self.reasoning_model_prefixes)
        )

    def rewrite(
        self,
        request: RewriteRequest,
        on_partial: PartialHandler,
        on_complete: CompletionHandler,
    ) -> CancelHandle:
        """Start a rewrite request against the Responses API."""

        if not self.api_key:
            return fail_in_background("openai-request", RewriteError.invalid_api_key(), on_complete)

        client = ProviderHTTPClient(
            backend_name="openai",
            endpoint=self.endpoint,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout_seconds=self.timeout_seconds,
        )
        return client.start(
            payload=self.build_payload(request),
            streaming=request.streaming,
            extract_text=self.extract_output_text,
            handle_event=self._handle_stream_event,
            on_partial=on_partial,
            on_complete=on_complete,
        )

    @classmethod
    def _handle_stream_event(
        cls,
        event: str | None,
        payload: dict[str, Any],
        accumulator: StreamAccumulator,
    ) -> None:
        """Merge delta and snapshot text carried by one streamed event."""

        event_type = event or payload.get("type")
        if event_type in _DELTA_EVENT_TYPES:
            delta = payload.get("delta")
            if isinstance(delta, str):
                accumulator.merge(delta)
        if event_type in _SNAPSHOT_EVENT_TYPES:
            accumulator.merge(cls._extract_snapshot(payload))

    @classmethod
    def _extract_snapshot(cls, payload: dict[str, Any]) -> str | None:
        """Return full output text carried by a snapshot-style event."""

        output_text = payload.get("output_text")
        if isinstance(output_text, str) and output_text:
            return output_text
        response = payload.get("response")
        if isinstance(response, dict):
            nested = cls.extract_output_text(response)
            if nested:
                return nested
        return cls.extract_output_text(payload)

    @staticmethod
    def extract_output_text(payload: dict[str, Any]) -> str | None:
        """Extract output text from a Responses API response object."""

        direct = payload.get("output_text")
        if isinstance(direct, str) and direct:
            return direct

        output_items = payload.get("output")
        if not isinstance(output_items, list):
            return None

        parts: list[str] = []
        for item in output_items:
            if not isinstance(item, dict):
                continue
            content = item.get("content")
            if not isinstance(content, list):
                continue
            for part in content:
                if (
                    isinstance(part, dict)
                    and part.get("type") == "output_text"
                    and isinstance(part.get("text"), str)
                ):
                    parts.append(part["text"])
        combined = "".join(parts)
        return combined or None
