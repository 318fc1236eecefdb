"""xAI chat-completions backend."""

from __future__ import annotations

from typing import Any

from ..errors import RewriteError
from ..models.backends import BackendType
from ..models.datatypes import RewriteRequest
from .backend import CompletionHandler, PartialHandler, fail_in_background
from .cancellation import CancelHandle
from .http_client import DEFAULT_REQUEST_TIMEOUT_SECONDS, ProviderHTTPClient, StreamAccumulator
from .prompts import PromptLibrary


XAI_CHAT_COMPLETIONS_ENDPOINT = "https://api.x.ai/v1/chat/completions"


def _content_to_text(content: Any) -> str | None:
    """Convert string or part-list message content into plain text."""

    if isinstance(content, str):
        return content
    if isinstance(content, list):
        joined = "".join(
            part["text"]
            for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
        return joined or None
    return None


class XAIBackend:
    """Rewrite backend for xAI's OpenAI-compatible chat-completions endpoint."""

    backend_type = BackendType.XAI

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = BackendType.XAI.default_model,
        prompts: PromptLibrary | None = None,
        endpoint: str = XAI_CHAT_COMPLETIONS_ENDPOINT,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.model = model
        self.prompts = prompts or PromptLibrary()
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return self.backend_type.display_name

    def build_payload(self, request: RewriteRequest) -> dict[str, Any]:
        """Return the chat-completions request body for a rewrite request."""

        wrapped = self.prompts.wrap_source_text(request.text)
        user_content: str | list[dict[str, Any]]
        if not request.attachments:
            user_content = wrapped
        else:
            user_content = [{"type": "text", "text": wrapped}]
            user_content.extend(
                {
                    "type": "image_url",
                    "image_url": {"url": attachment.data_url, "detail": "auto"},
                }
                for attachment in request.attachments
            )
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.prompts.system_prompt(request)},
                {"role": "user", "content": user_content},
            ],
            "temperature": request.temperature,
            "stream": request.streaming,
        }

    def rewrite(
        self,
        request: RewriteRequest,
        on_partial: PartialHandler,
        on_complete: CompletionHandler,
    ) -> CancelHandle:
        """Start a rewrite request against chat completions."""

        if not self.api_key:
            return fail_in_background("xai-request", RewriteError.invalid_api_key(), on_complete)

        client = ProviderHTTPClient(
            backend_name="xai",
            endpoint=self.endpoint,
            headers={"Authorization": f"Bearer {self.api_key}"},
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

    @classmethod
    def _handle_stream_event(
        cls,
        event: str | None,
        payload: dict[str, Any],
        accumulator: StreamAccumulator,
    ) -> None:
        # Compatible servers send either deltas or cumulative text here.
        accumulator.merge(cls._extract_stream_delta(payload))
        accumulator.merge(cls.extract_message_text(payload))

    @staticmethod
    def _extract_stream_delta(payload: dict[str, Any]) -> str | None:
        """Return the first non-empty `choices[].delta.content` fragment."""

        choices = payload.get("choices")
        if not isinstance(choices, list):
            return None
        for choice in choices:
            if not isinstance(choice, dict):
                continue
            delta = choice.get("delta")
            if not isinstance(delta, dict):
                continue
            text = _content_to_text(delta.get("content"))
            if text:
                return text
        return None

    @staticmethod
    def extract_message_text(payload: dict[str, Any]) -> str | None:
        """Extract `choices[0].message.content` as plain text."""

        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            return None
        first_choice = choices[0]
        if not isinstance(first_choice, dict):
            return None
        message = first_choice.get("message")
        if not isinstance(message, dict):
            return None
        return _content_to_text(message.get("content"))
