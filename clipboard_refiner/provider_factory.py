"""Backend factory for the rewrite engine.

Responsibilities:
- Resolve the selected backend and current settings to a concrete adapter.
- Keep the engine independent from concrete backend class construction.

Notes:
- A backend that cannot be built (missing API key or local model path)
  resolves to `None`; the engine reports that as its own failure.
"""

from __future__ import annotations

from .config import SettingsProvider
from .llm.anthropic_backend import AnthropicBackend
from .llm.backend import RewriteBackend
from .llm.local_backend import LocalBackend
from .llm.openai_backend import OpenAIBackend
from .llm.prompts import PromptLibrary
from .llm.xai_backend import XAIBackend
from .local.supervisor import LocalWorkerSupervisor
from .models.backends import BackendType


class BackendFactory:
    """Factory for backend adapters used by the rewrite engine."""

    def __init__(self, supervisor: LocalWorkerSupervisor) -> None:
        """Initialize with the supervisor shared by every local backend."""

        self.supervisor = supervisor

    def create(
        self,
        backend: BackendType,
        settings: SettingsProvider,
        prompts: PromptLibrary,
    ) -> RewriteBackend | None:
        """Create an adapter for `backend`, or `None` when it is not configured."""

        model = settings.model_for(backend)

        if backend is BackendType.LOCAL:
            model_path = settings.local_model_path_for(model)
            if model_path is None:
                return None
            return LocalBackend(
                model_name=model,
                model_path=model_path,
                supervisor=self.supervisor,
                prompts=prompts,
            )

        api_key = settings.api_key_for(backend)
        if api_key is None:
            return None

        timeout_seconds = settings.request_timeout_seconds
        if backend is BackendType.OPENAI:
            return OpenAIBackend(
                api_key=api_key,
                model=model,
                reasoning_effort=settings.openai_reasoning_effort,
                reasoning_model_prefixes=settings.reasoning_model_prefixes,
                prompts=prompts,
                timeout_seconds=timeout_seconds,
            )
        if backend is BackendType.ANTHROPIC:
            return AnthropicBackend(
                api_key=api_key,
                model=model,
                prompts=prompts,
                timeout_seconds=timeout_seconds,
            )
        if backend is BackendType.XAI:
            return XAIBackend(
                api_key=api_key,
                model=model,
                prompts=prompts,
                timeout_seconds=timeout_seconds,
            )
        raise ValueError(f"Unsupported backend `{backend}`.")
