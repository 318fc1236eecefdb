"""Backend catalog: identifiers, default models, and model-name normalization.

Key types:
- `BackendType`: the four supported generation backends.
- `ReasoningEffort`: discrete effort tiers accepted by reasoning models.
"""

from __future__ import annotations

from enum import Enum


class BackendType(str, Enum):
    """Supported generation backends, valued by their display name."""

    OPENAI = "OpenAI"
    ANTHROPIC = "Anthropic"
    XAI = "xAI"
    LOCAL = "Local"

    @property
    def display_name(self) -> str:
        """Return the human-facing backend name."""

        return self.value

    @property
    def config_id(self) -> str:
        """Return the lowercase identifier used in config files and CLI flags."""

        return self.name.lower()

    @property
    def default_model(self) -> str:
        """Return the default model for this backend."""

        return _DEFAULT_MODELS[self]

    @property
    def available_models(self) -> tuple[str, ...]:
        """Return the selectable models for this backend."""

        return _AVAILABLE_MODELS[self]

    @property
    def api_key_identifier(self) -> str:
        """Return the secret-store account name, empty for the local backend."""

        return _API_KEY_IDENTIFIERS[self]

    @property
    def api_key_env_var(self) -> str:
        """Return the environment variable consulted for this backend's key."""

        return _API_KEY_ENV_VARS[self]

    @property
    def uses_api_key(self) -> bool:
        """Return whether requests require an API credential."""

        return self is not BackendType.LOCAL

    @classmethod
    def parse(cls, value: str) -> BackendType:
        """Resolve a backend from its config id or display name.

        Raises:
            ValueError: If the value names no known backend.
        """

        token = value.strip().lower()
        for backend in cls:
            if token in {backend.config_id, backend.value.lower()}:
                return backend
        supported = ", ".join(backend.config_id for backend in cls)
        raise ValueError(f"Unsupported backend `{value}`; supported: {supported}.")


class ReasoningEffort(str, Enum):
    """Effort tiers sent to reasoning models instead of a temperature."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: str) -> ReasoningEffort:
        """Resolve an effort tier from text.

        Raises:
            ValueError: If the value is not a known tier.
        """

        token = value.strip().lower()
        for effort in cls:
            if effort.value == token:
                return effort
        supported = ", ".join(effort.value for effort in cls)
        raise ValueError(f"Unsupported reasoning effort `{value}`; supported: {supported}.")


_DEFAULT_MODELS = {
    BackendType.OPENAI: "gpt-5.2",
    BackendType.ANTHROPIC: "claude-sonnet-4-6",
    BackendType.XAI: "grok-4-1-fast",
    BackendType.LOCAL: "local-model",
}

_AVAILABLE_MODELS: dict[BackendType, tuple[str, ...]] = {
    BackendType.OPENAI: ("gpt-5.2", "gpt-5.1-2025-11-13"),
    BackendType.ANTHROPIC: ("claude-sonnet-4-6", "claude-opus-4-6"),
    BackendType.XAI: ("grok-4-1-fast", "grok-4-1-fast-reasoning-latest"),
    BackendType.LOCAL: (),
}

_API_KEY_IDENTIFIERS = {
    BackendType.OPENAI: "openai_api_key",
    BackendType.ANTHROPIC: "anthropic_api_key",
    BackendType.XAI: "xai_api_key",
    BackendType.LOCAL: "",
}

_API_KEY_ENV_VARS = {
    BackendType.OPENAI: "OPENAI_API_KEY",
    BackendType.ANTHROPIC: "ANTHROPIC_API_KEY",
    BackendType.XAI: "XAI_API_KEY",
    BackendType.LOCAL: "",
}

# Informal labels mapped to current Anthropic API aliases.
_ANTHROPIC_ALIASES = {
    "claude-4.6-sonnet": "claude-sonnet-4-6",
    "claude-4-6-sonnet": "claude-sonnet-4-6",
    "claude-4.6-opus": "claude-opus-4-6",
    "claude-4-6-opus": "claude-opus-4-6",
    "claude-4.5-sonnet": "claude-sonnet-4-6",
    "claude-4-5-sonnet": "claude-sonnet-4-6",
}

DEFAULT_REASONING_MODEL_PREFIXES = ("gpt-5",)


def normalize_model_name(model: str | None, backend: BackendType) -> str | None:
    """Map dated or informal model labels to a catalog model, or `None` if unknown."""

    if model is None:
        return None
    normalized = model.strip().lower()
    if not normalized:
        return None

    if backend is BackendType.OPENAI:
        if normalized == "gpt-5.2" or normalized.startswith("gpt-5.2-"):
            return "gpt-5.2"
        if normalized == "gpt-5.1" or normalized.startswith("gpt-5.1-"):
            return "gpt-5.1-2025-11-13"
        return None
    if backend is BackendType.ANTHROPIC:
        for canonical in ("claude-sonnet-4-6", "claude-opus-4-6"):
            if normalized == canonical or normalized.startswith(f"{canonical}-"):
                return canonical
        return _ANTHROPIC_ALIASES.get(normalized)
    if backend is BackendType.XAI and normalized in backend.available_models:
        return normalized
    return None


def resolve_cloud_model(model: str | None, backend: BackendType) -> str:
    """Resolve a configured cloud model to a catalog entry, falling back to the default."""

    normalized = normalize_model_name(model, backend)
    if normalized is not None and normalized in backend.available_models:
        return normalized
    return backend.default_model


def is_reasoning_model(model: str, prefixes: tuple[str, ...] = DEFAULT_REASONING_MODEL_PREFIXES) -> bool:
    """Return whether a model takes discrete effort tiers instead of temperature."""

    lowered = model.strip().lower()
    return any(lowered.startswith(prefix.lower()) for prefix in prefixes)
