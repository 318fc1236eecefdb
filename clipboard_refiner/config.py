"""Configuration model and loaders for Clipboard Refiner.

Responsibilities:
- Define user settings as a typed dataclass read synchronously by the engine.
- Resolve per-backend API keys with deterministic source precedence.
- Provide loader entry points for file- and environment-based configuration.

Key types:
- `RefinerSettings`: normalized settings for the rewrite engine.
- `SettingsProvider`: protocol the engine depends on instead of a concrete class.
- `RuntimeConfigSources`: optional value sources for precedence resolution.
- `ConfigLoader`: static construction helpers for `RefinerSettings`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import os
from pathlib import Path
from typing import Any, Mapping, Protocol

import yaml

from .models.backends import (
    DEFAULT_REASONING_MODEL_PREFIXES,
    BackendType,
    ReasoningEffort,
    resolve_cloud_model,
)
from .models.styles import BUNDLED_SKILLS, NONE_SKILL_ID, PromptSkill, RewriteStyle, skill_for_id
from .parsing import (
    normalize_optional_string,
    parse_permissive_boolean,
    parse_unit_interval,
)


_DEFAULT_AGGRESSIVENESS = 0.2
_DEFAULT_REQUEST_TIMEOUT_SECONDS = 120.0
_KNOWN_SKILL_IDS = frozenset({NONE_SKILL_ID, *(skill.id for skill in BUNDLED_SKILLS)})


def default_cache_path() -> Path:
    """Return the default offline cache snapshot location."""

    return Path.home() / ".clipboard_refiner" / "offline_cache.json"


@dataclass(frozen=True, slots=True)
class RuntimeConfigSources:
    """Source mappings used for deterministic runtime value precedence.

    Attributes:
        cli: Values explicitly provided by CLI arguments, keyed by account name.
        secure: Values loaded from secure local credential storage, keyed by account name.
        env: Values loaded from environment variables, keyed by variable name.
    """

    cli: Mapping[str, str] = field(default_factory=dict)
    secure: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)


class SettingsProvider(Protocol):
    """Read-only settings surface consulted by the engine for every request."""

    selected_backend: BackendType
    aggressiveness: float
    streaming_enabled: bool
    keep_local_model_loaded: bool
    offline_cache_enabled: bool
    history_enabled: bool
    openai_reasoning_effort: ReasoningEffort
    reasoning_model_prefixes: tuple[str, ...]
    default_style: RewriteStyle
    system_prompt_overrides: Mapping[str, str]
    cache_path: Path
    request_timeout_seconds: float

    def model_for(self, backend: BackendType) -> str:
        """Return the effective model for a backend."""

    def local_model_path_for(self, model_name: str) -> str | None:
        """Return the configured path for a local model name."""

    def api_key_for(self, backend: BackendType) -> str | None:
        """Return the resolved API key for a backend."""

    @property
    def selected_skill(self) -> PromptSkill | None:
        """Return the selected prompt skill, if any."""


@dataclass(slots=True)
class RefinerSettings:
    """User settings for the rewrite engine.

    Attributes:
        selected_backend: Backend used for new rewrites.
        model_openai: Configured OpenAI model, normalized on read.
        model_anthropic: Configured Anthropic model, normalized on read.
        model_xai: Configured xAI model, normalized on read.
        model_local: Selected local model name; defaults to the first configured path.
        local_model_paths: Local model name to on-disk path.
        aggressiveness: Default rewrite strength in 0..1.
        streaming_enabled: Whether cloud backends stream partial output.
        keep_local_model_loaded: Keep the local worker alive between rewrites.
        offline_cache_enabled: Serve cached output when a backend fails.
        history_enabled: Record completed rewrites in the history sink.
        openai_reasoning_effort: Effort tier sent to OpenAI reasoning models.
        selected_skill_id: Bundled prompt skill id, or `none`.
        default_style: Style used when the caller does not pick one.
        system_prompt_overrides: Style display name to replacement prompt.
        cache_path: Offline cache snapshot file.
        request_timeout_seconds: HTTP timeout for cloud requests.
        reasoning_model_prefixes: Model prefixes that take effort tiers, not temperature.
        runtime_sources: API key sources injected by the CLI or environment.
    """

    selected_backend: BackendType = BackendType.OPENAI
    model_openai: str = BackendType.OPENAI.default_model
    model_anthropic: str = BackendType.ANTHROPIC.default_model
    model_xai: str = BackendType.XAI.default_model
    model_local: str | None = None
    local_model_paths: dict[str, str] = field(default_factory=dict)
    aggressiveness: float = _DEFAULT_AGGRESSIVENESS
    streaming_enabled: bool = False
    keep_local_model_loaded: bool = True
    offline_cache_enabled: bool = True
    history_enabled: bool = True
    openai_reasoning_effort: ReasoningEffort = ReasoningEffort.NONE
    selected_skill_id: str = NONE_SKILL_ID
    default_style: RewriteStyle = RewriteStyle.PROOFREAD
    system_prompt_overrides: dict[str, str] = field(default_factory=dict)
    cache_path: Path = field(default_factory=default_cache_path)
    request_timeout_seconds: float = _DEFAULT_REQUEST_TIMEOUT_SECONDS
    reasoning_model_prefixes: tuple[str, ...] = DEFAULT_REASONING_MODEL_PREFIXES
    runtime_sources: RuntimeConfigSources = field(default_factory=RuntimeConfigSources)

    def validate(self) -> None:
        """Validate settings values before the engine uses them."""

        parse_unit_interval(self.aggressiveness, "aggressiveness")
        if self.request_timeout_seconds <= 0:
            raise ValueError("`request_timeout_seconds` must be a positive number.")
        if self.selected_skill_id not in _KNOWN_SKILL_IDS:
            supported = ", ".join(sorted(_KNOWN_SKILL_IDS))
            raise ValueError(
                f"Unsupported `selected_skill` value `{self.selected_skill_id}`; "
                f"supported: {supported}."
            )
        for name, path in self.local_model_paths.items():
            if normalize_optional_string(name) is None or normalize_optional_string(path) is None:
                raise ValueError("`local_model_paths` entries must have non-empty names and paths.")

    def model_for(self, backend: BackendType) -> str:
        """Return the effective model for a backend.

        Cloud models are normalized against the backend catalog. The local
        model falls back to the first configured local model name.
        """

        if backend is BackendType.OPENAI:
            return resolve_cloud_model(self.model_openai, backend)
        if backend is BackendType.ANTHROPIC:
            return resolve_cloud_model(self.model_anthropic, backend)
        if backend is BackendType.XAI:
            return resolve_cloud_model(self.model_xai, backend)

        selected = normalize_optional_string(self.model_local)
        if selected is not None:
            return selected
        for name in self.local_model_paths:
            return name
        return backend.default_model

    def local_model_path_for(self, model_name: str) -> str | None:
        """Return the configured path for a local model, matching names case-insensitively."""

        wanted = model_name.strip().lower()
        for name, path in self.local_model_paths.items():
            if name.strip().lower() == wanted:
                return normalize_optional_string(path)
        return None

    def api_key_for(self, backend: BackendType) -> str | None:
        """Resolve a backend API key.

        Precedence is `cli` > `secure` > `env`. The local backend has no key.
        """

        if not backend.uses_api_key:
            return None

        sources = self.runtime_sources
        for mapping, key in (
            (sources.cli, backend.api_key_identifier),
            (sources.secure, backend.api_key_identifier),
            (sources.env, backend.api_key_env_var),
        ):
            value = self._normalized_lookup(mapping, key)
            if value is not None:
                return value
        return None

    @property
    def selected_skill(self) -> PromptSkill | None:
        """Return the selected bundled skill, or `None`."""

        return skill_for_id(self.selected_skill_id)

    def with_runtime_sources(self, sources: RuntimeConfigSources) -> RefinerSettings:
        """Return a copy of these settings using different API key sources."""

        return replace(self, runtime_sources=sources)

    @staticmethod
    def _normalized_lookup(mapping: Mapping[str, str], key: str) -> str | None:
        """Return a stripped mapping value for a key or `None` when missing/blank."""

        if not key or key not in mapping:
            return None
        return normalize_optional_string(mapping.get(key))


class ConfigLoader:
    """Factory methods for creating `RefinerSettings` from external sources."""

    _SUPPORTED_YAML_KEYS = frozenset(
        {
            "selected_backend",
            "model_openai",
            "model_anthropic",
            "model_xai",
            "model_local",
            "local_model_paths",
            "aggressiveness",
            "streaming_enabled",
            "keep_local_model_loaded",
            "offline_cache_enabled",
            "history_enabled",
            "openai_reasoning_effort",
            "selected_skill",
            "default_style",
            "system_prompt_overrides",
            "cache_path",
            "request_timeout_seconds",
            "reasoning_model_prefixes",
        }
    )
    _RUNTIME_ENV_KEYS = frozenset(
        backend.api_key_env_var for backend in BackendType if backend.uses_api_key
    )

    @staticmethod
    def from_yaml(path: Path, env: Mapping[str, str] | None = None) -> RefinerSettings:
        """Create validated settings from a YAML file.

        API keys are never read from the file; environment keys still apply.
        """

        path_text = path.read_text(encoding="utf-8")
        payload = ConfigLoader._parse_yaml_payload(path_text, path)
        settings = ConfigLoader._build_settings_from_mapping(payload, source_label=f"YAML `{path}`")
        return settings.with_runtime_sources(
            RuntimeConfigSources(env=ConfigLoader.runtime_env(env))
        )

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> RefinerSettings:
        """Create validated settings from `REFINER_*` environment variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env

        backend_value = ConfigLoader._optional_env_string(env_map, "REFINER_BACKEND")
        effort_value = ConfigLoader._optional_env_string(env_map, "REFINER_REASONING_EFFORT")
        style_value = ConfigLoader._optional_env_string(env_map, "REFINER_STYLE")
        aggressiveness_value = ConfigLoader._optional_env_string(env_map, "REFINER_AGGRESSIVENESS")
        timeout_value = ConfigLoader._optional_env_string(env_map, "REFINER_REQUEST_TIMEOUT")
        cache_path_value = ConfigLoader._optional_env_string(env_map, "REFINER_CACHE_PATH")
        paths_value = ConfigLoader._optional_env_string(env_map, "REFINER_LOCAL_MODEL_PATHS")

        settings = RefinerSettings(
            selected_backend=(
                BackendType.parse(backend_value) if backend_value else BackendType.OPENAI
            ),
            model_openai=(
                ConfigLoader._optional_env_string(env_map, "REFINER_MODEL_OPENAI")
                or BackendType.OPENAI.default_model
            ),
            model_anthropic=(
                ConfigLoader._optional_env_string(env_map, "REFINER_MODEL_ANTHROPIC")
                or BackendType.ANTHROPIC.default_model
            ),
            model_xai=(
                ConfigLoader._optional_env_string(env_map, "REFINER_MODEL_XAI")
                or BackendType.XAI.default_model
            ),
            model_local=ConfigLoader._optional_env_string(env_map, "REFINER_MODEL_LOCAL"),
            local_model_paths=(
                ConfigLoader._parse_env_path_list(paths_value) if paths_value else {}
            ),
            aggressiveness=(
                parse_unit_interval(aggressiveness_value, "REFINER_AGGRESSIVENESS")
                if aggressiveness_value is not None
                else _DEFAULT_AGGRESSIVENESS
            ),
            streaming_enabled=ConfigLoader._env_boolean(env_map, "REFINER_STREAMING", False),
            keep_local_model_loaded=ConfigLoader._env_boolean(
                env_map, "REFINER_KEEP_LOCAL_MODEL_LOADED", True
            ),
            offline_cache_enabled=ConfigLoader._env_boolean(env_map, "REFINER_OFFLINE_CACHE", True),
            history_enabled=ConfigLoader._env_boolean(env_map, "REFINER_HISTORY", True),
            openai_reasoning_effort=(
                ReasoningEffort.parse(effort_value) if effort_value else ReasoningEffort.NONE
            ),
            selected_skill_id=(
                ConfigLoader._optional_env_string(env_map, "REFINER_SKILL") or NONE_SKILL_ID
            ),
            default_style=RewriteStyle.from_user_data(style_value),
            cache_path=Path(cache_path_value) if cache_path_value else default_cache_path(),
            request_timeout_seconds=(
                ConfigLoader._positive_float(timeout_value, "Environment variable `REFINER_REQUEST_TIMEOUT`")
                if timeout_value is not None
                else _DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            runtime_sources=RuntimeConfigSources(env=ConfigLoader.runtime_env(env_map)),
        )
        settings.validate()
        return settings

    @staticmethod
    def runtime_env(env: Mapping[str, str] | None = None) -> dict[str, str]:
        """Return the non-blank API key variables from an environment mapping."""

        env_map: Mapping[str, str] = os.environ if env is None else env
        return {
            key: value
            for key, value in env_map.items()
            if key in ConfigLoader._RUNTIME_ENV_KEYS
            and normalize_optional_string(value) is not None
        }

    @staticmethod
    def _parse_yaml_payload(raw_text: str, path: Path) -> Mapping[str, Any]:
        """Parse YAML text and enforce a mapping root payload."""

        try:
            payload = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            raise ValueError(f"YAML config `{path}` could not be parsed: {exc}") from exc

        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")
        return payload

    @staticmethod
    def _build_settings_from_mapping(
        payload: Mapping[str, Any], source_label: str
    ) -> RefinerSettings:
        """Build validated settings from a normalized mapping payload."""

        ConfigLoader._validate_yaml_keys(payload, source_label)

        backend_value = ConfigLoader._optional_non_empty_string(payload, "selected_backend")
        effort_value = ConfigLoader._optional_non_empty_string(payload, "openai_reasoning_effort")
        cache_path_value = ConfigLoader._optional_non_empty_string(payload, "cache_path")
        try:
            selected_backend = (
                BackendType.parse(backend_value) if backend_value else BackendType.OPENAI
            )
            reasoning_effort = (
                ReasoningEffort.parse(effort_value) if effort_value else ReasoningEffort.NONE
            )
        except ValueError as exc:
            raise ValueError(f"{source_label}: {exc}") from exc

        settings = RefinerSettings(
            selected_backend=selected_backend,
            model_openai=(
                ConfigLoader._optional_non_empty_string(payload, "model_openai")
                or BackendType.OPENAI.default_model
            ),
            model_anthropic=(
                ConfigLoader._optional_non_empty_string(payload, "model_anthropic")
                or BackendType.ANTHROPIC.default_model
            ),
            model_xai=(
                ConfigLoader._optional_non_empty_string(payload, "model_xai")
                or BackendType.XAI.default_model
            ),
            model_local=ConfigLoader._optional_non_empty_string(payload, "model_local"),
            local_model_paths=ConfigLoader._optional_string_map(
                payload, "local_model_paths", source_label
            ),
            aggressiveness=ConfigLoader._optional_unit_float(
                payload, "aggressiveness", source_label, default=_DEFAULT_AGGRESSIVENESS
            ),
            streaming_enabled=ConfigLoader._optional_boolean(
                payload, "streaming_enabled", source_label, default=False
            ),
            keep_local_model_loaded=ConfigLoader._optional_boolean(
                payload, "keep_local_model_loaded", source_label, default=True
            ),
            offline_cache_enabled=ConfigLoader._optional_boolean(
                payload, "offline_cache_enabled", source_label, default=True
            ),
            history_enabled=ConfigLoader._optional_boolean(
                payload, "history_enabled", source_label, default=True
            ),
            openai_reasoning_effort=reasoning_effort,
            selected_skill_id=(
                ConfigLoader._optional_non_empty_string(payload, "selected_skill") or NONE_SKILL_ID
            ),
            default_style=RewriteStyle.from_user_data(
                ConfigLoader._optional_non_empty_string(payload, "default_style")
            ),
            system_prompt_overrides=ConfigLoader._optional_string_map(
                payload, "system_prompt_overrides", source_label
            ),
            cache_path=Path(cache_path_value).expanduser() if cache_path_value else default_cache_path(),
            request_timeout_seconds=(
                ConfigLoader._positive_float(
                    payload["request_timeout_seconds"],
                    f"{source_label} field `request_timeout_seconds`",
                )
                if payload.get("request_timeout_seconds") is not None
                else _DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            reasoning_model_prefixes=ConfigLoader._optional_string_tuple(
                payload,
                "reasoning_model_prefixes",
                source_label,
                default=DEFAULT_REASONING_MODEL_PREFIXES,
            ),
        )
        try:
            settings.validate()
        except ValueError as exc:
            raise ValueError(f"{source_label}: {exc}") from exc
        return settings

    @staticmethod
    def _validate_yaml_keys(payload: Mapping[str, Any], source_label: str) -> None:
        """Reject keys the settings model does not know."""

        unknown = sorted(str(key) for key in set(payload).difference(ConfigLoader._SUPPORTED_YAML_KEYS))
        if unknown:
            key_list = ", ".join(unknown)
            raise ValueError(f"{source_label} includes unsupported key(s): {key_list}.")

    @staticmethod
    def _optional_non_empty_string(payload: Mapping[str, Any], key: str) -> str | None:
        """Read an optional string field and normalize blank values to `None`."""

        if key not in payload:
            return None
        return normalize_optional_string(payload[key])

    @staticmethod
    def _optional_unit_float(
        payload: Mapping[str, Any], key: str, source_label: str, default: float
    ) -> float:
        """Read a float field constrained to 0..1."""

        if payload.get(key) is None:
            return default
        try:
            return parse_unit_interval(payload[key], key)
        except ValueError as exc:
            raise ValueError(f"{source_label} field {exc}") from exc

    @staticmethod
    def _positive_float(raw_value: object, label: str) -> float:
        """Parse a strictly positive float."""

        if isinstance(raw_value, bool):
            raise ValueError(f"{label} must be a positive number.")
        try:
            parsed = float(str(raw_value).strip())
        except ValueError as exc:
            raise ValueError(f"{label} must be a positive number.") from exc
        if parsed <= 0:
            raise ValueError(f"{label} must be a positive number.")
        return parsed

    @staticmethod
    def _optional_boolean(
        payload: Mapping[str, Any], key: str, source_label: str, default: bool
    ) -> bool:
        """Read and validate a boolean field from a payload."""

        if key not in payload:
            return default

        parsed = parse_permissive_boolean(payload[key])
        if parsed is None:
            raise ValueError(
                f"{source_label} field `{key}` must be a boolean value "
                "(`true`/`false`, `1`/`0`, `yes`/`no`)."
            )
        return parsed

    @staticmethod
    def _optional_string_map(
        payload: Mapping[str, Any], key: str, source_label: str
    ) -> dict[str, str]:
        """Read an optional mapping with non-empty string keys and values."""

        raw = payload.get(key)
        if raw is None:
            return {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"{source_label} field `{key}` must be a mapping/object.")

        normalized: dict[str, str] = {}
        for raw_key, raw_value in raw.items():
            key_value = normalize_optional_string(raw_key)
            value_value = normalize_optional_string(raw_value)
            if key_value is None:
                raise ValueError(f"{source_label} field `{key}` contains a blank key.")
            if value_value is None:
                raise ValueError(
                    f"{source_label} field `{key}` contains blank value for `{key_value}`."
                )
            normalized[key_value] = value_value
        return normalized

    @staticmethod
    def _optional_string_tuple(
        payload: Mapping[str, Any],
        key: str,
        source_label: str,
        default: tuple[str, ...],
    ) -> tuple[str, ...]:
        """Read an optional list of non-empty strings."""

        raw = payload.get(key)
        if raw is None:
            return default
        if isinstance(raw, str) or not isinstance(raw, (list, tuple)):
            raise ValueError(f"{source_label} field `{key}` must be a list of strings.")

        values: list[str] = []
        for item in raw:
            value = normalize_optional_string(item)
            if value is None:
                raise ValueError(f"{source_label} field `{key}` contains a blank entry.")
            values.append(value)
        return tuple(values)

    @staticmethod
    def _optional_env_string(env: Mapping[str, str], key: str) -> str | None:
        """Read and normalize optional string environment variable values."""

        if key not in env:
            return None
        return normalize_optional_string(env.get(key))

    @staticmethod
    def _env_boolean(env: Mapping[str, str], key: str, default: bool) -> bool:
        """Read an optional boolean from environment mapping."""

        if key not in env:
            return default
        parsed = parse_permissive_boolean(env.get(key))
        if parsed is None:
            raise ValueError(
                f"Environment variable `{key}` must be a boolean value "
                "(`true`/`false`, `1`/`0`, `yes`/`no`)."
            )
        return parsed

    @staticmethod
    def _parse_env_path_list(raw_value: str) -> dict[str, str]:
        """Parse `name=path` pairs separated by semicolons."""

        paths: dict[str, str] = {}
        for item in raw_value.split(";"):
            if not item.strip():
                continue
            name, separator, path = item.partition("=")
            name_value = normalize_optional_string(name)
            path_value = normalize_optional_string(path)
            if not separator or name_value is None or path_value is None:
                raise ValueError(
                    "Environment variable `REFINER_LOCAL_MODEL_PATHS` must contain "
                    "`name=path` pairs separated by `;`."
                )
            paths[name_value] = path_value
        return paths
