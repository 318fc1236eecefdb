"""Integration-test fixtures for deterministic CLI behavior."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

from loguru import logger
import pytest

from clipboard_refiner.credentials import CredentialStore
from clipboard_refiner.models.backends import BackendType

_ENVIRONMENT_KEYS = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "XAI_API_KEY",
    "REFINER_BACKEND",
    "REFINER_MODEL_OPENAI",
    "REFINER_MODEL_ANTHROPIC",
    "REFINER_MODEL_XAI",
    "REFINER_MODEL_LOCAL",
    "REFINER_LOCAL_MODEL_PATHS",
    "REFINER_AGGRESSIVENESS",
    "REFINER_STREAMING",
    "REFINER_KEEP_LOCAL_MODEL_LOADED",
    "REFINER_OFFLINE_CACHE",
    "REFINER_HISTORY",
    "REFINER_REASONING_EFFORT",
    "REFINER_SKILL",
    "REFINER_STYLE",
    "REFINER_CACHE_PATH",
    "REFINER_REQUEST_TIMEOUT",
)


class InMemoryCredentialStore(CredentialStore):
    """Simple in-memory credential store used for CLI tests."""

    def __init__(self, available: bool = True) -> None:
        """Initialize an empty store with a fixed availability flag."""

        self.available = available
        self.keys: dict[BackendType, str] = {}

    def is_available(self) -> bool:
        """Return availability flag expected by the CLI commands."""

        return self.available

    def get_api_key(self, backend: BackendType) -> str | None:
        """Return the stored key for a backend."""

        return self.keys.get(backend)

    def set_api_key(self, backend: BackendType, api_key: str) -> None:
        """Persist a normalized API key value."""

        self.keys[backend] = api_key.strip()

    def clear_api_key(self, backend: BackendType) -> bool:
        """Clear a key and return whether one existed."""

        return self.keys.pop(backend, None) is not None


@pytest.fixture
def credential_store(monkeypatch: pytest.MonkeyPatch) -> InMemoryCredentialStore:
    """Route every CLI credential lookup to one in-memory store."""

    store = InMemoryCredentialStore()
    monkeypatch.setattr("clipboard_refiner.cli.create_credential_store", lambda: store)
    return store


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    """Return the offline cache location used by the CLI in this test."""

    return tmp_path / "cache" / "offline_cache.json"


@pytest.fixture(autouse=True)
def _isolated_environment(
    monkeypatch: pytest.MonkeyPatch,
    cache_path: Path,
    credential_store: InMemoryCredentialStore,
) -> Iterator[None]:
    """Clear backend keys and settings variables, and point the cache at `tmp_path`."""

    _ = credential_store
    for key in _ENVIRONMENT_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("REFINER_CACHE_PATH", str(cache_path))
    yield
    logger.remove()
    logger.disable("clipboard_refiner")
