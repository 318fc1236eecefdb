"""Secure credential storage for backend API keys.

Responsibilities:
- Persist per-backend API keys in an OS-backed secure credential store.
- Provide deterministic read/write/delete operations for backend credentials.
- Avoid logging or exposing secret values in diagnostics.

Key types:
- `CredentialStore`: interface for backend credential persistence.
- `KeyringCredentialStore`: keyring-backed secure credential storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import keyring
from keyring.backends import fail

from .models.backends import BackendType


_DEFAULT_SERVICE_NAME = "clipboard_refiner"


class CredentialStore:
    """Interface for secure backend credential operations."""

    def is_available(self) -> bool:
        """Return whether secure credential operations are available."""

        raise NotImplementedError

    def get_api_key(self, backend: BackendType) -> str | None:
        """Load the stored API key for a backend, when present."""

        raise NotImplementedError

    def set_api_key(self, backend: BackendType, api_key: str) -> None:
        """Persist an API key for a backend."""

        raise NotImplementedError

    def clear_api_key(self, backend: BackendType) -> bool:
        """Delete a stored API key and return whether one existed."""

        raise NotImplementedError

    def secure_values(self) -> dict[str, str]:
        """Return stored keys for every cloud backend, keyed by account name."""

        values: dict[str, str] = {}
        for backend in BackendType:
            if not backend.uses_api_key:
                continue
            api_key = self.get_api_key(backend)
            if api_key is not None:
                values[backend.api_key_identifier] = api_key
        return values


def _account_name(backend: BackendType) -> str:
    if not backend.uses_api_key:
        raise ValueError(f"{backend.display_name} backend does not use an API key.")
    return backend.api_key_identifier


@dataclass(slots=True)
class KeyringCredentialStore(CredentialStore):
    """Secure credential store backed by the `keyring` package."""

    service_name: str = _DEFAULT_SERVICE_NAME

    def _load_keyring_module(self) -> Any:
        """Return the keyring API module used for storage calls."""

        return keyring

    def is_available(self) -> bool:
        """Return `True` when keyring resolved a usable (non-fail) backend."""

        keyring_module = self._load_keyring_module()
        return not isinstance(keyring_module.get_keyring(), fail.Keyring)

    def get_api_key(self, backend: BackendType) -> str | None:
        """Get a normalized API key from keyring, returning `None` when missing."""

        account_name = _account_name(backend)
        value = self._load_keyring_module().get_password(self.service_name, account_name)
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            return None
        return normalized

    def set_api_key(self, backend: BackendType, api_key: str) -> None:
        """Persist a normalized API key in keyring."""

        account_name = _account_name(backend)
        normalized = api_key.strip()
        if not normalized:
            raise ValueError("API key must be a non-empty string.")
        self._load_keyring_module().set_password(self.service_name, account_name, normalized)

    def clear_api_key(self, backend: BackendType) -> bool:
        """Remove the stored API key from keyring and report if one was present."""

        account_name = _account_name(backend)
        if self.get_api_key(backend) is None:
            return False
        self._load_keyring_module().delete_password(self.service_name, account_name)
        return True


def create_credential_store() -> CredentialStore:
    """Create the default secure credential store implementation."""

    return KeyringCredentialStore()
