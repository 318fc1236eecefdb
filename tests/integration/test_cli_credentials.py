"""Integration tests for the `credentials` CLI commands."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from clipboard_refiner.cli import app
from clipboard_refiner.credentials import CredentialStore
from clipboard_refiner.models.backends import BackendType


def test_credentials_set_prompts_with_hidden_input_and_stores_key(
    credential_store: CredentialStore,
) -> None:
    """`credentials set` should store the prompted key without echoing it."""

    runner = CliRunner()

    result = runner.invoke(
        app, ["credentials", "set", "--backend", "openai"], input="  sk-typed-key  \n"
    )

    assert result.exit_code == 0, result.output
    assert "OpenAI API key stored in secure credential storage." in result.output
    assert "sk-typed-key" not in result.output
    assert credential_store.get_api_key(BackendType.OPENAI) == "sk-typed-key"


def test_credentials_set_rejects_blank_input(credential_store: CredentialStore) -> None:
    """An empty prompt answer should fail without touching the store."""

    runner = CliRunner()

    result = runner.invoke(app, ["credentials", "set", "--backend", "xai"], input="\n")

    assert result.exit_code == 1
    assert "credentials failed at stage `credentials`: No API key entered." in result.output
    assert credential_store.get_api_key(BackendType.XAI) is None


def test_credentials_set_rejects_local_backend() -> None:
    """The local backend has no API key to store."""

    runner = CliRunner()

    result = runner.invoke(app, ["credentials", "set", "--backend", "local"])

    assert result.exit_code == 1
    assert "Local backend does not use an API key." in result.output


def test_credentials_status_reports_each_cloud_backend(
    credential_store: CredentialStore,
) -> None:
    """`credentials status` should list storage availability and per-backend presence."""

    credential_store.set_api_key(BackendType.ANTHROPIC, "ant-key")
    runner = CliRunner()

    result = runner.invoke(app, ["credentials", "status"])

    assert result.exit_code == 0, result.output
    assert "Secure credential storage: available" in result.output
    assert "Stored OpenAI API key: not set" in result.output
    assert "Stored Anthropic API key: present" in result.output
    assert "Stored xAI API key: not set" in result.output
    assert "ant-key" not in result.output


def test_credentials_status_when_storage_is_unavailable(
    monkeypatch: pytest.MonkeyPatch,
    credential_store: CredentialStore,
) -> None:
    """Unavailable storage should report every key as not set."""

    credential_store.set_api_key(BackendType.OPENAI, "sk-key")
    monkeypatch.setattr(credential_store, "available", False)
    runner = CliRunner()

    result = runner.invoke(app, ["credentials", "status"])

    assert result.exit_code == 0, result.output
    assert "Secure credential storage: unavailable" in result.output
    assert "Stored OpenAI API key: not set" in result.output


def test_credentials_clear_reports_removed_and_missing_keys(
    credential_store: CredentialStore,
) -> None:
    """`credentials clear` should say whether a stored key was removed."""

    credential_store.set_api_key(BackendType.XAI, "xai-key")
    runner = CliRunner()

    first = runner.invoke(app, ["credentials", "clear", "--backend", "xai"])
    second = runner.invoke(app, ["credentials", "clear", "--backend", "xai"])

    assert first.exit_code == 0, first.output
    assert "Stored xAI API key cleared from secure credential storage." in first.output
    assert second.exit_code == 0, second.output
    assert "No stored xAI API key found in secure credential storage." in second.output
    assert credential_store.get_api_key(BackendType.XAI) is None


def test_credentials_clear_rejects_unknown_backend() -> None:
    """Unknown backend names should fail at the arguments stage."""

    runner = CliRunner()

    result = runner.invoke(app, ["credentials", "clear", "--backend", "gemini"])

    assert result.exit_code == 1
    assert "credentials failed at stage `arguments`" in result.output
