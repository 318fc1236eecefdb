"""Integration tests for the `rewrite`, `styles`, and `cache` CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterator

import pytest
from typer.testing import CliRunner

from clipboard_refiner.cli import app
from clipboard_refiner.credentials import CredentialStore
from clipboard_refiner.llm.cache import OfflineCacheStore
from clipboard_refiner.models.backends import BackendType
from clipboard_refiner.models.datatypes import RewriteRequest

_POST_TARGET = "clipboard_refiner.llm.http_client.requests.post"


class _MockRequestsResponse:
    """Minimal requests response mock for CLI rewrite flows."""

    def __init__(self, *, payload: bytes = b"", status_code: int = 200, lines: list[str] | None = None) -> None:
        """Initialize body, status, and optional streamed lines."""

        self.content = payload
        self.status_code = status_code
        self._lines = lines or []

    def iter_lines(self) -> Iterator[bytes]:
        """Yield streamed lines as bytes."""

        for line in self._lines:
            yield line.encode("utf-8")

    def close(self) -> None:
        """No-op close for compatibility with response handling."""


def _patch_post(monkeypatch: pytest.MonkeyPatch, response: _MockRequestsResponse) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def _mock_post(url: str, **kwargs: Any) -> _MockRequestsResponse:
        """Record the request and return the canned response."""

        calls.append({"url": url, **kwargs})
        return response

    monkeypatch.setattr(_POST_TARGET, _mock_post)
    return calls


def test_rewrite_prints_result_and_persists_offline_cache(
    monkeypatch: pytest.MonkeyPatch,
    cache_path: Path,
) -> None:
    """A successful rewrite should print the text and write the cache snapshot."""

    calls = _patch_post(
        monkeypatch,
        _MockRequestsResponse(payload=json.dumps({"output_text": "Hello"}).encode("utf-8")),
    )
    runner = CliRunner()

    result = runner.invoke(
        app,
        ["rewrite", "hi there", "--style", "proofread", "--api-key", "sk-cli-key", "--no-stream"],
    )

    assert result.exit_code == 0, result.output
    assert result.output.splitlines()[0] == "Hello"
    assert calls[0]["headers"]["Authorization"] == "Bearer sk-cli-key"
    assert calls[0]["json"]["stream"] is False

    records = json.loads(cache_path.read_text(encoding="utf-8"))
    assert [record["value"] for record in records] == ["Hello"]


def test_rewrite_streams_cumulative_snapshots_from_xai(monkeypatch: pytest.MonkeyPatch) -> None:
    """Streaming output should print growing snapshots as one line."""

    monkeypatch.setenv("XAI_API_KEY", "xai-env-key")
    events = ["H", "He", "Hello"]
    lines: list[str] = []
    for text in events:
        lines.append("data: " + json.dumps({"choices": [{"delta": {"content": text}}]}))
        lines.append("")
    lines.extend(["data: [DONE]", ""])
    calls = _patch_post(monkeypatch, _MockRequestsResponse(lines=lines))
    runner = CliRunner()

    result = runner.invoke(app, ["rewrite", "hi", "--backend", "xai", "--stream"])

    assert result.exit_code == 0, result.output
    assert "Hello" in result.output.splitlines()
    assert calls[0]["headers"]["Authorization"] == "Bearer xai-env-key"
    assert calls[0]["stream"] is True


def test_rewrite_uses_stored_key_for_selected_backend(
    monkeypatch: pytest.MonkeyPatch,
    credential_store: CredentialStore,
) -> None:
    """Keys stored in secure storage should be used when no CLI key is given."""

    credential_store.set_api_key(BackendType.ANTHROPIC, "ant-stored")
    payload = {"content": [{"type": "text", "text": "Formal text."}]}
    calls = _patch_post(
        monkeypatch, _MockRequestsResponse(payload=json.dumps(payload).encode("utf-8"))
    )
    runner = CliRunner()

    result = runner.invoke(
        app, ["rewrite", "yo", "--backend", "anthropic", "--style", "formal", "--no-stream"]
    )

    assert result.exit_code == 0, result.output
    assert "Formal text." in result.output
    assert calls[0]["headers"]["x-api-key"] == "ant-stored"
    assert "Style: More Formal" in calls[0]["json"]["system"]


def test_rewrite_without_key_fails_with_diagnostic() -> None:
    """Missing credentials should exit non-zero with the invalid key message."""

    runner = CliRunner()

    result = runner.invoke(app, ["rewrite", "hi"])

    assert result.exit_code == 1
    assert "rewrite failed: Invalid or missing API key. Please check your settings." in result.output


def test_rewrite_falls_back_to_offline_cache_on_server_error(
    monkeypatch: pytest.MonkeyPatch,
    cache_path: Path,
) -> None:
    """A backend failure should be answered from the offline cache when it has the key."""

    cache = OfflineCacheStore(cache_path)
    request = RewriteRequest(text="hi there", aggressiveness=0.2, streaming=False)
    cache.store(
        OfflineCacheStore.key_for_request(
            backend="OpenAI", model=BackendType.OPENAI.default_model, request=request
        ),
        "Cached Hello",
    )
    cache.flush()
    _patch_post(monkeypatch, _MockRequestsResponse(payload=b"{}", status_code=503))
    runner = CliRunner()

    result = runner.invoke(app, ["rewrite", "hi there", "--api-key", "sk-key", "--no-stream"])

    assert result.exit_code == 0, result.output
    assert "Cached Hello" in result.output
    assert "(served from offline cache)" in result.output


def test_rewrite_reports_server_error_without_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without a cached value, the mapped server error should be printed."""

    body = json.dumps({"error": {"message": "model overloaded"}}).encode("utf-8")
    _patch_post(monkeypatch, _MockRequestsResponse(payload=body, status_code=500))
    runner = CliRunner()

    result = runner.invoke(app, ["rewrite", "hi", "--api-key", "sk-key", "--no-stream"])

    assert result.exit_code == 1
    assert "rewrite failed: Server error (500): model overloaded" in result.output


def test_rewrite_reads_source_from_file_and_rejects_empty_input(tmp_path: Path) -> None:
    """Blank sources should fail at the input stage before any request is made."""

    source = tmp_path / "blank.txt"
    source.write_text("   \n", encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(app, ["rewrite", "--file", str(source), "--api-key", "sk-key"])

    assert result.exit_code == 1
    assert "rewrite failed at stage `input`: No text to rewrite." in result.output


def test_rewrite_rejects_invalid_arguments() -> None:
    """Unknown backends and out-of-range strengths should fail at the arguments stage."""

    runner = CliRunner()

    bad_backend = runner.invoke(app, ["rewrite", "hi", "--backend", "gemini"])
    bad_strength = runner.invoke(app, ["rewrite", "hi", "--aggressiveness", "2"])

    assert bad_backend.exit_code == 1
    assert "rewrite failed at stage `arguments`" in bad_backend.output
    assert "Hint: Use one of `openai`, `anthropic`, `xai`, `local`." in bad_backend.output
    assert bad_strength.exit_code == 1
    assert "must be a number between 0 and 1" in bad_strength.output


def test_rewrite_reports_invalid_config_file(tmp_path: Path) -> None:
    """Config validation errors should be reported at the config stage."""

    config_path = tmp_path / "refiner.yml"
    config_path.write_text("api_key: sk-should-not-be-here\n", encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(app, ["rewrite", "hi", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "rewrite failed at stage `config`" in result.output
    assert "unsupported key(s): api_key" in result.output


def test_local_backend_without_model_path_reports_setup_hint() -> None:
    """Selecting the local backend without a model path should explain the fix."""

    runner = CliRunner()

    result = runner.invoke(app, ["rewrite", "hi", "--backend", "local"])

    assert result.exit_code == 1
    assert "Add a local model path for this model in Provider settings." in result.output


def test_styles_command_lists_styles_and_skills() -> None:
    """The styles command should list every style and bundled skill."""

    runner = CliRunner()

    result = runner.invoke(app, ["styles"])

    assert result.exit_code == 0, result.output
    assert "Styles:" in result.output
    assert "  less_cringe: Less cringe" in result.output
    assert "  thread-crafter: Thread Crafter" in result.output


def test_cache_clear_removes_snapshot(cache_path: Path) -> None:
    """`cache clear` should delete the configured snapshot file."""

    cache = OfflineCacheStore(cache_path)
    cache.store("key", "value")
    cache.flush()
    assert cache_path.exists()
    runner = CliRunner()

    result = runner.invoke(app, ["cache", "clear"])

    assert result.exit_code == 0, result.output
    assert f"Offline cache cleared: {cache_path}" in result.output
    assert not cache_path.exists()
