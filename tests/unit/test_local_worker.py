"""Unit tests for the local worker request loop."""

from __future__ import annotations

import io
import json

import pytest

from clipboard_refiner.local import worker


def _fake_generate(prompt: str, temperature: float, max_tokens: int) -> str:
    return f"  {prompt.upper()} t={temperature} n={max_tokens}  "


def test_handle_request_answers_ping_and_shutdown() -> None:
    """Ping should report ready and shutdown should request exit."""

    assert worker.handle_request({"command": "ping"}, _fake_generate) == (
        {"status": "ok", "message": "ready"},
        False,
    )
    assert worker.handle_request({"command": "shutdown"}, _fake_generate) == (
        {"status": "ok", "message": "bye"},
        True,
    )


def test_handle_request_generates_trimmed_output() -> None:
    """Generate should pass sampling options through and strip the output."""

    reply, should_exit = worker.handle_request(
        {"command": "generate", "prompt": "hi", "temperature": 0.5, "max_tokens": 12},
        _fake_generate,
    )

    assert should_exit is False
    assert reply == {"status": "ok", "output": "HI t=0.5 n=12"}


def test_handle_request_defaults_to_generate_and_validates_fields() -> None:
    """Missing command means generate; bad fields produce error replies."""

    reply, _ = worker.handle_request({"prompt": "x"}, _fake_generate)
    assert reply == {"status": "ok", "output": "X t=0.3 n=2048"}

    empty, _ = worker.handle_request({"command": "generate", "prompt": ""}, _fake_generate)
    assert empty == {"status": "error", "message": "Prompt is empty."}

    bad_temp, _ = worker.handle_request(
        {"command": "generate", "prompt": "x", "temperature": "hot"}, _fake_generate
    )
    assert bad_temp["status"] == "error"
    assert bad_temp["message"].startswith("Invalid temperature")

    unknown, _ = worker.handle_request({"command": "reload"}, _fake_generate)
    assert unknown == {"status": "error", "message": "Unknown command: reload"}


def test_handle_request_reports_generation_failure() -> None:
    """Generator exceptions should become error replies instead of crashing the loop."""

    def _failing(_prompt: str, _temperature: float, _max_tokens: int) -> str:
        raise RuntimeError("metal device lost")

    reply, should_exit = worker.handle_request({"command": "generate", "prompt": "x"}, _failing)

    assert should_exit is False
    assert reply == {"status": "error", "message": "Local generation failed: metal device lost"}


def test_serve_replies_once_per_line_and_stops_at_shutdown() -> None:
    """The loop should skip blanks, report bad JSON, and stop after shutdown."""

    stdin = io.StringIO(
        "\n".join(
            [
                json.dumps({"command": "ping"}),
                "",
                "{not json",
                json.dumps(["list"]),
                json.dumps({"command": "generate", "prompt": "ok"}),
                json.dumps({"command": "shutdown"}),
                json.dumps({"command": "ping"}),
            ]
        )
        + "\n"
    )
    stdout = io.StringIO()

    worker.serve(stdin, stdout, _fake_generate)

    replies = [json.loads(line) for line in stdout.getvalue().splitlines()]
    assert len(replies) == 5
    assert replies[0] == {"status": "ok", "message": "ready"}
    assert replies[1]["status"] == "error"
    assert replies[1]["message"].startswith("Invalid JSON payload")
    assert replies[2] == {"status": "error", "message": "Request must be a JSON object."}
    assert replies[3] == {"status": "ok", "output": "OK t=0.3 n=2048"}
    assert replies[4] == {"status": "ok", "message": "bye"}


def test_main_without_model_path_reports_error(capsys: pytest.CaptureFixture[str]) -> None:
    """Starting without a model path should emit an error reply and exit nonzero."""

    assert worker.main([]) == 1
    assert json.loads(capsys.readouterr().out) == {"status": "error", "message": "Missing model path."}
