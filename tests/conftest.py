"""Shared pytest fixtures for the Clipboard Refiner test suite."""

from __future__ import annotations

from pathlib import Path
import sys
from typing import Callable

import pytest

_SCRIPTED_WORKER = """
import json
import sys
import time

mode = sys.argv[1]
for raw in sys.stdin:
    request = json.loads(raw)
    command = request.get("command")
    if command == "ping":
        if mode == "handshake-error":
            print(json.dumps({"status": "error", "message": "mlx_lm import failed"}), flush=True)
            sys.exit(1)
        print(json.dumps({"status": "ok", "message": "ready"}), flush=True)
    elif command == "shutdown":
        print(json.dumps({"status": "ok", "message": "bye"}), flush=True)
        break
    elif mode == "oom":
        sys.stderr.write("allocating buffers\\nOOM killed\\n")
        sys.stderr.flush()
        sys.exit(137)
    elif mode == "garbage":
        print("this is not json", flush=True)
    elif mode == "slow":
        time.sleep(30)
    elif mode == "fixed":
        print(json.dumps({"status": "ok", "output": "  Local result  "}), flush=True)
    else:
        print(json.dumps({"status": "ok", "output": " out: " + request["prompt"] + " "}), flush=True)
"""

WorkerCommandFactory = Callable[[str], Callable[[str], list[str]]]


@pytest.fixture
def scripted_worker() -> WorkerCommandFactory:
    """Return a builder of supervisor command factories for a scripted worker mode.

    Modes: `echo`, `fixed`, `slow`, `oom`, `garbage`, and `handshake-error`.
    """

    def _factory(mode: str) -> Callable[[str], list[str]]:
        def _command(model_path: str) -> list[str]:
            return [sys.executable, "-u", "-c", _SCRIPTED_WORKER, mode, model_path]

        return _command

    return _factory


@pytest.fixture
def model_path(tmp_path: Path) -> str:
    """Create an on-disk local model directory."""

    path = tmp_path / "model"
    path.mkdir()
    return str(path)
