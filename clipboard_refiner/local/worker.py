"""Local model worker process.

Protocol: line-delimited JSON request/response over stdin/stdout, one reply
per request, in order.

- `{"command": "ping"}` -> `{"status": "ok", "message": "ready"}`
- `{"command": "generate", "prompt": str, "temperature": float, "max_tokens": int}`
  -> `{"status": "ok", "output": str}`
- `{"command": "shutdown"}` -> `{"status": "ok", "message": "bye"}`, then exit.

Failures reply `{"status": "error", "message": str}`. Run as
``python -m clipboard_refiner.local.worker <model_path>``; requires `mlx-lm`.
"""

from __future__ import annotations

import json
import sys
from typing import Any, Callable, TextIO


GenerateFn = Callable[[str, float, int], str]


def _emit(stream: TextIO, payload: dict[str, Any]) -> None:
    stream.write(json.dumps(payload, ensure_ascii=False) + "\n")
    stream.flush()


def _error(message: str) -> dict[str, Any]:
    return {"status": "error", "message": message}


def handle_request(payload: dict[str, Any], generate: GenerateFn) -> tuple[dict[str, Any], bool]:
    """Return the reply for one request and whether the worker should exit."""

    command = payload.get("command", "generate")
    if command == "ping":
        return {"status": "ok", "message": "ready"}, False
    if command == "shutdown":
        return {"status": "ok", "message": "bye"}, True
    if command != "generate":
        return _error(f"Unknown command: {command}"), False

    prompt = payload.get("prompt", "")
    if not isinstance(prompt, str) or not prompt:
        return _error("Prompt is empty."), False
    try:
        temperature = float(payload.get("temperature", 0.3))
    except (TypeError, ValueError) as exc:
        return _error(f"Invalid temperature: {exc}"), False
    try:
        max_tokens = int(payload.get("max_tokens", 2048))
    except (TypeError, ValueError) as exc:
        return _error(f"Invalid max_tokens: {exc}"), False

    try:
        output = generate(prompt, temperature, max_tokens)
    except Exception as exc:
        return _error(f"Local generation failed: {exc}"), False
    return {"status": "ok", "output": (output or "").strip()}, False


def serve(stdin: TextIO, stdout: TextIO, generate: GenerateFn) -> None:
    """Answer requests from `stdin` until shutdown or end of input."""

    for raw in stdin:
        line = raw.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            _emit(stdout, _error(f"Invalid JSON payload: {exc}"))
            continue
        if not isinstance(payload, dict):
            _emit(stdout, _error("Request must be a JSON object."))
            continue
        reply, should_exit = handle_request(payload, generate)
        _emit(stdout, reply)
        if should_exit:
            break


def load_mlx_generator(model_path: str) -> GenerateFn:
    """Load an MLX model and return a prompt-to-text generator."""

    from mlx_lm import generate, load
    from mlx_lm.sample_utils import make_sampler

    model, tokenizer = load(model_path)

    def _generate(prompt: str, temperature: float, max_tokens: int) -> str:
        return generate(
            model,
            tokenizer,
            prompt=prompt,
            max_tokens=max_tokens,
            sampler=make_sampler(temp=temperature),
            verbose=False,
        )

    return _generate


def main(argv: list[str] | None = None) -> int:
    """Load the model named on the command line and serve stdin."""

    args = sys.argv[1:] if argv is None else argv
    if not args:
        _emit(sys.stdout, _error("Missing model path."))
        return 1

    try:
        generator = load_mlx_generator(args[0])
    except ImportError as exc:
        _emit(sys.stdout, _error(f"mlx_lm import failed: {exc}"))
        return 1
    except Exception as exc:
        _emit(sys.stdout, _error(f"Local model load failed: {exc}"))
        return 1

    serve(sys.stdin, sys.stdout, generator)
    return 0


if __name__ == "__main__":
    sys.exit(main())
