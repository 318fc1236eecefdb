"""Supervisor for the out-of-process local model worker.

Responsibilities:
- Own at most one child worker process bound to one model path.
- Exchange newline-delimited JSON with the worker, one request at a time.
- Turn crashes, malformed output, and exits into `local_model_unavailable` errors
  carrying the most specific diagnostic available.
- Guard every asynchronous handler with a generation counter so output from a
  replaced or terminated process is never attributed to the current one.

Key types:
- `WorkerState`: session lifecycle states.
- `LocalWorkerSupervisor`: process lifecycle and request/response matching.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
import json
from pathlib import Path
import subprocess
import sys
import threading
from typing import IO, Any, Callable

from ..errors import RewriteError
from ..telemetry.logger import EngineLogger


WORKER_MODULE = "clipboard_refiner.local.worker"

CommandFactory = Callable[[str], list[str]]


def default_worker_command(model_path: str) -> list[str]:
    """Return the command that runs the bundled worker for a model path."""

    return [sys.executable, "-u", "-m", WORKER_MODULE, model_path]


def validate_model_path(model_path: str | None) -> str:
    """Return a trimmed, existing model path.

    Raises:
        RewriteError: If the path is empty or does not exist.
    """

    trimmed = (model_path or "").strip()
    if not trimmed:
        raise RewriteError.local_unavailable("Model path is empty.")
    if not Path(trimmed).exists():
        raise RewriteError.local_unavailable(f"Model path does not exist: {trimmed}")
    return trimmed


class WorkerState(str, Enum):
    """Lifecycle states of the worker session."""

    STOPPED = "stopped"
    STARTING = "starting"
    READY = "ready"
    BUSY = "busy"
    FAULTED = "faulted"


@dataclass(slots=True)
class _PendingCall:
    """The single outstanding request, resolved exactly once."""

    call_id: str | None
    generation: int
    done: threading.Event = field(default_factory=threading.Event)
    response: dict[str, Any] | None = None
    error: RewriteError | None = None

    def resolve(self, *, response: dict[str, Any] | None = None, error: RewriteError | None = None) -> None:
        if self.done.is_set():
            return
        self.response = response
        self.error = error
        self.done.set()


class LocalWorkerSupervisor:
    """Start, talk to, and stop the local model worker process."""

    STDERR_TAIL_LINES = 20

    def __init__(
        self,
        *,
        command_factory: CommandFactory | None = None,
        terminate_timeout_seconds: float = 2.0,
        shutdown_grace_seconds: float = 0.5,
    ) -> None:
        """Initialize the worker command and termination timeouts."""

        self._command_factory = command_factory or default_worker_command
        self._terminate_timeout_seconds = terminate_timeout_seconds
        self._shutdown_grace_seconds = shutdown_grace_seconds
        self._logger = EngineLogger("local_worker")

        self._lock = threading.Lock()
        self._lifecycle_lock = threading.RLock()
        self._state = WorkerState.STOPPED
        self._process: subprocess.Popen[str] | None = None
        self._stdin: IO[str] | None = None
        self._model_path: str | None = None
        self._generation = 0
        self._pending: _PendingCall | None = None
        self._stderr_tail: deque[str] = deque(maxlen=self.STDERR_TAIL_LINES)
        self._last_protocol_error: str | None = None

    @property
    def state(self) -> WorkerState:
        with self._lock:
            return self._state

    @property
    def model_path(self) -> str | None:
        """Return the model path bound to the running session, if any."""

        with self._lock:
            return self._model_path if self._process is not None else None

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def is_loaded(self) -> bool:
        with self._lock:
            return self._process is not None and self._state in {WorkerState.READY, WorkerState.BUSY}

    def ensure(self, model_path: str) -> None:
        """Make sure a handshaken worker is running for `model_path`.

        Raises:
            RewriteError: If the worker cannot be started or fails its handshake.
        """

        with self._lifecycle_lock:
            with self._lock:
                if (
                    self._process is not None
                    and self._model_path == model_path
                    and self._state in {WorkerState.READY, WorkerState.BUSY}
                ):
                    return

            self._terminate_session()
            self._spawn(model_path)
            try:
                response = self._exchange({"command": "ping"}, call_id=None, handshake=True)
            except RewriteError:
                self._terminate_session(faulted=True)
                raise

            if response.get("status") != "ok":
                message = response.get("message")
                if not isinstance(message, str) or not message.strip():
                    message = self._fallback_message("Failed to initialize local model worker.")
                self._terminate_session(faulted=True)
                raise RewriteError.local_unavailable(message)

            with self._lock:
                self._state = WorkerState.READY
            self._logger.info("ready", generation=self.generation)

    def call(
        self,
        payload: dict[str, Any],
        *,
        call_id: str | None = None,
        is_cancelled: Callable[[], bool] | None = None,
    ) -> dict[str, Any]:
        """Send one request to a ready worker and wait for its single reply.

        `is_cancelled` is checked atomically with registering the call, so a
        caller cancelled before registration never reaches the worker.

        Raises:
            RewriteError: If the worker is busy, not running, exits, or replies
                with malformed output, or the caller was already cancelled.
        """

        return self._exchange(payload, call_id=call_id, handshake=False, is_cancelled=is_cancelled)

    def generate(
        self,
        *,
        prompt: str,
        model_path: str,
        temperature: float,
        max_tokens: int,
        call_id: str | None = None,
        is_cancelled: Callable[[], bool] | None = None,
    ) -> str:
        """Ensure the worker for `model_path` and return its generated output.

        Raises:
            RewriteError: If loading or generation fails.
        """

        self.ensure(model_path)
        response = self.call(
            {
                "command": "generate",
                "prompt": prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            call_id=call_id,
            is_cancelled=is_cancelled,
        )
        if response.get("status") != "ok":
            message = response.get("message")
            if not isinstance(message, str) or not message.strip():
                message = self._fallback_message("Local generation failed.")
            raise RewriteError.local_unavailable(message)
        output = response.get("output")
        return output if isinstance(output, str) else ""

    def cancel(self, call_id: str) -> bool:
        """Cancel the outstanding call when it matches `call_id`.

        The worker protocol has no per-request cancel message, so the process
        is terminated and the next request performs a cold start.
        """

        with self._lock:
            pending = self._pending
            if pending is None or pending.call_id != call_id:
                return False
        self._logger.info("cancel", generation=pending.generation)
        self._terminate_session()
        return True

    def terminate(self) -> None:
        """Stop the worker now, failing any outstanding call or handshake as cancelled."""

        self._terminate_session()

    def unload(self) -> None:
        """Ask the worker to shut down, then terminate it and clear the session."""

        with self._lifecycle_lock:
            with self._lock:
                stdin = self._stdin if self._process is not None else None
                process = self._process
            if stdin is not None and process is not None:
                try:
                    self._write_line(stdin, {"command": "shutdown"})
                    process.wait(timeout=self._shutdown_grace_seconds)
                except (OSError, ValueError, subprocess.TimeoutExpired) as exc:
                    self._logger.debug("shutdown_not_acknowledged", error_type=type(exc).__name__)
            self._terminate_session()

    def _spawn(self, model_path: str) -> None:
        """Start a new worker process and its reader/exit-watcher threads."""

        command = self._command_factory(model_path)
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._stderr_tail.clear()
            self._last_protocol_error = None
            self._state = WorkerState.STARTING
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            with self._lock:
                self._state = WorkerState.FAULTED
            raise RewriteError.local_unavailable(f"Failed to start local model worker: {exc}") from exc

        with self._lock:
            self._process = process
            self._stdin = process.stdin
            self._model_path = model_path
        self._logger.info("spawn", generation=generation, pid=process.pid)

        readers = [
            threading.Thread(
                target=self._read_stdout,
                args=(process.stdout, generation),
                name=f"local-worker-stdout-{generation}",
                daemon=True,
            ),
            threading.Thread(
                target=self._read_stderr,
                args=(process.stderr, generation),
                name=f"local-worker-stderr-{generation}",
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()
        threading.Thread(
            target=self._watch_exit,
            args=(process, generation, readers),
            name=f"local-worker-exit-{generation}",
            daemon=True,
        ).start()

    def _exchange(
        self,
        payload: dict[str, Any],
        *,
        call_id: str | None,
        handshake: bool,
        is_cancelled: Callable[[], bool] | None = None,
    ) -> dict[str, Any]:
        """Register the single pending call, write the request, and await the reply."""

        with self._lock:
            if is_cancelled is not None and is_cancelled():
                raise RewriteError.cancelled()
            if self._pending is not None:
                raise RewriteError.local_unavailable("Local model worker is busy.")
            expected = WorkerState.STARTING if handshake else WorkerState.READY
            if self._process is None or self._stdin is None or self._state is not expected:
                raise RewriteError.local_unavailable(
                    self._fallback_message("Local model worker is not running.")
                )
            pending = _PendingCall(call_id=call_id, generation=self._generation)
            self._pending = pending
            if not handshake:
                self._state = WorkerState.BUSY
            stdin = self._stdin

        try:
            self._write_line(stdin, payload)
        except (OSError, ValueError) as exc:
            with self._lock:
                if self._pending is pending:
                    self._pending = None
                    if self._state is WorkerState.BUSY:
                        self._state = WorkerState.READY
            pending.resolve(
                error=RewriteError.local_unavailable(
                    self._fallback_message(f"Failed to send request to local model worker: {exc}")
                )
            )

        pending.done.wait()
        if pending.error is not None:
            raise pending.error
        return pending.response or {}

    @staticmethod
    def _write_line(stdin: IO[str], payload: dict[str, Any]) -> None:
        stdin.write(json.dumps(payload, ensure_ascii=False) + "\n")
        stdin.flush()

    def _resolve_pending_locked(
        self,
        *,
        response: dict[str, Any] | None = None,
        error: RewriteError | None = None,
    ) -> None:
        """Resolve and clear the pending call; caller holds `_lock`."""

        pending = self._pending
        if pending is None:
            return
        self._pending = None
        if self._state is WorkerState.BUSY:
            self._state = WorkerState.READY
        pending.resolve(response=response, error=error)

    def _read_stdout(self, stream: IO[str], generation: int) -> None:
        with stream:
            for raw_line in stream:
                self._handle_stdout_line(raw_line.rstrip("\r\n"), generation)

    def _read_stderr(self, stream: IO[str], generation: int) -> None:
        with stream:
            for raw_line in stream:
                line = raw_line.rstrip("\r\n")
                if not line:
                    continue
                with self._lock:
                    if generation != self._generation:
                        return
                    self._stderr_tail.append(line)

    def _handle_stdout_line(self, line: str, generation: int) -> None:
        """Match one stdout line to the pending call or keep it as a diagnostic."""

        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            payload = None
        if not isinstance(payload, dict):
            payload = None

        with self._lock:
            if generation != self._generation:
                return
            if payload is None:
                if self._pending is not None:
                    self._resolve_pending_locked(
                        error=RewriteError.local_unavailable("Invalid response from local model worker.")
                    )
                elif line.strip():
                    self._last_protocol_error = line.strip()
                return
            if self._pending is not None:
                self._resolve_pending_locked(response=payload)
                return
            message = payload.get("message")
            if payload.get("status") == "error" and isinstance(message, str) and message:
                self._last_protocol_error = message

    def _watch_exit(
        self,
        process: subprocess.Popen[str],
        generation: int,
        readers: list[threading.Thread],
    ) -> None:
        """Resolve the pending call when the current worker exits on its own."""

        status = process.wait()
        for reader in readers:
            reader.join(timeout=1.0)

        with self._lock:
            if generation != self._generation:
                return
            if self._pending is not None:
                default = (
                    "Local model worker exited unexpectedly."
                    if status == 0
                    else f"Local model worker exited with status {status}."
                )
                self._resolve_pending_locked(
                    error=RewriteError.local_unavailable(self._fallback_message(default))
                )
            self._clear_session_locked(faulted=True)
        self._logger.warning("exit", generation=generation, status=status)

    def _terminate_session(self, *, faulted: bool = False) -> None:
        """Invalidate the current generation and stop its process."""

        with self._lock:
            process = self._process
            stdin = self._stdin
            self._generation += 1
            self._resolve_pending_locked(error=RewriteError.cancelled())
            self._clear_session_locked(faulted=faulted)

        if process is None:
            return
        if stdin is not None:
            try:
                stdin.close()
            except OSError as exc:
                self._logger.debug("stdin_close_failed", error_type=type(exc).__name__)
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=self._terminate_timeout_seconds)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
        self._logger.info("terminate", pid=process.pid)

    def _clear_session_locked(self, *, faulted: bool) -> None:
        self._process = None
        self._stdin = None
        self._model_path = None
        self._state = WorkerState.FAULTED if faulted else WorkerState.STOPPED

    def _fallback_message(self, default: str) -> str:
        """Prefer an explicit worker error, then the last stderr line, then `default`."""

        if self._last_protocol_error:
            return self._last_protocol_error
        if self._stderr_tail:
            return self._stderr_tail[-1]
        return default
