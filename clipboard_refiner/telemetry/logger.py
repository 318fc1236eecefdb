"""Structured engine logging utilities.

Responsibilities:
- Emit concise, deterministic component-level runtime logs through `loguru`.
- Keep secrets and text payloads out of log lines.

Library code never reconfigures sinks; the package is disabled in loguru on
import and the CLI enables it through `configure_cli_logging`.
"""

from __future__ import annotations

import sys
from typing import TextIO

from loguru import logger as _loguru_logger


_PACKAGE_NAME = "clipboard_refiner"


def _sanitize_context_value(value: object) -> str:
    """Convert context values into stable, shell-safe tokens."""

    raw = str(value).strip()
    if not raw:
        return "none"
    return "".join(
        character if character.isalnum() or character in {"-", "_", ".", ":", "/"} else "_"
        for character in raw
    )


def _format_context(context: dict[str, object]) -> str:
    """Serialize context key/value pairs in deterministic key order."""

    if not context:
        return ""
    tokens = [
        f"{key}={_sanitize_context_value(context[key])}"
        for key in sorted(context.keys())
        if context[key] is not None
    ]
    if not tokens:
        return ""
    return " " + " ".join(tokens)


def configure_cli_logging(sink: TextIO | None = None, level: str = "INFO") -> None:
    """Route package log lines to a plain-text sink for CLI runs."""

    _loguru_logger.remove()
    _loguru_logger.add(sink or sys.stderr, format="{message}", level=level, colorize=False)
    _loguru_logger.enable(_PACKAGE_NAME)


class EngineLogger:
    """Emit deterministic event lines for one engine component."""

    def __init__(self, component: str) -> None:
        self.component = component

    def _emit(self, level: str, event: str, **context: object) -> None:
        """Emit one structured runtime log line."""

        line = f"[engine] level={level} component={self.component} event={event}{_format_context(context)}"
        _loguru_logger.log(level, line)

    def debug(self, event: str, **context: object) -> None:
        self._emit("DEBUG", event, **context)

    def info(self, event: str, **context: object) -> None:
        self._emit("INFO", event, **context)

    def warning(self, event: str, **context: object) -> None:
        self._emit("WARNING", event, **context)

    def error(self, event: str, **context: object) -> None:
        """Emit a failure event; pass error kinds, never raw payloads."""

        self._emit("ERROR", event, **context)
