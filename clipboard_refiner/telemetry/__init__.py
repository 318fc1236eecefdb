"""Telemetry helpers.

This package emits deterministic engine events through loguru.
"""

from .logger import EngineLogger, configure_cli_logging

__all__ = ["EngineLogger", "configure_cli_logging"]
