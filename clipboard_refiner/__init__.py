"""Top-level package for Clipboard Refiner.

This package rewrites short text through cloud LLM backends or an on-device
model worker, with cancellation, streamed partials, and an offline cache
fallback. The main orchestration entry point is `RewriteEngine`.
"""

from loguru import logger

from .config import ConfigLoader, RefinerSettings
from .engine import RewriteEngine
from .models import BackendResult, BackendType, RewriteRequest, RewriteStyle

logger.disable("clipboard_refiner")

__all__ = [
    "BackendResult",
    "BackendType",
    "ConfigLoader",
    "RefinerSettings",
    "RewriteEngine",
    "RewriteRequest",
    "RewriteStyle",
    "__version__",
]

__version__ = "0.1.0"
