"""Rewrite orchestration: request lifecycle, coalescing, and cache fallback."""

from .coalescer import PartialCoalescer
from .orchestrator import RewriteEngine

__all__ = ["PartialCoalescer", "RewriteEngine"]
