"""Shared typed data models for the rewrite engine.

This package contains enums and dataclasses used across engine modules to
avoid cross-module coupling and circular imports.
"""

from .backends import BackendType, ReasoningEffort
from .datatypes import (
    BackendResult,
    CacheEntry,
    HistoryEntry,
    ImageAttachment,
    RequestIdentity,
    RewriteRequest,
)
from .styles import BUNDLED_SKILLS, NONE_SKILL_ID, PromptSkill, RewriteStyle, skill_for_id

__all__ = [
    "BUNDLED_SKILLS",
    "BackendResult",
    "BackendType",
    "CacheEntry",
    "HistoryEntry",
    "ImageAttachment",
    "NONE_SKILL_ID",
    "PromptSkill",
    "ReasoningEffort",
    "RequestIdentity",
    "RewriteRequest",
    "RewriteStyle",
    "skill_for_id",
]
