"""Unit tests for styles, skills, prompt composition, and request fingerprints."""

from __future__ import annotations

import pytest

from clipboard_refiner.llm.prompts import BEGIN_SOURCE_MARKER, END_SOURCE_MARKER, PromptLibrary
from clipboard_refiner.models.backends import BackendType, is_reasoning_model, normalize_model_name
from clipboard_refiner.models.datatypes import ImageAttachment, RewriteRequest
from clipboard_refiner.models.styles import RewriteStyle, skill_for_id


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("Proofread", RewriteStyle.PROOFREAD),
        ("more formal", RewriteStyle.FORMAL),
        ("LESS_CRINGE", RewriteStyle.LESS_CRINGE),
        ("x.com", RewriteStyle.X_POST),
        ("ai-prompt", RewriteStyle.PROMPT_ENHANCE),
        ("explain", RewriteStyle.EXPLAIN),
        ("unknown", RewriteStyle.PROOFREAD),
        (None, RewriteStyle.PROOFREAD),
    ],
)
def test_style_from_user_data_accepts_names_and_aliases(
    token: str | None, expected: RewriteStyle
) -> None:
    """Loose style tokens should resolve to a style, defaulting to proofreading."""

    assert RewriteStyle.from_user_data(token) is expected


def test_user_selectable_styles_exclude_explain() -> None:
    """Explain is a service-only mode, not a rewrite target."""

    selectable = RewriteStyle.user_selectable()

    assert RewriteStyle.EXPLAIN not in selectable
    assert selectable[0] is RewriteStyle.PROOFREAD


def test_system_prompt_composes_style_skill_images_and_aggressiveness() -> None:
    """The system prompt should layer skill, image, containment, and slider guidance."""

    request = RewriteRequest(
        text="hello",
        style=RewriteStyle.SHORTER,
        aggressiveness=1.4,
        skill=skill_for_id("launch-writer"),
        attachments=(ImageAttachment.from_bytes(b"png"),),
    )

    prompt = PromptLibrary().system_prompt(request)

    assert prompt.startswith("You rewrite text.")
    assert "Style: Shorter" in prompt
    assert "Skill: Launch Writer" in prompt
    assert "Image context:" in prompt
    assert BEGIN_SOURCE_MARKER in prompt
    assert "slider (0.00 to 1.00) = 1.00" in prompt


def test_prompt_overrides_replace_style_prompt_only_when_non_blank() -> None:
    """Blank overrides should be ignored and non-blank ones should win."""

    library = PromptLibrary({"Proofread": "Fix typos only.", "Shorter": "   "})

    assert library.style_prompt(RewriteStyle.PROOFREAD) == "Fix typos only."
    assert library.style_prompt(RewriteStyle.SHORTER) == RewriteStyle.SHORTER.system_prompt


def test_local_prompt_wraps_source_text() -> None:
    """The local worker prompt should carry the wrapped source and an assistant cue."""

    prompt = PromptLibrary().local_prompt(RewriteRequest(text="draft"))

    assert prompt.startswith("System:\n")
    assert f"User:\n{BEGIN_SOURCE_MARKER}\ndraft\n{END_SOURCE_MARKER}" in prompt
    assert prompt.endswith("Assistant:\n")


def test_request_fingerprint_distinguishes_options() -> None:
    """Cache fingerprints should change with style, strength, skill, and images."""

    base = RewriteRequest(text="hi")
    variants = [
        RewriteRequest(text="hi", style=RewriteStyle.CASUAL),
        RewriteRequest(text="hi", aggressiveness=0.51),
        RewriteRequest(text="hi", skill=skill_for_id("private-notes")),
        RewriteRequest(text="hi", attachments=(ImageAttachment.from_bytes(b"a"),)),
    ]

    assert base.cache_key_component() == "Proofread|0.50|none|"
    fingerprints = {base.cache_key_component(), *(v.cache_key_component() for v in variants)}
    assert len(fingerprints) == 5
    assert RewriteRequest(text="hi", streaming=False).cache_key_component() == base.cache_key_component()


def test_temperature_tracks_clamped_aggressiveness() -> None:
    """Temperature should scale from 0.2 to 1.0 across the clamped slider range."""

    assert RewriteRequest(text="x", aggressiveness=-1).temperature == pytest.approx(0.2)
    assert RewriteRequest(text="x", aggressiveness=0.5).temperature == pytest.approx(0.6)
    assert RewriteRequest(text="x", aggressiveness=3).temperature == pytest.approx(1.0)


def test_model_catalog_normalization_and_reasoning_prefixes() -> None:
    """Dated or informal model names should normalize to catalog entries."""

    assert normalize_model_name("gpt-5.2-2025-12-01", BackendType.OPENAI) == "gpt-5.2"
    assert normalize_model_name("claude-sonnet-4-6-20260101", BackendType.ANTHROPIC) == "claude-sonnet-4-6"
    assert normalize_model_name("grok-2", BackendType.XAI) is None
    assert normalize_model_name("  ", BackendType.OPENAI) is None
    assert is_reasoning_model("GPT-5.2") is True
    assert is_reasoning_model("gpt-4.1") is False
    assert is_reasoning_model("o3-mini", ("o3",)) is True
