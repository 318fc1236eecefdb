"""Unit tests for shared settings parsing helpers."""

import pytest

from clipboard_refiner.parsing import (
    clamp_unit,
    normalize_optional_string,
    parse_permissive_boolean,
    parse_unit_interval,
)


def test_normalize_optional_string_handles_blank_values() -> None:
    """Normalization should return `None` for `None` and blank textual values."""

    assert normalize_optional_string(None) is None
    assert normalize_optional_string("") is None
    assert normalize_optional_string("   ") is None


def test_normalize_optional_string_strips_non_blank_values() -> None:
    """Normalization should return stripped content for non-empty values."""

    assert normalize_optional_string("  value  ") == "value"
    assert normalize_optional_string(42) == "42"


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("TrUe", True),
        ("  ON ", True),
        ("YeS", True),
        ("FALSE", False),
        (" oFf ", False),
        ("nO", False),
    ],
)
def test_parse_permissive_boolean_accepts_mixed_case_tokens(
    token: str, expected: bool
) -> None:
    """Permissive parsing should accept valid tokens case-insensitively."""

    assert parse_permissive_boolean(token) is expected


@pytest.mark.parametrize("value", ["", "   ", "maybe", "2", object()])
def test_parse_permissive_boolean_returns_none_for_invalid_tokens(value: object) -> None:
    """Permissive parsing should return `None` for invalid or blank inputs."""

    assert parse_permissive_boolean(value) is None


@pytest.mark.parametrize(("value", "expected"), [(0, 0.0), ("0.35", 0.35), (" 1 ", 1.0), (0.5, 0.5)])
def test_parse_unit_interval_accepts_values_in_range(value: object, expected: float) -> None:
    """Unit interval parsing should accept numbers and numeric strings within 0..1."""

    assert parse_unit_interval(value, "aggressiveness") == pytest.approx(expected)


@pytest.mark.parametrize("value", [-0.1, 1.01, "abc", True])
def test_parse_unit_interval_rejects_invalid_values(value: object) -> None:
    """Unit interval parsing should reject out-of-range, non-numeric, and boolean values."""

    with pytest.raises(ValueError, match="`aggressiveness` must be a number between 0 and 1."):
        parse_unit_interval(value, "aggressiveness")


def test_clamp_unit_limits_values() -> None:
    """Clamping should pin values into 0..1."""

    assert clamp_unit(-3) == 0.0
    assert clamp_unit(0.4) == pytest.approx(0.4)
    assert clamp_unit(7) == 1.0
