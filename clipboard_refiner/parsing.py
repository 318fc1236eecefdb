"""Shared parsing helpers for settings and runtime value normalization."""

from __future__ import annotations


_TRUE_BOOLEAN_TOKENS = frozenset({"1", "true", "yes", "on"})
_FALSE_BOOLEAN_TOKENS = frozenset({"0", "false", "no", "off"})


def normalize_optional_string(value: object) -> str | None:
    """Normalize an optional value to a stripped non-empty string.

    Args:
        value: Arbitrary input value.

    Returns:
        Stripped string value, or `None` when the value is empty after trimming.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text


def parse_permissive_boolean(value: object) -> bool | None:
    """Parse a permissive boolean token and return `None` for invalid values."""

    if isinstance(value, bool):
        return value

    normalized = normalize_optional_string(value)
    if normalized is None:
        return None

    token = normalized.lower()
    if token in _TRUE_BOOLEAN_TOKENS:
        return True
    if token in _FALSE_BOOLEAN_TOKENS:
        return False
    return None


def parse_unit_interval(value: object, field_name: str) -> float:
    """Parse a float in the closed range 0..1.

    Raises:
        ValueError: If the value is not numeric or falls outside 0..1.
    """

    if isinstance(value, bool):
        raise ValueError(f"`{field_name}` must be a number between 0 and 1.")
    try:
        parsed = float(str(value).strip()) if not isinstance(value, (int, float)) else float(value)
    except ValueError as exc:
        raise ValueError(f"`{field_name}` must be a number between 0 and 1.") from exc
    if not 0.0 <= parsed <= 1.0:
        raise ValueError(f"`{field_name}` must be a number between 0 and 1.")
    return parsed


def clamp_unit(value: float) -> float:
    """Clamp a float into the closed range 0..1."""

    return min(max(float(value), 0.0), 1.0)
