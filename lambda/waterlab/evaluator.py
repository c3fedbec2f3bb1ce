"""
Value evaluation - validates one raw measurement and grades it.

Pure functions, no I/O. Validation runs in a fixed order and stops at
the first failure; grading is only reached for values that passed:

1. Required (not None, not blank)
2. Numeric parse + physical bounds (RANGE, MAX)
3. Enum mapping lookup (ENUM)
4. Length (TEXT)
"""

import math
from typing import Any

from waterlab.models import (
    Limit,
    ParameterDefinition,
    ParameterKind,
    ParameterStatus,
    ValidationError,
    ConfigurationError,
)
from waterlab.config import TEXT_MAX_LENGTH


# --- Public API ---

def evaluate(definition: ParameterDefinition, raw_value: Any) -> ParameterStatus:
    """
    Validates raw_value against definition and returns its verdict.

    Raises:
        ValidationError: Missing, non-numeric, out of physical bounds,
            unknown enum label, or text too long.
        ConfigurationError: Definition cannot grade values (e.g. ENUM
            without mapping).
    """
    label = definition.code

    if _is_blank(raw_value):
        raise ValidationError(f"{label}: required")

    kind = definition.kind

    if kind in (ParameterKind.RANGE, ParameterKind.MAX):
        number = parse_number(raw_value, label)
        _check_physical_bounds(definition, number)
        if kind == ParameterKind.RANGE:
            return range_status(definition, number)
        return max_status(definition, number)

    if kind == ParameterKind.ENUM:
        return enum_status(definition, raw_value)

    if kind == ParameterKind.TEXT:
        _check_text(raw_value, label)
        return ParameterStatus.ACCEPTABLE

    raise ConfigurationError(f"{label}: unsupported parameter kind {kind}")


def parse_number(raw_value: Any, label: str = "value") -> float:
    """
    Parses a numeric measurement. Accepts int, float, or numeric text.

    Raises:
        ValidationError: If the value is boolean, non-numeric, or not finite.
    """
    if isinstance(raw_value, bool):
        raise ValidationError(f"{label}: not a number")

    try:
        number = float(raw_value.strip() if isinstance(raw_value, str) else raw_value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label}: not a number")

    if not math.isfinite(number):
        raise ValidationError(f"{label}: not a number")
    return number


def range_status(definition: ParameterDefinition, value: float) -> ParameterStatus:
    """
    RANGE grading with inclusive bounds.

    A limit pair only takes part when both bounds are set.
    """
    if _within(definition.acceptable_limit, value):
        return ParameterStatus.ACCEPTABLE
    if _within(definition.permissible_limit, value):
        return ParameterStatus.PERMISSIBLE
    return ParameterStatus.NOT_ACCEPTABLE


def max_status(definition: ParameterDefinition, value: float) -> ParameterStatus:
    """MAX grading. No acceptable maximum configured means unconstrained."""
    acceptable_max = resolve_acceptable_max(definition)
    permissible_max = resolve_permissible_max(definition)

    if acceptable_max is None:
        return ParameterStatus.ACCEPTABLE
    if value <= acceptable_max:
        return ParameterStatus.ACCEPTABLE
    if permissible_max is not None and value <= permissible_max:
        return ParameterStatus.PERMISSIBLE
    return ParameterStatus.NOT_ACCEPTABLE


def enum_status(definition: ParameterDefinition, raw_value: Any) -> ParameterStatus:
    """
    Reads the verdict mapped to raw_value. Lookup trims and case-folds
    both sides; no silent default for unmapped labels.

    Raises:
        ConfigurationError: Definition has no enum mapping.
        ValidationError: Label is not in the mapping.
    """
    label = definition.code
    if not definition.enum_evaluation:
        raise ConfigurationError(f"{label}: no enum mapping configured")

    verdict = lookup_enum(definition.enum_evaluation, raw_value)
    if verdict is None:
        allowed = ", ".join(definition.enum_evaluation)
        raise ValidationError(f"{label}: invalid enum value '{raw_value}' (allowed: {allowed})")
    return verdict


def lookup_enum(mapping: dict[str, ParameterStatus], raw_value: Any) -> ParameterStatus | None:
    """Case-insensitive key lookup. Returns None when nothing matches."""
    wanted = str(raw_value).strip().casefold()
    for key, verdict in mapping.items():
        if key.strip().casefold() == wanted:
            return ParameterStatus(verdict)
    return None


# --- Limit Resolution ---

def resolve_acceptable_max(definition: ParameterDefinition) -> float | None:
    """Structured acceptable max, falling back to the legacy max_value."""
    if definition.acceptable_limit.max is not None:
        return definition.acceptable_limit.max
    return definition.max_value


def resolve_permissible_max(definition: ParameterDefinition) -> float | None:
    return definition.permissible_limit.max


# --- Internal ---

def _is_blank(raw_value: Any) -> bool:
    if raw_value is None:
        return True
    return isinstance(raw_value, str) and raw_value.strip() == ""


def _within(limit: Limit, value: float) -> bool:
    return limit.is_bounded and limit.min <= value <= limit.max


def _check_physical_bounds(definition: ParameterDefinition, value: float) -> None:
    """Physical limits are sanity bounds; violating them is bad input, not a verdict."""
    physical = definition.physical_limit
    too_low = physical.min is not None and value < physical.min
    too_high = physical.max is not None and value > physical.max
    if too_low or too_high:
        low = "-inf" if physical.min is None else f"{physical.min:g}"
        high = "inf" if physical.max is None else f"{physical.max:g}"
        raise ValidationError(
            f"{definition.code}: outside physical bounds ({value:g} not in {low}..{high})"
        )


def _check_text(raw_value: Any, label: str) -> None:
    if not isinstance(raw_value, (str, int, float)) or isinstance(raw_value, bool):
        raise ValidationError(f"{label}: not text")
    if len(str(raw_value)) > TEXT_MAX_LENGTH:
        raise ValidationError(f"{label}: too long (max {TEXT_MAX_LENGTH} characters)")
