"""
Snapshot building - freezes a definition and a measured value together.

A snapshot carries its own frozen limits and enum pairs, taken off the
definition at measurement time, so later edits to the reference
standard never alter historical results.
"""

from typing import Any

from waterlab.models import ParameterDefinition, ParameterSnapshot, ParameterStatus


def build_snapshot(
    definition: ParameterDefinition,
    raw_value: Any,
    status: ParameterStatus | None = None,
) -> ParameterSnapshot:
    """
    Immutable record of definition + value + verdict.

    status may be None when the value is recorded before it is scored.
    """
    return ParameterSnapshot(
        parameter_ref=definition.parameter_id,
        code=definition.code,
        name=definition.name,
        unit=definition.unit,
        kind=definition.kind,
        stage=definition.stage,
        acceptable_limit=definition.acceptable_limit,
        permissible_limit=definition.permissible_limit,
        physical_limit=definition.physical_limit,
        max_value=definition.max_value,
        enum_evaluation=tuple(definition.enum_evaluation.items()),
        affects_overall=definition.affects_overall,
        test_method=definition.test_method,
        standard_version=definition.standard_version,
        value=_normalize_value(raw_value),
        status=status,
    )


def merge_snapshots(
    existing: list[ParameterSnapshot],
    incoming: list[ParameterSnapshot],
) -> list[ParameterSnapshot]:
    """
    Earlier-stage snapshots followed by the new stage's snapshots.

    One entry per parameter code: an incoming snapshot replaces an
    existing one with the same code in its original position.
    """
    replacements = {snapshot.code: snapshot for snapshot in incoming}

    merged = [replacements.pop(snapshot.code, snapshot) for snapshot in existing]
    merged.extend(replacements.values())
    return merged


def _normalize_value(raw_value: Any) -> int | float | str:
    """Strings are stored trimmed; numbers as given."""
    if isinstance(raw_value, str):
        return raw_value.strip()
    return raw_value
