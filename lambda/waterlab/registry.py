"""
Parameter definition registry - the catalog of measurable parameters.

In-memory, built from whatever the parameter store returned. Lookups are
by code; listings are sorted by code. Mutations are plain field updates
with normalization and never touch snapshots already taken.
"""

from typing import Any, Iterable

from pydantic import ValidationError as PydanticValidationError

from waterlab.models import (
    MeasurementStage,
    ParameterDefinition,
    NotFoundError,
    ValidationError,
    describe_errors,
)


# Fields a caller may not change through update()
_IMMUTABLE_FIELDS = {"parameter_id", "code", "kind"}


class ParameterRegistry:
    """Catalog of ParameterDefinitions keyed by upper-case code."""

    def __init__(self, definitions: Iterable[ParameterDefinition] = ()):
        self._definitions: dict[str, ParameterDefinition] = {}
        for definition in definitions:
            self.add(definition)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and code.strip().upper() in self._definitions

    # --- Queries ---

    def get(self, code: str) -> ParameterDefinition:
        """
        Raises:
            NotFoundError: If no definition has this code.
        """
        definition = self._definitions.get(code.strip().upper())
        if definition is None:
            raise NotFoundError(f"Parameter {code} not found")
        return definition

    def list_all(self, active_only: bool = False) -> list[ParameterDefinition]:
        definitions = sorted(self._definitions.values(), key=lambda d: d.code)
        if active_only:
            return [d for d in definitions if d.is_active]
        return definitions

    def list_active(self) -> list[ParameterDefinition]:
        return self.list_all(active_only=True)

    def list_by_stage(
        self,
        stage: MeasurementStage | str | None,
        active_only: bool = True,
    ) -> list[ParameterDefinition]:
        """
        Definitions measured at stage.

        stage=None means every stage (single-stage workflows).
        """
        if stage is None:
            return self.list_all(active_only)
        stage = MeasurementStage(stage)
        return [d for d in self.list_all(active_only) if d.stage == stage]

    # --- Mutations ---

    def add(self, definition: ParameterDefinition) -> ParameterDefinition:
        """
        Raises:
            ValidationError: If the code or (case-insensitive) name is taken.
        """
        if definition.code in self._definitions:
            raise ValidationError(f"Parameter with code {definition.code} already exists")

        folded_name = definition.name.casefold()
        if any(d.name.casefold() == folded_name for d in self._definitions.values()):
            raise ValidationError(f"Parameter with name {definition.name} already exists")

        self._definitions[definition.code] = definition
        return definition

    def update(self, code: str, changes: dict[str, Any]) -> ParameterDefinition:
        """
        Applies field changes and returns the new definition.

        The stored object is replaced rather than edited, so earlier
        references (and every snapshot) keep their values.

        Raises:
            NotFoundError: Unknown code.
            ValidationError: Immutable field changed or a value is invalid.
        """
        current = self.get(code)

        blocked = sorted(
            field for field in _IMMUTABLE_FIELDS
            if field in changes and _differs(current, field, changes[field])
        )
        if blocked:
            raise ValidationError([f"{field} cannot be changed" for field in blocked])

        data = current.model_dump()
        data.update({k: v for k, v in changes.items() if k not in _IMMUTABLE_FIELDS})
        try:
            updated = ParameterDefinition.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(describe_errors(e))

        if updated.name.casefold() != current.name.casefold():
            folded_name = updated.name.casefold()
            if any(
                d.name.casefold() == folded_name
                for d in self._definitions.values()
                if d.code != current.code
            ):
                raise ValidationError(f"Parameter with name {updated.name} already exists")

        self._definitions[current.code] = updated
        return updated

    def set_active(self, code: str, is_active: bool) -> ParameterDefinition:
        return self.update(code, {"is_active": is_active})

    def toggle(self, code: str) -> ParameterDefinition:
        return self.set_active(code, not self.get(code).is_active)


def _differs(definition: ParameterDefinition, field: str, value: Any) -> bool:
    current = getattr(definition, field)
    if isinstance(value, str):
        value = value.strip()
        if field != "parameter_id":
            value = value.upper()
    return str(getattr(current, "value", current)) != str(value)

