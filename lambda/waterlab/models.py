"""
Domain models for the water sample testing core.

All Pydantic models and domain exceptions in one place. Imported by
registry, evaluator, snapshots, workflow, storage, and handler modules.
Single source of truth for data contracts.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from waterlab.config import STANDARD_VERSION, ADDRESS_MAX_LENGTH, TITLE_MAX_LENGTH


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Domain Enums ---

class ParameterKind(str, Enum):
    """Evaluation rule of a parameter. Never changes once snapshots exist."""
    RANGE = "RANGE"
    MAX = "MAX"
    ENUM = "ENUM"
    TEXT = "TEXT"


class MeasurementStage(str, Enum):
    """Where a parameter is measured: on site or in the laboratory."""
    FIELD = "FIELD"
    LAB = "LAB"


class ParameterStatus(str, Enum):
    """
    Verdict for one parameter or a whole sample. Inherits str so Pydantic
    serializes to "ACCEPTABLE" / "PERMISSIBLE" / "NOT_ACCEPTABLE".
    """
    ACCEPTABLE = "ACCEPTABLE"
    PERMISSIBLE = "PERMISSIBLE"
    NOT_ACCEPTABLE = "NOT_ACCEPTABLE"


class LifecycleStage(str, Enum):
    COLLECTED = "COLLECTED"
    FIELD_TESTED = "FIELD_TESTED"
    LAB_TESTED = "LAB_TESTED"
    TESTING = "TESTING"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class Role(str, Enum):
    ADMIN = "ADMIN"
    TEAM_MEMBER = "TEAM_MEMBER"


class Action(str, Enum):
    """Lifecycle transitions a caller can request on an existing sample."""
    FIELD_TEST = "FIELD_TEST"
    LAB_TEST = "LAB_TEST"
    SUBMIT = "SUBMIT"
    PUBLISH = "PUBLISH"
    ARCHIVE = "ARCHIVE"
    RESTORE = "RESTORE"


class AuditAction(str, Enum):
    SAMPLE_CREATED = "SAMPLE_CREATED"
    SAMPLE_FIELD_TESTED = "SAMPLE_FIELD_TESTED"
    SAMPLE_LAB_TESTED = "SAMPLE_LAB_TESTED"
    SAMPLE_TESTED_AND_PUBLISHED = "SAMPLE_TESTED_AND_PUBLISHED"
    SAMPLE_PUBLISHED = "SAMPLE_PUBLISHED"
    SAMPLE_ARCHIVED = "SAMPLE_ARCHIVED"
    SAMPLE_RESTORED = "SAMPLE_RESTORED"
    PARAMETER_CREATED = "PARAMETER_CREATED"
    PARAMETER_UPDATED = "PARAMETER_UPDATED"


# --- Parameter Registry Context ---

class Limit(BaseModel):
    """Inclusive {min, max} pair. Either bound may be unset. Replaced, never edited."""
    model_config = ConfigDict(frozen=True)

    min: float | None = None
    max: float | None = None

    @model_validator(mode="after")
    def _check_order(self) -> "Limit":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"limit min {self.min} is greater than max {self.max}")
        return self

    @property
    def is_bounded(self) -> bool:
        return self.min is not None and self.max is not None


class ParameterDefinition(BaseModel):
    """
    One measurable water-quality characteristic and its grading rules.

    Limits may be edited over time; snapshots freeze a copy, so edits
    never reach samples that were already measured.
    """
    model_config = ConfigDict(validate_assignment=True)

    parameter_id: str = Field(default_factory=lambda: uuid4().hex)
    code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    unit: str = "-"
    kind: ParameterKind
    stage: MeasurementStage | None = None

    acceptable_limit: Limit = Field(default_factory=Limit)
    permissible_limit: Limit = Field(default_factory=Limit)
    physical_limit: Limit = Field(default_factory=Limit)
    max_value: float | None = None  # legacy single maximum, used by MAX kind

    enum_evaluation: dict[str, ParameterStatus] = {}
    affects_overall: bool = True
    test_method: str = ""
    standard_version: str = STANDARD_VERSION
    is_active: bool = True

    @model_validator(mode="before")
    @classmethod
    def _default_affects_overall(cls, data: Any) -> Any:
        # TEXT parameters are informational unless explicitly told otherwise
        if isinstance(data, dict) and data.get("affects_overall") is None:
            data = dict(data)
            kind = str(data.get("kind", "")).strip().upper()
            data["affects_overall"] = kind != ParameterKind.TEXT.value
        return data

    @field_validator("code", "kind", "stage", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("name", "unit", "test_method", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("enum_evaluation", mode="before")
    @classmethod
    def _normalize_enum_mapping(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {
            str(key).strip(): verdict.strip().upper() if isinstance(verdict, str) else verdict
            for key, verdict in value.items()
        }

    @field_validator("enum_evaluation")
    @classmethod
    def _unique_enum_keys(cls, value: dict[str, ParameterStatus]) -> dict[str, ParameterStatus]:
        seen: set[str] = set()
        for key in value:
            folded = key.casefold()
            if not folded:
                raise ValueError("enum values cannot be blank")
            if folded in seen:
                raise ValueError(f"duplicate enum value (case-insensitive): {key}")
            seen.add(folded)
        return value


class ParameterSnapshot(BaseModel):
    """
    Frozen copy of a definition plus the measured value and its verdict.

    Embedded in a Sample. Never holds a reference to the live definition,
    only its id for traceability.
    """
    model_config = ConfigDict(frozen=True)

    parameter_ref: str
    code: str
    name: str
    unit: str
    kind: ParameterKind
    stage: MeasurementStage | None = None

    acceptable_limit: Limit = Limit()
    permissible_limit: Limit = Limit()
    physical_limit: Limit = Limit()
    max_value: float | None = None
    # (value, verdict) pairs; stored and dumped as a {value: verdict} object
    enum_evaluation: tuple[tuple[str, ParameterStatus], ...] = ()
    affects_overall: bool = True
    test_method: str = ""
    standard_version: str = STANDARD_VERSION

    value: int | float | str
    status: ParameterStatus | None = None  # None until scored

    @field_validator("enum_evaluation", mode="before")
    @classmethod
    def _pairs(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return tuple(value.items())
        return value

    @field_serializer("enum_evaluation")
    def _dump_pairs(self, value: tuple[tuple[str, ParameterStatus], ...]) -> dict[str, ParameterStatus]:
        return dict(value)

    def enum_mapping(self) -> dict[str, ParameterStatus]:
        """Fresh dict copy of the frozen enum verdicts."""
        return dict(self.enum_evaluation)


class ParameterInput(BaseModel):
    """One raw measurement submitted for a stage."""
    code: str
    value: Any = None

    @field_validator("code", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


# --- Sample Context ---

class GeoPoint(BaseModel):
    longitude: float = Field(ge=-180.0, le=180.0)
    latitude: float = Field(ge=-90.0, le=90.0)


class SampleImages(BaseModel):
    """References to photographic evidence. Storage happens elsewhere."""
    sample_image_url: str | None = None
    location_image_url: str | None = None


class Stamp(BaseModel):
    """Who fired a transition and when."""
    actor_id: str
    at: datetime


class Actor(BaseModel):
    actor_id: str
    role: Role


class Sample(BaseModel):
    """Aggregate root: collection metadata, snapshots, and lifecycle position."""
    sample_id: str
    title: str | None = Field(None, max_length=TITLE_MAX_LENGTH)
    location: GeoPoint
    address: str = Field(min_length=1, max_length=ADDRESS_MAX_LENGTH)

    collected_by: str
    collected_at: datetime
    images: SampleImages = SampleImages()

    lifecycle_stage: LifecycleStage
    selected_parameters: list[str] | None = None
    parameters: list[ParameterSnapshot] = []
    overall_status: ParameterStatus | None = None
    standard_version: str = STANDARD_VERSION

    # Actor + timestamp per fired transition, keyed by action
    stamps: dict[Action, Stamp] = {}

    is_deleted: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("address", "title", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("selected_parameters", mode="before")
    @classmethod
    def _upper_codes(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [code.strip().upper() if isinstance(code, str) else code for code in value]
        return value

    def snapshot_codes(self) -> list[str]:
        return [snapshot.code for snapshot in self.parameters]


class SamplePage(BaseModel):
    """One page of a sample listing with an opaque continuation cursor."""
    items: list[Sample] = []
    cursor: str | None = None


# --- Audit Context ---

class AuditEvent(BaseModel):
    """Fact emitted after each successful transition."""
    event_id: str = Field(default_factory=lambda: uuid4().hex)
    action: AuditAction
    actor_id: str
    sample_id: str | None = None
    details: dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=utcnow)


class TransitionResult(BaseModel):
    """Updated sample plus the audit fact describing what happened."""
    sample: Sample
    event: AuditEvent


# --- Exceptions ---

class ValidationError(Exception):
    """
    Input rejected: missing, malformed, out of bounds, or out of scope.

    Batch operations collect every problem before raising, so `errors`
    always holds the complete list.
    """

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class ConfigurationError(ValidationError):
    """Parameter setup problem (e.g. ENUM without mapping). Never a passing status."""
    pass


class StateError(Exception):
    """Lifecycle transition not allowed from the current stage."""

    def __init__(self, current: LifecycleStage | str, target: LifecycleStage | str):
        self.current = LifecycleStage(current)
        self.target = LifecycleStage(target)
        super().__init__(
            f"Cannot move sample from {self.current.value} to {self.target.value}"
        )


class PermissionDeniedError(Exception):
    """Actor role is not allowed to fire this transition or operation."""

    def __init__(self, role: Role | str, operation: Action | str):
        self.role = Role(role)
        self.operation = operation.value if isinstance(operation, Action) else str(operation)
        super().__init__(f"Role {self.role.value} may not perform {self.operation}")


class NotFoundError(Exception):
    """Unknown parameter code or sample id."""
    pass


class ConflictError(Exception):
    """Record changed since it was loaded (optimistic precondition failed)."""
    pass


class StorageError(Exception):
    """Database operation failed."""
    pass


def describe_errors(error: PydanticValidationError) -> list[str]:
    """Flattens a Pydantic validation error into "field: message" lines."""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return messages
