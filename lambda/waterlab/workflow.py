"""
Sample operations - collect, test, publish, archive, restore.

Pure synchronous functions over already-loaded inputs. Each returns a
TransitionResult holding a new Sample and the audit fact to record; the
input sample is never mutated, so a rejected call leaves it exactly as
it was. Persisting the result (with the prior lifecycle stage as the
optimistic precondition) is the caller's job.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Iterable

from pydantic import ValidationError as PydanticValidationError

from waterlab.aggregator import aggregate
from waterlab.evaluator import evaluate
from waterlab.lifecycle import Transition, Workflow, get_workflow
from waterlab.registry import ParameterRegistry
from waterlab.snapshots import build_snapshot, merge_snapshots
from waterlab.models import (
    Action,
    Actor,
    AuditAction,
    AuditEvent,
    ConfigurationError,
    GeoPoint,
    LifecycleStage,
    MeasurementStage,
    ParameterDefinition,
    ParameterInput,
    ParameterSnapshot,
    Sample,
    SampleImages,
    Stamp,
    TransitionResult,
    ValidationError,
    describe_errors,
    utcnow,
)

logger = logging.getLogger(__name__)

_UNASSIGNED_ID = "UNASSIGNED"


# --- Collection ---

def collect_sample(
    *,
    sample_id: str | Callable[[datetime], str],
    actor: Actor,
    location: GeoPoint | dict,
    address: str,
    collected_at: datetime | None = None,
    title: str | None = None,
    images: SampleImages | dict | None = None,
    selected_parameters: list[str] | None = None,
    registry: ParameterRegistry | None = None,
    workflow: Workflow | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """
    Creates a Sample in the workflow's initial stage with no measurements.

    selected_parameters narrows every later stage to those codes. Each
    selected code must name an active definition in registry, and every
    stage the workflow measures must keep at least one selected code.

    sample_id may be a callable taking the creation time. It is called
    only once the request has passed validation, so a rejected collection
    never uses up an id.

    Raises:
        ValidationError: Bad collection metadata or an unusable selection.
    """
    workflow = workflow or get_workflow()
    now = now or utcnow()

    try:
        sample = Sample(
            sample_id=sample_id if isinstance(sample_id, str) else _UNASSIGNED_ID,
            title=title,
            location=location,
            address=address,
            collected_by=actor.actor_id,
            collected_at=collected_at or now,
            images=images or SampleImages(),
            lifecycle_stage=workflow.initial,
            selected_parameters=selected_parameters or None,
            created_at=now,
        )
    except PydanticValidationError as e:
        raise ValidationError(describe_errors(e))

    if sample.selected_parameters:
        if registry is None:
            raise ValueError("A registry is required to check selected_parameters")
        errors = _selection_errors(sample.selected_parameters, registry, workflow)
        if errors:
            raise ValidationError(errors)

    if callable(sample_id):
        sample = sample.model_copy(update={"sample_id": sample_id(now)})

    event = AuditEvent(
        action=AuditAction.SAMPLE_CREATED,
        actor_id=actor.actor_id,
        sample_id=sample.sample_id,
        details={
            "address": sample.address,
            "lifecycle_stage": sample.lifecycle_stage.value,
            "selected_parameters": sample.selected_parameters,
        },
        timestamp=now,
    )
    return TransitionResult(sample=sample, event=event)


# --- Measurements ---

def submit_measurements(
    sample: Sample,
    action: Action,
    inputs: Iterable[ParameterInput | dict],
    registry: ParameterRegistry,
    actor: Actor,
    workflow: Workflow | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """
    Evaluates a stage's batch of raw values and advances the sample.

    All-or-nothing: every scope and value problem in the batch is
    collected, and any problem rejects the whole batch.

    Raises:
        StateError: Action not available from the sample's stage.
        PermissionDeniedError: Actor role not allowed.
        ValidationError: Missing, extra, duplicate, or invalid values.
        ConfigurationError: A definition in scope cannot grade values.
    """
    workflow = workflow or get_workflow()
    now = now or utcnow()

    transition = workflow.authorize(sample.lifecycle_stage, action, actor.role)
    if not transition.measures:
        raise ValueError(f"{action.value} does not carry measurements")

    batch = _coerce_inputs(inputs)
    required = required_parameters(sample, registry, transition.stage)
    if not batch and required:
        raise ValidationError("At least one parameter value is required")

    snapshots, errors, misconfigured = _evaluate_batch(batch, required, registry, transition.stage)
    if errors:
        logger.warning(
            "Rejected %s batch for %s: %d problem(s)",
            action.value, sample.sample_id, len(errors),
        )
        if misconfigured:
            raise ConfigurationError(errors)
        raise ValidationError(errors)

    parameters = merge_snapshots(sample.parameters, snapshots)
    overall_status = aggregate(parameters) if transition.finalizes else sample.overall_status

    updated = _apply(
        sample, transition, actor, now,
        parameters=parameters,
        overall_status=overall_status,
    )
    event = _event(sample, updated, transition, actor, now, {
        "parameters_count": len(snapshots),
        "overall_status": overall_status.value if overall_status else None,
    })
    return TransitionResult(sample=updated, event=event)


def required_parameters(
    sample: Sample,
    registry: ParameterRegistry,
    stage: MeasurementStage | None,
) -> list[ParameterDefinition]:
    """
    Active definitions of stage, narrowed to the sample's selection if any.

    May be empty when every selected code of the stage was deactivated
    after collection. The stage then advances on an empty batch.
    """
    active = registry.list_by_stage(stage, active_only=True)
    if sample.selected_parameters:
        selected = set(sample.selected_parameters)
        return [d for d in active if d.code in selected]
    return active


# --- Publication & Archive ---

def publish_sample(
    sample: Sample,
    actor: Actor,
    workflow: Workflow | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """Tested → published. Status was computed by the last test submission."""
    return advance(sample, Action.PUBLISH, actor, workflow, now)


def archive_sample(
    sample: Sample,
    actor: Actor,
    workflow: Workflow | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """Published → archived. Snapshots are kept; the sample leaves default listings."""
    return advance(sample, Action.ARCHIVE, actor, workflow, now)


def restore_sample(
    sample: Sample,
    actor: Actor,
    workflow: Workflow | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    return advance(sample, Action.RESTORE, actor, workflow, now)


def advance(
    sample: Sample,
    action: Action,
    actor: Actor,
    workflow: Workflow | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """
    Fires a transition that carries no measurements.

    Raises:
        StateError: Action not available from the sample's stage.
        PermissionDeniedError: Actor role not allowed.
    """
    workflow = workflow or get_workflow()
    now = now or utcnow()

    transition = workflow.authorize(sample.lifecycle_stage, action, actor.role)
    if transition.measures:
        raise ValueError(f"{action.value} requires measurements")

    updated = _apply(sample, transition, actor, now)
    event = _event(sample, updated, transition, actor, now, {})
    return TransitionResult(sample=updated, event=event)


# --- Internal ---

def _selection_errors(codes: list[str], registry: ParameterRegistry, workflow: Workflow) -> list[str]:
    active = {d.code: d for d in registry.list_active()}
    errors = [f"{code}: unknown or inactive parameter" for code in codes if code not in active]

    for stage in workflow.measured_stages():
        covered = any(
            code in active and (stage is None or active[code].stage == stage)
            for code in codes
        )
        if not covered:
            label = stage.value if stage else "active"
            errors.append(f"selected_parameters: no {label} parameter selected")
    return errors


def _coerce_inputs(inputs: Iterable[ParameterInput | dict]) -> list[ParameterInput]:
    batch: list[ParameterInput] = []
    errors: list[str] = []
    for position, item in enumerate(inputs or []):
        try:
            batch.append(
                item if isinstance(item, ParameterInput) else ParameterInput.model_validate(item)
            )
        except PydanticValidationError as e:
            errors.extend(f"parameters[{position}].{message}" for message in describe_errors(e))

    if errors:
        raise ValidationError(errors)
    return batch


def _evaluate_batch(
    batch: list[ParameterInput],
    required: list[ParameterDefinition],
    registry: ParameterRegistry,
    stage: MeasurementStage | None,
) -> tuple[list[ParameterSnapshot], list[str], bool]:
    """Snapshots for an in-scope batch, or every problem found and whether any is a setup problem."""
    in_scope = {d.code: d for d in required}
    errors: list[str] = []
    misconfigured = False
    snapshots: list[ParameterSnapshot] = []
    seen: set[str] = set()

    for item in batch:
        if item.code in seen:
            errors.append(f"{item.code}: submitted more than once")
            continue
        seen.add(item.code)

        definition = in_scope.get(item.code)
        if definition is None:
            errors.append(_out_of_scope_reason(item.code, registry, stage))
            continue

        try:
            status = evaluate(definition, item.value)
        except ConfigurationError as e:
            misconfigured = True
            errors.extend(e.errors)
            continue
        except ValidationError as e:
            errors.extend(e.errors)
            continue

        snapshots.append(build_snapshot(definition, item.value, status))

    for code in in_scope:
        if code not in seen:
            errors.append(f"{code}: missing required parameter")

    return snapshots, errors, misconfigured


def _out_of_scope_reason(code: str, registry: ParameterRegistry, stage: MeasurementStage | None) -> str:
    if code not in registry:
        return f"{code}: unknown parameter"

    definition = registry.get(code)
    if not definition.is_active:
        return f"{code}: parameter is inactive"
    if stage is not None and definition.stage != stage:
        return f"{code}: not a {stage.value} parameter"
    return f"{code}: not selected for this sample"


def _apply(
    sample: Sample,
    transition: Transition,
    actor: Actor,
    now: datetime,
    **changes: Any,
) -> Sample:
    stamps = dict(sample.stamps)
    stamps[transition.action] = Stamp(actor_id=actor.actor_id, at=now)

    return sample.model_copy(
        update={
            **changes,
            "lifecycle_stage": transition.target,
            "is_deleted": transition.target == LifecycleStage.ARCHIVED,
            "stamps": stamps,
        },
        deep=True,
    )


def _event(
    before: Sample,
    after: Sample,
    transition: Transition,
    actor: Actor,
    now: datetime,
    details: dict[str, Any],
) -> AuditEvent:
    return AuditEvent(
        action=transition.audit_action,
        actor_id=actor.actor_id,
        sample_id=after.sample_id,
        details={
            "from": before.lifecycle_stage.value,
            "to": after.lifecycle_stage.value,
            **details,
        },
        timestamp=now,
    )
