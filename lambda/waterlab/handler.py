"""
Lambda entry point - thin adapter between API Gateway and the core.

Parses API Gateway events, loads what the core needs (registry, sample),
calls the pure core operations, persists results with the prior lifecycle
stage as precondition, records audit facts, and formats HTTP responses.

No business logic lives here beyond routing and error mapping.
"""

import json
import logging
from datetime import datetime
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from waterlab import audit
from waterlab.identity import generate_sample_id, sequence_name
from waterlab.lifecycle import get_workflow
from waterlab.storage import (
    save_sample,
    get_sample,
    list_samples,
    load_registry,
    save_parameter,
    next_sequence,
)
from waterlab.workflow import (
    collect_sample,
    submit_measurements,
    publish_sample,
    archive_sample,
    restore_sample,
)
from waterlab.models import (
    Action,
    Actor,
    AuditAction,
    AuditEvent,
    LifecycleStage,
    MeasurementStage,
    ParameterDefinition,
    ParameterStatus,
    Role,
    Sample,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    StorageError,
    ValidationError,
    describe_errors,
    utcnow,
)
from waterlab.config import DEFAULT_PAGE_SIZE, LOG_LEVEL

logging.getLogger().setLevel(LOG_LEVEL)
logger = logging.getLogger(__name__)


# Path segment → lifecycle action
ACTION_ROUTES: dict[str, Action] = {
    "field-test": Action.FIELD_TEST,
    "lab-test": Action.LAB_TEST,
    "submit": Action.SUBMIT,
    "publish": Action.PUBLISH,
    "archive": Action.ARCHIVE,
    "restore": Action.RESTORE,
}

_PLAIN_TRANSITIONS: dict[Action, Callable] = {
    Action.PUBLISH: publish_sample,
    Action.ARCHIVE: archive_sample,
    Action.RESTORE: restore_sample,
}


# --- Lambda Entry Point ---

def lambda_handler(event: dict, context: Any) -> dict:
    """
    AWS Lambda handler for API Gateway HTTP API (v2).

    Routes:
    - GET /parameters, GET /parameters/{code}
    - POST /parameters, PUT /parameters/{code}, PATCH /parameters/{code}/toggle
    - POST /samples, GET /samples, GET /samples/{id}
    - POST /samples/{id}/field-test | lab-test | submit
    - PATCH /samples/{id}/publish | archive | restore

    The actor comes from the JWT authorizer claims (sub, role).
    Never raises exceptions; all errors converted to HTTP responses.
    """
    try:
        method = event["requestContext"]["http"]["method"]
        parts = _path_parts(event["requestContext"]["http"]["path"])

        if not parts or parts[0] not in ("parameters", "samples"):
            return _error_response(404, "NOT_FOUND", "Route not found")

        actor = _actor(event)
        if actor is None:
            return _error_response(401, "UNAUTHORIZED", "Missing or invalid caller identity")

        if parts[0] == "parameters":
            return _route_parameters(method, parts[1:], event, actor)
        return _route_samples(method, parts[1:], event, actor)

    except ConfigurationError as e:
        logger.error("Parameter configuration problem: %s", e)
        return _error_response(500, "CONFIGURATION_ERROR", "Parameter configuration is invalid", details=e.errors)

    except ValidationError as e:
        return _error_response(400, "VALIDATION_ERROR", "Validation failed", details=e.errors)

    except PermissionDeniedError as e:
        return _error_response(403, "FORBIDDEN", str(e))

    except NotFoundError as e:
        return _error_response(404, "NOT_FOUND", str(e))

    except StateError as e:
        return _error_response(
            409,
            "INVALID_TRANSITION",
            str(e),
            details={"current": e.current.value, "target": e.target.value},
        )

    except ConflictError as e:
        return _error_response(409, "CONFLICT", str(e))

    except StorageError as e:
        logger.error("Storage failure: %s", e)
        return _error_response(500, "STORAGE_ERROR", "Database operation failed")

    except Exception:
        logger.exception("Unexpected error")
        return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


# --- Parameter Routes ---

def _route_parameters(method: str, parts: list[str], event: dict, actor: Actor) -> dict:
    if method == "GET" and not parts:
        return _handle_list_parameters(event)
    if method == "GET" and len(parts) == 1:
        return _handle_get_parameter(parts[0])
    if method == "POST" and not parts:
        return _handle_create_parameter(event, actor)
    if method == "PUT" and len(parts) == 1:
        return _handle_update_parameter(parts[0], event, actor)
    if method == "PATCH" and len(parts) == 2 and parts[1] == "toggle":
        return _handle_toggle_parameter(parts[0], actor)
    return _error_response(404, "NOT_FOUND", "Route not found")


def _handle_list_parameters(event: dict) -> dict:
    """GET /parameters?stage=FIELD&include_inactive=true"""
    query = event.get("queryStringParameters") or {}
    stage = _parse_enum(MeasurementStage, query.get("stage"), "stage")
    active_only = not _parse_bool(query.get("include_inactive"))

    registry = load_registry()
    definitions = registry.list_by_stage(stage, active_only=active_only)

    return _success_response(
        200,
        [d.model_dump(mode="json") for d in definitions],
        "Parameters retrieved successfully",
    )


def _handle_get_parameter(code: str) -> dict:
    definition = load_registry().get(code)
    return _success_response(200, definition.model_dump(mode="json"), "Parameter retrieved successfully")


def _handle_create_parameter(event: dict, actor: Actor) -> dict:
    """POST /parameters (admin only)."""
    _require_admin(actor, "PARAMETER_CREATE")
    body = _parse_body(event)
    body.pop("parameter_id", None)

    try:
        definition = ParameterDefinition.model_validate(body)
    except PydanticValidationError as e:
        raise ValidationError(describe_errors(e))

    registry = load_registry()
    registry.add(definition)
    save_parameter(definition, create=True)

    audit.record(AuditEvent(
        action=AuditAction.PARAMETER_CREATED,
        actor_id=actor.actor_id,
        details={"code": definition.code, "stage": definition.stage},
    ))
    return _success_response(201, definition.model_dump(mode="json"), "Parameter created successfully")


def _handle_update_parameter(code: str, event: dict, actor: Actor) -> dict:
    """PUT /parameters/{code} (admin only). Samples keep their snapshots."""
    _require_admin(actor, "PARAMETER_UPDATE")
    body = _parse_body(event)

    registry = load_registry()
    updated = registry.update(code, body)
    save_parameter(updated)

    audit.record(AuditEvent(
        action=AuditAction.PARAMETER_UPDATED,
        actor_id=actor.actor_id,
        details={"code": updated.code, "fields": sorted(body)},
    ))
    return _success_response(200, updated.model_dump(mode="json"), "Parameter updated successfully")


def _handle_toggle_parameter(code: str, actor: Actor) -> dict:
    """PATCH /parameters/{code}/toggle (admin only)."""
    _require_admin(actor, "PARAMETER_UPDATE")

    registry = load_registry()
    updated = registry.toggle(code)
    save_parameter(updated)

    audit.record(AuditEvent(
        action=AuditAction.PARAMETER_UPDATED,
        actor_id=actor.actor_id,
        details={"code": updated.code, "is_active": updated.is_active},
    ))
    state = "activated" if updated.is_active else "deactivated"
    return _success_response(200, updated.model_dump(mode="json"), f"Parameter {state} successfully")


# --- Sample Routes ---

def _route_samples(method: str, parts: list[str], event: dict, actor: Actor) -> dict:
    if method == "POST" and not parts:
        return _handle_collect(event, actor)
    if method == "GET" and not parts:
        return _handle_list_samples(event, actor)
    if method == "GET" and len(parts) == 1:
        return _handle_get_sample(parts[0])

    if len(parts) == 2 and parts[1] in ACTION_ROUTES:
        action = ACTION_ROUTES[parts[1]]
        workflow = get_workflow()
        expected_method = "POST" if workflow.is_measuring(action) else "PATCH"
        if action in workflow.actions() and method == expected_method:
            return _handle_transition(parts[0], action, event, actor)

    return _error_response(404, "NOT_FOUND", "Route not found")


def _handle_collect(event: dict, actor: Actor) -> dict:
    """POST /samples: create a sample in the initial lifecycle stage."""
    body = _parse_body(event)
    workflow = get_workflow()
    selected = body.get("selected_parameters")
    registry = load_registry() if selected else None

    result = collect_sample(
        sample_id=_issue_sample_id,
        actor=actor,
        location=body.get("location"),
        address=body.get("address"),
        collected_at=body.get("collected_at"),
        title=body.get("title"),
        images=body.get("images"),
        selected_parameters=selected,
        registry=registry,
        workflow=workflow,
    )

    saved = save_sample(result.sample)
    audit.record(result.event)
    logger.info("Sample %s collected by %s", saved.sample_id, actor.actor_id)

    return _success_response(201, _sample_view(saved), "Sample created successfully")


def _issue_sample_id(created_at: datetime) -> str:
    """Takes the next number from the creation month's counter."""
    return generate_sample_id(created_at, next_sequence(sequence_name(created_at)))


def _handle_list_samples(event: dict, actor: Actor) -> dict:
    """
    GET /samples?lifecycle_stage=&overall_status=&include_deleted=&limit=&cursor=

    Team members only see samples they collected.
    """
    query = event.get("queryStringParameters") or {}

    page = list_samples(
        lifecycle_stage=_parse_enum(LifecycleStage, query.get("lifecycle_stage"), "lifecycle_stage"),
        overall_status=_parse_enum(ParameterStatus, query.get("overall_status"), "overall_status"),
        include_deleted=_parse_bool(query.get("include_deleted")),
        limit=_parse_limit(query.get("limit")),
        cursor=query.get("cursor"),
        collected_by=actor.actor_id if actor.role == Role.TEAM_MEMBER else None,
    )

    return _success_response(
        200,
        {
            "items": [_sample_view(sample) for sample in page.items],
            "cursor": page.cursor,
        },
        "Samples retrieved successfully",
    )


def _handle_get_sample(sample_id: str) -> dict:
    sample = _load_sample(sample_id)
    return _success_response(200, _sample_view(sample), "Sample retrieved successfully")


def _handle_transition(sample_id: str, action: Action, event: dict, actor: Actor) -> dict:
    """
    Runs one lifecycle action and saves it only if nobody moved the
    sample in the meantime.
    """
    workflow = get_workflow()
    sample = _load_sample(sample_id)

    if workflow.is_measuring(action):
        body = _parse_body(event)
        inputs = body.get("parameters")
        if not isinstance(inputs, list):
            raise ValidationError("parameters must be a list of {code, value} objects")
        result = submit_measurements(sample, action, inputs, load_registry(), actor, workflow)
    else:
        result = _PLAIN_TRANSITIONS[action](sample, actor, workflow)

    saved = save_sample(result.sample, expected_stage=sample.lifecycle_stage)
    audit.record(result.event)
    logger.info(
        "Sample %s moved %s -> %s by %s",
        saved.sample_id, sample.lifecycle_stage.value, saved.lifecycle_stage.value, actor.actor_id,
    )

    return _success_response(
        200,
        _sample_view(saved),
        f"Sample {saved.lifecycle_stage.value.lower().replace('_', ' ')}",
    )


# --- Request Helpers ---

def _path_parts(path: str) -> list[str]:
    """Path segments without an API version prefix (/v1/samples → ["samples"])."""
    parts = [part for part in path.strip("/").split("/") if part]
    if parts and parts[0].lower().startswith("v") and parts[0][1:].isdigit():
        parts = parts[1:]
    return parts


def _actor(event: dict) -> Actor | None:
    claims = (
        event.get("requestContext", {})
        .get("authorizer", {})
        .get("jwt", {})
        .get("claims", {})
    )
    actor_id = claims.get("sub")
    role = str(claims.get("role") or claims.get("custom:role") or "").strip().upper()

    if not actor_id or role not in Role.__members__:
        return None
    return Actor(actor_id=actor_id, role=Role(role))


def _require_admin(actor: Actor, operation: str) -> None:
    if actor.role != Role.ADMIN:
        raise PermissionDeniedError(actor.role, operation)


def _load_sample(sample_id: str) -> Sample:
    sample = get_sample(sample_id)
    if sample is None:
        raise NotFoundError(f"No sample found with ID: {sample_id}")
    return sample


def _parse_body(event: dict) -> dict:
    try:
        body = json.loads(event.get("body") or "{}")
    except json.JSONDecodeError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _parse_enum(enum_type, value: str | None, name: str):
    if value is None or value == "":
        return None
    try:
        return enum_type(value.strip().upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"{name} must be one of: {allowed}")


def _parse_bool(value: str | None) -> bool:
    return str(value).strip().lower() == "true"


def _parse_limit(value: str | None) -> int:
    if value is None or value == "":
        return DEFAULT_PAGE_SIZE
    try:
        limit = int(value)
    except ValueError:
        raise ValidationError("limit must be a positive integer")
    if limit < 1:
        raise ValidationError("limit must be a positive integer")
    return limit


# --- Response Helpers ---

def _sample_view(sample: Sample) -> dict:
    return sample.model_dump(mode="json")


def _success_response(status_code: int, data: Any, message: str) -> dict:
    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
            "Access-Control-Allow-Origin": "*",
        },
        "body": json.dumps({
            "success": True,
            "message": message,
            "data": data,
        }),
    }


def _error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict | list | str | None = None,
) -> dict:
    error_body: dict[str, Any] = {
        "success": False,
        "error": {
            "code": code,
            "message": message,
        },
        "timestamp": utcnow().isoformat(),
    }

    if details is not None:
        error_body["error"]["details"] = details

    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
            "Access-Control-Allow-Origin": "*",
        },
        "body": json.dumps(error_body),
    }
