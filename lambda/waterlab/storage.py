"""
Storage layer - DynamoDB operations for samples, parameters, and counters.

Handles sample persistence with optimistic concurrency on the lifecycle
stage, parameter definition reads and writes, the atomic sequence used
for sample ids, and audit fact writes. All database interaction is
isolated here.
"""

import base64
import json
import logging
from decimal import Decimal
from typing import Any

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from waterlab.models import (
    AuditEvent,
    LifecycleStage,
    ParameterDefinition,
    ParameterStatus,
    Sample,
    SamplePage,
    ConflictError,
    StorageError,
)
from waterlab.registry import ParameterRegistry
from waterlab.config import (
    SAMPLES_TABLE,
    PARAMETERS_TABLE,
    COUNTERS_TABLE,
    AUDIT_TABLE,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
)

logger = logging.getLogger(__name__)


# --- DynamoDB resource cache ---
# Initialized once per Lambda container, reused across invocations.

_dynamodb = None
_tables: dict[str, Any] = {}


def _get_table(name: str):
    """Lazy-initialized DynamoDB table with caching."""
    global _dynamodb

    if name in _tables:
        return _tables[name]

    if _dynamodb is None:
        _dynamodb = boto3.resource("dynamodb")
    _tables[name] = _dynamodb.Table(name)
    return _tables[name]


# --- Samples ---

def save_sample(sample: Sample, expected_stage: LifecycleStage | str | None = None) -> Sample:
    """
    Persists a sample.

    expected_stage=None creates the record and fails if the id exists.
    Otherwise the write only succeeds while the stored sample is still in
    expected_stage, so two concurrent transitions cannot both land.

    Raises:
        ConflictError: Precondition failed (id taken or stage moved on).
        StorageError: If DynamoDB write fails.
    """
    kwargs: dict[str, Any] = {"Item": _to_dynamodb(sample.model_dump(mode="json"))}

    if expected_stage is None:
        kwargs["ConditionExpression"] = "attribute_not_exists(sample_id)"
    else:
        kwargs["ConditionExpression"] = "lifecycle_stage = :expected"
        kwargs["ExpressionAttributeValues"] = {
            ":expected": LifecycleStage(expected_stage).value,
        }

    try:
        _get_table(SAMPLES_TABLE).put_item(**kwargs)
        return sample
    except ClientError as e:
        if _is_condition_failure(e):
            logger.warning(
                "Conditional write failed for sample %s (expected stage %s)",
                sample.sample_id, expected_stage,
            )
            if expected_stage is None:
                raise ConflictError(f"Sample {sample.sample_id} already exists")
            raise ConflictError(
                f"Sample {sample.sample_id} is no longer in {LifecycleStage(expected_stage).value}"
            )
        raise StorageError(f"Failed to save sample {sample.sample_id}: {e}")
    except Exception as e:
        raise StorageError(f"Failed to save sample {sample.sample_id}: {e}")


def get_sample(sample_id: str) -> Sample | None:
    """
    Retrieves sample by ID.

    Returns None if sample does not exist.

    Raises:
        StorageError: If DynamoDB read fails.
    """
    try:
        response = _get_table(SAMPLES_TABLE).get_item(Key={"sample_id": sample_id})

        if "Item" not in response:
            return None

        return Sample.model_validate(_from_dynamodb(response["Item"]))
    except Exception as e:
        raise StorageError(f"Failed to retrieve sample {sample_id}: {e}")


def list_samples(
    lifecycle_stage: LifecycleStage | str | None = None,
    overall_status: ParameterStatus | str | None = None,
    include_deleted: bool = False,
    limit: int = DEFAULT_PAGE_SIZE,
    cursor: str | None = None,
    collected_by: str | None = None,
) -> SamplePage:
    """
    One page of samples, newest id first within the page.

    Archived samples are excluded unless include_deleted is set, and
    collected_by limits the page to one collector's samples. A page may
    hold fewer than limit items (filters apply after the read); keep
    following cursor until it comes back None.

    Raises:
        StorageError: If DynamoDB scan fails or cursor is malformed.
    """
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    kwargs: dict[str, Any] = {"Limit": limit}

    condition = None
    if not include_deleted:
        condition = _and(condition, Attr("is_deleted").eq(False))
    if lifecycle_stage is not None:
        condition = _and(condition, Attr("lifecycle_stage").eq(LifecycleStage(lifecycle_stage).value))
    if overall_status is not None:
        condition = _and(condition, Attr("overall_status").eq(ParameterStatus(overall_status).value))
    if collected_by is not None:
        condition = _and(condition, Attr("collected_by").eq(collected_by))
    if condition is not None:
        kwargs["FilterExpression"] = condition

    try:
        if cursor:
            kwargs["ExclusiveStartKey"] = _decode_cursor(cursor)

        response = _get_table(SAMPLES_TABLE).scan(**kwargs)
        items = [Sample.model_validate(_from_dynamodb(item)) for item in response.get("Items", [])]
        items.sort(key=lambda s: s.sample_id, reverse=True)

        next_key = response.get("LastEvaluatedKey")
        return SamplePage(items=items, cursor=_encode_cursor(next_key) if next_key else None)
    except Exception as e:
        raise StorageError(f"Failed to list samples: {e}")


# --- Parameters ---

def get_parameter(code: str) -> ParameterDefinition | None:
    """
    Retrieves a parameter definition by code. None if it does not exist.

    Raises:
        StorageError: If DynamoDB read fails.
    """
    code = code.strip().upper()
    try:
        response = _get_table(PARAMETERS_TABLE).get_item(Key={"code": code})

        if "Item" not in response:
            return None

        return ParameterDefinition.model_validate(_from_dynamodb(response["Item"]))
    except Exception as e:
        raise StorageError(f"Failed to retrieve parameter {code}: {e}")


def list_parameters() -> list[ParameterDefinition]:
    """
    Every stored parameter definition, active or not.

    Raises:
        StorageError: If DynamoDB scan fails.
    """
    try:
        table = _get_table(PARAMETERS_TABLE)
        response = table.scan()
        items = response.get("Items", [])

        while "LastEvaluatedKey" in response:
            response = table.scan(ExclusiveStartKey=response["LastEvaluatedKey"])
            items.extend(response.get("Items", []))

        return [ParameterDefinition.model_validate(_from_dynamodb(item)) for item in items]
    except Exception as e:
        raise StorageError(f"Failed to list parameters: {e}")


def load_registry() -> ParameterRegistry:
    """Registry over the current parameter table."""
    return ParameterRegistry(list_parameters())


def save_parameter(definition: ParameterDefinition, create: bool = False) -> ParameterDefinition:
    """
    Persists a parameter definition. Snapshots already embedded in
    samples are separate copies and are not affected.

    Raises:
        ConflictError: create=True and the code already exists.
        StorageError: If DynamoDB write fails.
    """
    kwargs: dict[str, Any] = {"Item": _to_dynamodb(definition.model_dump(mode="json"))}
    if create:
        kwargs["ConditionExpression"] = "attribute_not_exists(code)"

    try:
        _get_table(PARAMETERS_TABLE).put_item(**kwargs)
        return definition
    except ClientError as e:
        if _is_condition_failure(e):
            raise ConflictError(f"Parameter {definition.code} already exists")
        raise StorageError(f"Failed to save parameter {definition.code}: {e}")
    except Exception as e:
        raise StorageError(f"Failed to save parameter {definition.code}: {e}")


# --- Counters ---

def next_sequence(name: str) -> int:
    """
    Atomically increments and returns the named counter (first value 1).

    Raises:
        StorageError: If DynamoDB update fails.
    """
    try:
        response = _get_table(COUNTERS_TABLE).update_item(
            Key={"name": name},
            UpdateExpression="ADD #value :one",
            ExpressionAttributeNames={"#value": "value"},
            ExpressionAttributeValues={":one": 1},
            ReturnValues="UPDATED_NEW",
        )
        return int(response["Attributes"]["value"])
    except Exception as e:
        raise StorageError(f"Failed to increment counter {name}: {e}")


# --- Audit ---

def save_audit_event(event: AuditEvent) -> AuditEvent:
    """
    Raises:
        StorageError: If DynamoDB write fails.
    """
    try:
        _get_table(AUDIT_TABLE).put_item(Item=_to_dynamodb(event.model_dump(mode="json")))
        return event
    except Exception as e:
        raise StorageError(f"Failed to save audit event {event.event_id}: {e}")


def clear_table_cache() -> None:
    """Clears cached DynamoDB resource and tables. Testing only."""
    global _dynamodb
    _dynamodb = None
    _tables.clear()


# --- Internal ---

def _is_condition_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _and(left, right):
    return right if left is None else left & right


def _encode_cursor(key: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(_from_dynamodb(key)).encode()).decode()


def _decode_cursor(cursor: str) -> dict:
    return _to_dynamodb(json.loads(base64.urlsafe_b64decode(cursor.encode())))


def _to_dynamodb(data: dict) -> dict:
    """Convert floats to Decimal for DynamoDB compatibility."""
    return json.loads(json.dumps(data), parse_float=Decimal)


def _from_dynamodb(data: Any) -> Any:
    """Convert DynamoDB Decimals back to int or float."""
    if isinstance(data, dict):
        return {key: _from_dynamodb(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_from_dynamodb(value) for value in data]
    if isinstance(data, Decimal):
        if data == data.to_integral_value() and data.as_tuple().exponent >= 0:
            return int(data)
        return float(data)
    return data
