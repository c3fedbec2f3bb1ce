"""
Unit tests for workflow module (core sample operations)

Tests cover:
- Collection metadata and selected parameters
- Stage batches: missing / extra / duplicate / invalid values, all collected
- Overall status only on the finalizing stage
- Publish / archive / restore and role gates
- Single-stage workflow (submit auto-publishes)
- End-to-end FIELD → LAB scenario
"""

import pytest
from unittest.mock import MagicMock

from waterlab.lifecycle import SINGLE_STAGE
from waterlab.models import (
    Action,
    AuditAction,
    LifecycleStage,
    ParameterDefinition,
    ParameterStatus,
    ValidationError,
    ConfigurationError,
    StateError,
    PermissionDeniedError,
)
from waterlab.workflow import (
    collect_sample,
    submit_measurements,
    required_parameters,
    publish_sample,
    archive_sample,
    restore_sample,
    advance,
)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def field_tested_sample(collected_sample, field_inputs, registry, member, now):
    return submit_measurements(
        collected_sample, Action.FIELD_TEST, field_inputs, registry, member, now=now,
    ).sample


@pytest.fixture
def lab_tested_sample(field_tested_sample, lab_inputs, registry, admin, now):
    return submit_measurements(
        field_tested_sample, Action.LAB_TEST, lab_inputs, registry, admin, now=now,
    ).sample


@pytest.fixture
def published_sample(lab_tested_sample, admin, now):
    return publish_sample(lab_tested_sample, admin, now=now).sample


def _replace(inputs, code, value):
    return [{"code": i["code"], "value": value if i["code"] == code else i["value"]} for i in inputs]


# ============================================================================
# COLLECTION TESTS
# ============================================================================

class TestCollectSample:

    def test_initial_state(self, collected_sample, member, now):
        assert collected_sample.lifecycle_stage == LifecycleStage.COLLECTED
        assert collected_sample.parameters == []
        assert collected_sample.overall_status is None
        assert collected_sample.collected_by == member.actor_id
        assert collected_sample.collected_at == now
        assert collected_sample.is_deleted is False

    def test_emits_created_event(self, member, now):
        result = collect_sample(
            sample_id="SMP-2503-00002",
            actor=member,
            location={"longitude": 77.59, "latitude": 12.97},
            address="Lake inlet",
            now=now,
        )
        assert result.event.action == AuditAction.SAMPLE_CREATED
        assert result.event.sample_id == "SMP-2503-00002"
        assert result.event.actor_id == member.actor_id

    def test_single_stage_starts_in_testing(self, member, now):
        sample = collect_sample(
            sample_id="SMP-2503-00003",
            actor=member,
            location={"longitude": 0, "latitude": 0},
            address="Tap 4",
            workflow=SINGLE_STAGE,
            now=now,
        ).sample
        assert sample.lifecycle_stage == LifecycleStage.TESTING

    @pytest.mark.parametrize("location", [
        {"longitude": 181, "latitude": 0},
        {"longitude": 0, "latitude": -91},
        {"longitude": 0},
    ])
    def test_invalid_location(self, member, location):
        with pytest.raises(ValidationError) as exc_info:
            collect_sample(sample_id="S-1", actor=member, location=location, address="Somewhere")
        assert any(error.startswith("location") for error in exc_info.value.errors)

    @pytest.mark.parametrize("address", ["", "   ", "x" * 501])
    def test_invalid_address(self, member, address):
        with pytest.raises(ValidationError):
            collect_sample(
                sample_id="S-1",
                actor=member,
                location={"longitude": 0, "latitude": 0},
                address=address,
            )

    def test_selected_parameters_normalized(self, member, registry):
        sample = collect_sample(
            sample_id="S-1",
            actor=member,
            location={"longitude": 0, "latitude": 0},
            address="Tap",
            selected_parameters=[" ph", "tds"],
            registry=registry,
        ).sample
        assert sample.selected_parameters == ["PH", "TDS"]

    def test_unknown_selected_parameter(self, member, registry):
        with pytest.raises(ValidationError) as exc_info:
            collect_sample(
                sample_id="S-1",
                actor=member,
                location={"longitude": 0, "latitude": 0},
                address="Tap",
                selected_parameters=["PH", "TDS", "MERCURY"],
                registry=registry,
            )
        assert exc_info.value.errors == ["MERCURY: unknown or inactive parameter"]

    @pytest.mark.parametrize("selected", [[5], ["PH", None], [{"code": "PH"}]])
    def test_non_string_selected_code(self, member, registry, selected):
        with pytest.raises(ValidationError) as exc_info:
            collect_sample(
                sample_id="S-1",
                actor=member,
                location={"longitude": 0, "latitude": 0},
                address="Tap",
                selected_parameters=selected,
                registry=registry,
            )
        assert all(error.startswith("selected_parameters.") for error in exc_info.value.errors)

    @pytest.mark.parametrize("selected,missing_stage", [
        (["PH"], "LAB"),
        (["TDS", "CHLORIDE"], "FIELD"),
    ])
    def test_selection_must_cover_every_measured_stage(self, member, registry, selected, missing_stage):
        with pytest.raises(ValidationError) as exc_info:
            collect_sample(
                sample_id="S-1",
                actor=member,
                location={"longitude": 0, "latitude": 0},
                address="Tap",
                selected_parameters=selected,
                registry=registry,
            )
        assert exc_info.value.errors == [f"selected_parameters: no {missing_stage} parameter selected"]

    def test_single_stage_selection_of_one_stage(self, member, registry):
        sample = collect_sample(
            sample_id="S-1",
            actor=member,
            location={"longitude": 0, "latitude": 0},
            address="Tap",
            selected_parameters=["PH"],
            registry=registry,
            workflow=SINGLE_STAGE,
        ).sample
        assert sample.selected_parameters == ["PH"]

    def test_id_issued_once_valid(self, member, now):
        issued = []

        def issue(created_at):
            issued.append(created_at)
            return "SMP-2503-00009"

        result = collect_sample(
            sample_id=issue,
            actor=member,
            location={"longitude": 0, "latitude": 0},
            address="Tap",
            now=now,
        )

        assert issued == [now]
        assert result.sample.sample_id == "SMP-2503-00009"
        assert result.event.sample_id == "SMP-2503-00009"

    def test_rejected_collection_issues_no_id(self, member, registry):
        issue = MagicMock(return_value="SMP-2503-00009")

        with pytest.raises(ValidationError):
            collect_sample(sample_id=issue, actor=member, location={"longitude": 0}, address="Tap")
        with pytest.raises(ValidationError):
            collect_sample(
                sample_id=issue,
                actor=member,
                location={"longitude": 0, "latitude": 0},
                address="Tap",
                selected_parameters=["PH"],
                registry=registry,
            )

        issue.assert_not_called()


# ============================================================================
# FIELD STAGE TESTS
# ============================================================================

class TestFieldTest:

    def test_success(self, collected_sample, field_inputs, registry, member, now):
        result = submit_measurements(
            collected_sample, Action.FIELD_TEST, field_inputs, registry, member, now=now,
        )
        sample = result.sample

        assert sample.lifecycle_stage == LifecycleStage.FIELD_TESTED
        assert len(sample.parameters) == 5
        assert all(s.status is not None for s in sample.parameters)
        assert sample.overall_status is None
        assert sample.stamps[Action.FIELD_TEST].actor_id == member.actor_id
        assert sample.stamps[Action.FIELD_TEST].at == now

    def test_event(self, collected_sample, field_inputs, registry, member):
        event = submit_measurements(
            collected_sample, Action.FIELD_TEST, field_inputs, registry, member,
        ).event

        assert event.action == AuditAction.SAMPLE_FIELD_TESTED
        assert event.details["from"] == "COLLECTED"
        assert event.details["to"] == "FIELD_TESTED"
        assert event.details["parameters_count"] == 5

    def test_input_sample_not_mutated(self, collected_sample, field_inputs, registry, member):
        submit_measurements(collected_sample, Action.FIELD_TEST, field_inputs, registry, member)
        assert collected_sample.lifecycle_stage == LifecycleStage.COLLECTED
        assert collected_sample.parameters == []

    def test_missing_parameter(self, collected_sample, field_inputs, registry, member):
        with pytest.raises(ValidationError) as exc_info:
            submit_measurements(
                collected_sample, Action.FIELD_TEST, field_inputs[:-1], registry, member,
            )
        assert exc_info.value.errors == ["TURBIDITY: missing required parameter"]
        assert collected_sample.lifecycle_stage == LifecycleStage.COLLECTED

    def test_lab_parameter_in_field_batch(self, collected_sample, field_inputs, registry, member):
        inputs = field_inputs + [{"code": "TDS", "value": 300}]
        with pytest.raises(ValidationError) as exc_info:
            submit_measurements(collected_sample, Action.FIELD_TEST, inputs, registry, member)
        assert exc_info.value.errors == ["TDS: not a FIELD parameter"]

    def test_unknown_parameter(self, collected_sample, field_inputs, registry, member):
        inputs = field_inputs + [{"code": "mercury", "value": 0.001}]
        with pytest.raises(ValidationError) as exc_info:
            submit_measurements(collected_sample, Action.FIELD_TEST, inputs, registry, member)
        assert exc_info.value.errors == ["MERCURY: unknown parameter"]

    def test_duplicate_parameter(self, collected_sample, field_inputs, registry, member):
        inputs = field_inputs + [{"code": "ph", "value": 7.0}]
        with pytest.raises(ValidationError) as exc_info:
            submit_measurements(collected_sample, Action.FIELD_TEST, inputs, registry, member)
        assert exc_info.value.errors == ["PH: submitted more than once"]

    def test_all_problems_reported(self, collected_sample, field_inputs, registry, member):
        inputs = _replace(field_inputs, "PH", "abc")[:-1] + [{"code": "TDS", "value": 1}]
        with pytest.raises(ValidationError) as exc_info:
            submit_measurements(collected_sample, Action.FIELD_TEST, inputs, registry, member)
        errors = exc_info.value.errors
        assert "PH: not a number" in errors
        assert "TDS: not a FIELD parameter" in errors
        assert "TURBIDITY: missing required parameter" in errors

    def test_physical_bound_violation(self, collected_sample, field_inputs, registry, member):
        inputs = _replace(field_inputs, "PH", 15)
        with pytest.raises(ValidationError, match="PH: outside physical bounds"):
            submit_measurements(collected_sample, Action.FIELD_TEST, inputs, registry, member)

    def test_empty_batch(self, collected_sample, registry, member):
        with pytest.raises(ValidationError, match="At least one parameter value is required"):
            submit_measurements(collected_sample, Action.FIELD_TEST, [], registry, member)

    def test_malformed_input(self, collected_sample, registry, member):
        with pytest.raises(ValidationError) as exc_info:
            submit_measurements(collected_sample, Action.FIELD_TEST, [{"value": 7}], registry, member)
        assert exc_info.value.errors[0].startswith("parameters[0].code")

    def test_inactive_parameter_not_required(self, collected_sample, field_inputs, registry, member):
        registry.set_active("TURBIDITY", False)
        sample = submit_measurements(
            collected_sample, Action.FIELD_TEST, field_inputs[:-1], registry, member,
        ).sample
        assert "TURBIDITY" not in sample.snapshot_codes()

    def test_inactive_parameter_rejected(self, collected_sample, field_inputs, registry, member):
        registry.set_active("TURBIDITY", False)
        with pytest.raises(ValidationError) as exc_info:
            submit_measurements(collected_sample, Action.FIELD_TEST, field_inputs, registry, member)
        assert exc_info.value.errors == ["TURBIDITY: parameter is inactive"]

    def test_enum_without_mapping_is_configuration_error(
        self, collected_sample, field_inputs, registry, member,
    ):
        registry.add(ParameterDefinition(code="TASTE", name="Taste", kind="ENUM", stage="FIELD"))
        inputs = field_inputs + [{"code": "TASTE", "value": "Agreeable"}]
        with pytest.raises(ConfigurationError, match="TASTE: no enum mapping configured"):
            submit_measurements(collected_sample, Action.FIELD_TEST, inputs, registry, member)

    def test_repeat_field_test_rejected(self, field_tested_sample, field_inputs, registry, member):
        with pytest.raises(StateError):
            submit_measurements(field_tested_sample, Action.FIELD_TEST, field_inputs, registry, member)

    def test_plain_action_rejected(self, lab_tested_sample, registry, admin):
        with pytest.raises(ValueError, match="does not carry measurements"):
            submit_measurements(lab_tested_sample, Action.PUBLISH, [], registry, admin)


# ============================================================================
# LAB STAGE TESTS
# ============================================================================

class TestLabTest:

    def test_success_sets_overall(self, lab_tested_sample):
        assert lab_tested_sample.lifecycle_stage == LifecycleStage.LAB_TESTED
        assert len(lab_tested_sample.parameters) == 12
        assert lab_tested_sample.overall_status == ParameterStatus.ACCEPTABLE

    def test_field_snapshots_kept_first(self, lab_tested_sample):
        codes = lab_tested_sample.snapshot_codes()
        assert codes[:5] == ["TEMPERATURE", "PH", "APPARENT_COLOUR", "ODOUR", "TURBIDITY"]

    def test_field_verdict_counts_in_overall(
        self, collected_sample, field_inputs, lab_inputs, registry, member, admin,
    ):
        field = submit_measurements(
            collected_sample, Action.FIELD_TEST, _replace(field_inputs, "TURBIDITY", 3), registry, member,
        ).sample
        assert field.overall_status is None

        lab = submit_measurements(field, Action.LAB_TEST, lab_inputs, registry, admin).sample
        assert lab.overall_status == ParameterStatus.PERMISSIBLE

    def test_member_denied(self, field_tested_sample, lab_inputs, registry, member):
        with pytest.raises(PermissionDeniedError):
            submit_measurements(field_tested_sample, Action.LAB_TEST, lab_inputs, registry, member)

    def test_from_collected_rejected(self, collected_sample, lab_inputs, registry, admin):
        with pytest.raises(StateError) as exc_info:
            submit_measurements(collected_sample, Action.LAB_TEST, lab_inputs, registry, admin)
        assert exc_info.value.current == LifecycleStage.COLLECTED
        assert exc_info.value.target == LifecycleStage.LAB_TESTED


# ============================================================================
# SELECTED PARAMETERS TESTS
# ============================================================================

class TestSelectedParameters:

    @pytest.fixture
    def selective_sample(self, member, registry):
        return collect_sample(
            sample_id="S-SEL",
            actor=member,
            location={"longitude": 0, "latitude": 0},
            address="Tap",
            selected_parameters=["PH", "TDS"],
            registry=registry,
        ).sample

    def test_required_narrowed(self, selective_sample, registry):
        assert [d.code for d in required_parameters(selective_sample, registry, "FIELD")] == ["PH"]
        assert [d.code for d in required_parameters(selective_sample, registry, "LAB")] == ["TDS"]

    def test_unselected_parameter_rejected(self, selective_sample, registry, member):
        inputs = [{"code": "PH", "value": 7}, {"code": "ODOUR", "value": "Earthy"}]
        with pytest.raises(ValidationError) as exc_info:
            submit_measurements(selective_sample, Action.FIELD_TEST, inputs, registry, member)
        assert exc_info.value.errors == ["ODOUR: not selected for this sample"]

    def test_flow(self, selective_sample, registry, member, admin):
        field = submit_measurements(
            selective_sample, Action.FIELD_TEST, [{"code": "PH", "value": 7}], registry, member,
        ).sample
        lab = submit_measurements(
            field, Action.LAB_TEST, [{"code": "TDS", "value": 900}], registry, admin,
        ).sample

        assert lab.snapshot_codes() == ["PH", "TDS"]
        assert lab.overall_status == ParameterStatus.PERMISSIBLE

    def test_every_stage_reachable_through_publish(self, selective_sample, registry, member, admin):
        field = submit_measurements(
            selective_sample, Action.FIELD_TEST, [{"code": "PH", "value": 7.2}], registry, member,
        ).sample
        lab = submit_measurements(
            field, Action.LAB_TEST, [{"code": "TDS", "value": 320}], registry, admin,
        ).sample
        published = publish_sample(lab, admin).sample

        assert published.lifecycle_stage == LifecycleStage.PUBLISHED
        assert published.overall_status == ParameterStatus.ACCEPTABLE

    def test_stage_emptied_by_deactivation_advances_on_empty_batch(
        self, selective_sample, registry, member, admin,
    ):
        field = submit_measurements(
            selective_sample, Action.FIELD_TEST, [{"code": "PH", "value": 7.2}], registry, member,
        ).sample
        registry.set_active("TDS", False)

        assert required_parameters(field, registry, "LAB") == []
        lab = submit_measurements(field, Action.LAB_TEST, [], registry, admin).sample

        assert lab.lifecycle_stage == LifecycleStage.LAB_TESTED
        assert lab.snapshot_codes() == ["PH"]
        assert lab.overall_status == ParameterStatus.ACCEPTABLE

    def test_deactivated_selection_still_rejects_submitted_value(
        self, selective_sample, registry, member, admin,
    ):
        field = submit_measurements(
            selective_sample, Action.FIELD_TEST, [{"code": "PH", "value": 7.2}], registry, member,
        ).sample
        registry.set_active("TDS", False)

        with pytest.raises(ValidationError) as exc_info:
            submit_measurements(field, Action.LAB_TEST, [{"code": "TDS", "value": 320}], registry, admin)
        assert exc_info.value.errors == ["TDS: parameter is inactive"]


# ============================================================================
# PUBLISH / ARCHIVE / RESTORE TESTS
# ============================================================================

class TestPublication:

    def test_publish(self, lab_tested_sample, admin):
        result = publish_sample(lab_tested_sample, admin)
        assert result.sample.lifecycle_stage == LifecycleStage.PUBLISHED
        assert result.sample.overall_status == lab_tested_sample.overall_status
        assert result.event.action == AuditAction.SAMPLE_PUBLISHED
        assert Action.PUBLISH in result.sample.stamps

    def test_publish_requires_admin(self, lab_tested_sample, member):
        with pytest.raises(PermissionDeniedError):
            publish_sample(lab_tested_sample, member)

    def test_publish_before_lab_rejected(self, field_tested_sample, admin):
        with pytest.raises(StateError):
            publish_sample(field_tested_sample, admin)

    def test_archive_and_restore(self, published_sample, admin):
        archived = archive_sample(published_sample, admin).sample
        assert archived.lifecycle_stage == LifecycleStage.ARCHIVED
        assert archived.is_deleted is True
        assert len(archived.parameters) == 12

        restored = restore_sample(archived, admin)
        assert restored.sample.lifecycle_stage == LifecycleStage.PUBLISHED
        assert restored.sample.is_deleted is False
        assert restored.event.action == AuditAction.SAMPLE_RESTORED

    def test_restore_requires_archived(self, published_sample, admin):
        with pytest.raises(StateError):
            restore_sample(published_sample, admin)

    def test_advance_rejects_measuring_action(self, collected_sample, admin):
        with pytest.raises(ValueError, match="requires measurements"):
            advance(collected_sample, Action.FIELD_TEST, admin)


# ============================================================================
# SINGLE STAGE TESTS
# ============================================================================

class TestSingleStage:

    @pytest.fixture
    def testing_sample(self, member):
        return collect_sample(
            sample_id="S-SINGLE",
            actor=member,
            location={"longitude": 0, "latitude": 0},
            address="Tap",
            workflow=SINGLE_STAGE,
        ).sample

    def test_submit_publishes_with_status(
        self, testing_sample, field_inputs, lab_inputs, registry, member,
    ):
        inputs = field_inputs + _replace(lab_inputs, "TDS", 2500)
        result = submit_measurements(
            testing_sample, Action.SUBMIT, inputs, registry, member, workflow=SINGLE_STAGE,
        )

        assert result.sample.lifecycle_stage == LifecycleStage.PUBLISHED
        assert result.sample.overall_status == ParameterStatus.NOT_ACCEPTABLE
        assert result.event.action == AuditAction.SAMPLE_TESTED_AND_PUBLISHED

    def test_submit_requires_every_active_parameter(self, testing_sample, field_inputs, registry, member):
        with pytest.raises(ValidationError) as exc_info:
            submit_measurements(
                testing_sample, Action.SUBMIT, field_inputs, registry, member, workflow=SINGLE_STAGE,
            )
        assert len(exc_info.value.errors) == 7


# ============================================================================
# END-TO-END SCENARIO
# ============================================================================

class TestEndToEnd:

    def test_field_then_lab(self, collected_sample, field_inputs, lab_inputs, registry, member, admin):
        # 1. FIELD batch missing one parameter is rejected, sample unchanged
        with pytest.raises(ValidationError) as exc_info:
            submit_measurements(
                collected_sample, Action.FIELD_TEST, field_inputs[:4], registry, member,
            )
        assert "TURBIDITY: missing required parameter" in exc_info.value.errors
        assert collected_sample.lifecycle_stage == LifecycleStage.COLLECTED

        # 2. Complete FIELD batch
        field = submit_measurements(
            collected_sample, Action.FIELD_TEST, field_inputs, registry, member,
        ).sample
        assert field.lifecycle_stage == LifecycleStage.FIELD_TESTED
        assert len(field.parameters) == 5
        assert field.overall_status is None

        # 3. LAB batch with one value over the permissible limit
        lab = submit_measurements(
            field, Action.LAB_TEST, _replace(lab_inputs, "HARDNESS", 750), registry, admin,
        ).sample
        assert lab.lifecycle_stage == LifecycleStage.LAB_TESTED
        assert len(lab.parameters) == 12
        assert lab.overall_status == ParameterStatus.NOT_ACCEPTABLE

        hardness = next(s for s in lab.parameters if s.code == "HARDNESS")
        assert hardness.status == ParameterStatus.NOT_ACCEPTABLE
