"""
Sample lifecycle - transition tables as data.

A Workflow is a list of Transition rows. Each row says which action moves
a sample from which stage to which stage, who may fire it, and what the
action carries (a measurement stage, whether it finalizes the overall
status, which audit fact it emits). Both shipped shapes are rows of the
same machine:

FIELD_LAB:     COLLECTED → FIELD_TESTED → LAB_TESTED → PUBLISHED ⇄ ARCHIVED
SINGLE_STAGE:  TESTING → PUBLISHED ⇄ ARCHIVED  (submit auto-publishes)
"""

from pydantic import BaseModel, ConfigDict

from waterlab.models import (
    Action,
    AuditAction,
    LifecycleStage,
    MeasurementStage,
    Role,
    StateError,
    PermissionDeniedError,
)
from waterlab.config import SAMPLE_WORKFLOW


_ALL_ROLES = frozenset(Role)
_ADMIN_ONLY = frozenset({Role.ADMIN})


class Transition(BaseModel):
    """One edge of the lifecycle table."""
    model_config = ConfigDict(frozen=True)

    action: Action
    source: LifecycleStage
    target: LifecycleStage
    roles: frozenset[Role]
    audit_action: AuditAction

    # Measurement edges only
    measures: bool = False
    stage: MeasurementStage | None = None  # None = every stage
    finalizes: bool = False  # computes overall status


class Workflow(BaseModel):
    """Named lifecycle table with a single initial stage."""
    model_config = ConfigDict(frozen=True)

    name: str
    initial: LifecycleStage
    transitions: tuple[Transition, ...]

    def allowed_targets(self, current: LifecycleStage) -> list[LifecycleStage]:
        return [t.target for t in self.transitions if t.source == current]

    def can_transition(self, current: LifecycleStage, target: LifecycleStage) -> bool:
        return target in self.allowed_targets(current)

    def actions(self) -> list[Action]:
        return list(dict.fromkeys(t.action for t in self.transitions))

    def is_measuring(self, action: Action) -> bool:
        return any(t.measures for t in self.transitions if t.action == action)

    def measured_stages(self) -> list[MeasurementStage | None]:
        """Stages that measurement edges cover, in table order. None means every stage."""
        return list(dict.fromkeys(t.stage for t in self.transitions if t.measures))

    def transition_for(self, current: LifecycleStage, action: Action) -> Transition:
        """
        The edge action fires from current.

        Raises:
            StateError: If action is not available from current. The error
                names the stage the action would have led to.
        """
        candidates = [t for t in self.transitions if t.action == action]
        for transition in candidates:
            if transition.source == current:
                return transition

        if not candidates:
            raise ValueError(f"Workflow {self.name} has no {action.value} transition")
        raise StateError(current, candidates[0].target)

    def authorize(self, current: LifecycleStage, action: Action, role: Role) -> Transition:
        """
        Validates the table and the role gate, in that order.

        Raises:
            StateError: Action not available from current.
            PermissionDeniedError: Role not allowed on this edge.
        """
        transition = self.transition_for(current, action)
        if role not in transition.roles:
            raise PermissionDeniedError(role, action)
        return transition

    def check(self, current: LifecycleStage, target: LifecycleStage) -> None:
        """
        Raises:
            StateError: If the table has no current → target edge.
        """
        if not self.can_transition(current, target):
            raise StateError(current, target)


# --- Shipped Tables ---

FIELD_LAB = Workflow(
    name="FIELD_LAB",
    initial=LifecycleStage.COLLECTED,
    transitions=(
        Transition(
            action=Action.FIELD_TEST,
            source=LifecycleStage.COLLECTED,
            target=LifecycleStage.FIELD_TESTED,
            roles=_ALL_ROLES,
            audit_action=AuditAction.SAMPLE_FIELD_TESTED,
            measures=True,
            stage=MeasurementStage.FIELD,
        ),
        Transition(
            action=Action.LAB_TEST,
            source=LifecycleStage.FIELD_TESTED,
            target=LifecycleStage.LAB_TESTED,
            roles=_ADMIN_ONLY,
            audit_action=AuditAction.SAMPLE_LAB_TESTED,
            measures=True,
            stage=MeasurementStage.LAB,
            finalizes=True,
        ),
        Transition(
            action=Action.PUBLISH,
            source=LifecycleStage.LAB_TESTED,
            target=LifecycleStage.PUBLISHED,
            roles=_ADMIN_ONLY,
            audit_action=AuditAction.SAMPLE_PUBLISHED,
        ),
        Transition(
            action=Action.ARCHIVE,
            source=LifecycleStage.PUBLISHED,
            target=LifecycleStage.ARCHIVED,
            roles=_ADMIN_ONLY,
            audit_action=AuditAction.SAMPLE_ARCHIVED,
        ),
        Transition(
            action=Action.RESTORE,
            source=LifecycleStage.ARCHIVED,
            target=LifecycleStage.PUBLISHED,
            roles=_ADMIN_ONLY,
            audit_action=AuditAction.SAMPLE_RESTORED,
        ),
    ),
)

SINGLE_STAGE = Workflow(
    name="SINGLE_STAGE",
    initial=LifecycleStage.TESTING,
    transitions=(
        Transition(
            action=Action.SUBMIT,
            source=LifecycleStage.TESTING,
            target=LifecycleStage.PUBLISHED,
            roles=_ALL_ROLES,
            audit_action=AuditAction.SAMPLE_TESTED_AND_PUBLISHED,
            measures=True,
            stage=None,
            finalizes=True,
        ),
        Transition(
            action=Action.ARCHIVE,
            source=LifecycleStage.PUBLISHED,
            target=LifecycleStage.ARCHIVED,
            roles=_ADMIN_ONLY,
            audit_action=AuditAction.SAMPLE_ARCHIVED,
        ),
        Transition(
            action=Action.RESTORE,
            source=LifecycleStage.ARCHIVED,
            target=LifecycleStage.PUBLISHED,
            roles=_ADMIN_ONLY,
            audit_action=AuditAction.SAMPLE_RESTORED,
        ),
    ),
)

WORKFLOWS: dict[str, Workflow] = {
    FIELD_LAB.name: FIELD_LAB,
    SINGLE_STAGE.name: SINGLE_STAGE,
}


def get_workflow(name: str | None = None) -> Workflow:
    """Workflow by name, defaulting to the configured one."""
    key = (name or SAMPLE_WORKFLOW).strip().upper()
    try:
        return WORKFLOWS[key]
    except KeyError:
        raise ValueError(f"Unknown workflow: {key}. Must be one of {sorted(WORKFLOWS)}")
