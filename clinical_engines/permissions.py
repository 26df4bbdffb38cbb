"""
clinical_engines.permissions -- Pure permission evaluation.

Responsibility:
    Answer the two registry questions ("may role R perform action A from
    step S?" and "is S -> S' via A a legal edge?") and the record-level
    questions (assignment, per-capability grants, next-step membership).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import clinical_kernel/domain/ types.

Invariants enforced:
    - Fail closed: an unknown workflow, step or action is never permitted.
    - Role authority and edge legality are evaluated independently so that
      transition-graph correctness is testable without an identity.
"""

from __future__ import annotations

from enum import Enum

from clinical_kernel.domain.record import MedicalRecord, NextStep
from clinical_kernel.domain.roles import Actor, RecordPermission, Role
from clinical_kernel.domain.workflow import (
    WorkflowDefinition,
    WorkflowStep,
    WorkflowType,
)


class AccessBasis(str, Enum):
    """Why an actor was allowed past the assignment check."""

    ADMIN_OVERRIDE = "admin_override"
    OWNER_PERMISSION = "owner_permission"
    ASSIGNED = "assigned"


def can_perform_workflow_action(
    definition: WorkflowDefinition | None,
    role: Role | None,
    step: str,
    action: str,
) -> bool:
    """True iff ``action`` is allowed at ``step`` and ``role`` may perform it."""
    if definition is None or role is None:
        return False
    spec = definition.step(step)
    if spec is None or action not in spec.allowed_actions:
        return False
    return role in spec.roles_for(action)


def is_valid_workflow_transition(
    definition: WorkflowDefinition | None,
    from_step: str,
    to_step: str | None,
    action: str,
) -> bool:
    """True iff ``to_step`` is a registry target of ``(from_step, action)``."""
    if definition is None or to_step is None:
        return False
    return to_step in definition.next_steps(from_step, action)


def access_basis(record: MedicalRecord, actor: Actor) -> AccessBasis | None:
    """Classify the actor's standing on the record; None if they have none."""
    if actor.is_admin:
        return AccessBasis.ADMIN_OVERRIDE
    if record.access_control.current_owner == actor.id:
        return AccessBasis.OWNER_PERMISSION
    if record.access_control.is_assigned(actor.id):
        return AccessBasis.ASSIGNED
    return None


def can_user_perform_action(
    record: MedicalRecord,
    actor: Actor,
    permission: RecordPermission | str,
) -> bool:
    """Capability check: the actor must be assigned and their role granted.

    Only ``read``/``edit``/``approve``/``reject`` are capabilities; anything
    else is refused.
    """
    if not record.access_control.is_assigned(actor.id):
        return False
    try:
        capability = RecordPermission(permission)
    except ValueError:
        return False
    return actor.role in record.access_control.roles_with(capability)


def find_next_step(record: MedicalRecord, new_step: str) -> NextStep | None:
    for candidate in record.workflow_status.next_steps:
        if candidate.step == new_step:
            return candidate
    return None


def can_user_transition_step(
    record: MedicalRecord,
    actor: Actor,
    new_step: str,
) -> bool:
    """Assigned, owner or admin, and ``new_step`` is open to the actor's role."""
    if access_basis(record, actor) is None:
        return False
    candidate = find_next_step(record, new_step)
    return candidate is not None and actor.role in candidate.allowed_roles


_ROLE_STEPS: dict[Role, tuple[str, ...]] = {
    Role.DOCTOR: (WorkflowStep.DOCTOR_REVIEW.value,),
    Role.NURSE: (WorkflowStep.NURSE_VERIFY.value,),
    Role.BILLING_STAFF: (WorkflowStep.BILLING_REVIEW.value,),
    Role.INSURANCE_STAFF: (WorkflowStep.INSURANCE_PROCESS.value,),
    Role.ADMIN: (
        WorkflowStep.DOCTOR_REVIEW.value,
        WorkflowStep.NURSE_VERIFY.value,
        WorkflowStep.BILLING_REVIEW.value,
        WorkflowStep.INSURANCE_PROCESS.value,
    ),
}


def role_steps(role: Role) -> tuple[str, ...]:
    """Record workflow steps a role works on (dashboard ``can_review``)."""
    return _ROLE_STEPS.get(role, ())


def default_record_permissions(
    workflow_type: WorkflowType,
) -> dict[RecordPermission, frozenset[Role]]:
    """Role grants a record starts with, by workflow type."""
    grants: dict[RecordPermission, set[Role]] = {
        RecordPermission.READ: {Role.DOCTOR, Role.NURSE, Role.ADMIN},
        RecordPermission.EDIT: {Role.DOCTOR, Role.NURSE},
        RecordPermission.APPROVE: {Role.DOCTOR, Role.ADMIN},
        RecordPermission.REJECT: {Role.DOCTOR, Role.ADMIN},
    }
    if workflow_type == WorkflowType.INSURANCE_REQUIRED:
        grants[RecordPermission.READ].add(Role.INSURANCE_STAFF)
        grants[RecordPermission.APPROVE].add(Role.INSURANCE_STAFF)
    if workflow_type == WorkflowType.EMERGENCY:
        grants[RecordPermission.EDIT].add(Role.ADMIN)
    return {k: frozenset(v) for k, v in grants.items()}
