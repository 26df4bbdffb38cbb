"""
clinical_engines.transitions -- Pure state transition functions.

Responsibility:
    Express every workflow state change as ``(state, event) -> new state``:
    record workflow initialization, record step transitions (history,
    status mirroring, next-step recomputation, assignments, estimates),
    blockers, signatures, and generic instance actions.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Callers pass the current
    time and the ``WorkflowDefinition``; persistence is a separate step.

Invariants enforced:
    - History is append-only: every transition returns a record whose
      ``step_history`` is the old tuple plus exactly one entry.
    - Assignments for a step's required roles are replaced, not
      accumulated.
    - Entering a terminal step sets ``actual_completion_time``.

These functions do not authorize.  The guard and the orchestrator check
permission, edge legality and business rules before calling them.
"""

from __future__ import annotations

import hashlib
from dataclasses import replace
from datetime import datetime
from typing import Any

from clinical_engines.permissions import default_record_permissions
from clinical_engines.scheduling import (
    calculate_estimated_completion,
    priority_for_workflow_type,
)
from clinical_engines.tracer import traced_engine
from clinical_kernel.domain.instance import (
    InstanceHistoryEntry,
    InstanceStatus,
    WorkflowInstance,
)
from clinical_kernel.domain.record import (
    AccessControl,
    Assignment,
    Blocker,
    ElectronicSignature,
    MedicalRecord,
    NextStep,
    RecordStatus,
    StepHistoryEntry,
)
from clinical_kernel.domain.roles import Actor, Role
from clinical_kernel.domain.workflow import (
    CREATE_ACTION,
    INITIALIZE_ACTION,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowStep,
    WorkflowType,
)
from clinical_kernel.exceptions import BlockerNotFoundError

S = WorkflowStep
A = WorkflowAction


# ---------------------------------------------------------------------------
# Next-step resolution for generic instances
# ---------------------------------------------------------------------------

CANONICAL_ACTION_TARGETS: dict[str, str] = {
    A.REVIEW.value: S.UNDER_REVIEW.value,
    A.APPROVE.value: S.APPROVED.value,
    A.REJECT.value: S.REJECTED.value,
    A.SUBMIT.value: S.SUBMITTED.value,
    A.FINALIZE.value: S.FINALIZED.value,
    A.REVISE.value: S.REVISION_REQUIRED.value,
    A.ARCHIVE.value: S.ARCHIVED.value,
    A.CANCEL.value: S.CANCELLED.value,
}


def canonical_target(action: str, action_data: dict[str, Any] | None = None) -> str | None:
    if action == A.REVISE.value and (action_data or {}).get("backToDraft"):
        return S.DRAFT.value
    return CANONICAL_ACTION_TARGETS.get(action)


def determine_next_step(
    definition: WorkflowDefinition,
    current_step: str,
    action: str,
    action_data: dict[str, Any] | None = None,
) -> str | None:
    """Pick the target step for ``action``.

    A single registry candidate wins outright.  With several candidates the
    action's canonical step is used (``revise`` goes back to ``draft`` when
    ``action_data["backToDraft"]`` is truthy), falling back to the first
    candidate for actions without one.  The result is not guaranteed to be
    a registry edge (None when nothing matches); the caller checks it.
    """
    candidates = definition.next_steps(current_step, action)
    if len(candidates) == 1:
        return candidates[0]
    target = canonical_target(action, action_data)
    if target is not None:
        return target
    return candidates[0] if candidates else None


# ---------------------------------------------------------------------------
# Record workflow tables
# ---------------------------------------------------------------------------

_RECORD_STATUS_BY_STEP: dict[str, RecordStatus] = {
    S.DRAFT.value: RecordStatus.DRAFT,
    S.DOCTOR_REVIEW.value: RecordStatus.IN_PROGRESS,
    S.NURSE_VERIFY.value: RecordStatus.IN_PROGRESS,
    S.BILLING_REVIEW.value: RecordStatus.COMPLETED,
    S.INSURANCE_PROCESS.value: RecordStatus.COMPLETED,
    S.FINALIZED.value: RecordStatus.FINALIZED,
    S.ARCHIVED.value: RecordStatus.AMENDED,
    S.CANCELLED.value: RecordStatus.CANCELLED,
}

STEP_REQUIRED_ROLES: dict[str, frozenset[Role]] = {
    S.DOCTOR_REVIEW.value: frozenset({Role.DOCTOR}),
    S.NURSE_VERIFY.value: frozenset({Role.NURSE}),
    S.BILLING_REVIEW.value: frozenset({Role.BILLING_STAFF}),
    S.INSURANCE_PROCESS.value: frozenset({Role.INSURANCE_STAFF}),
}


def _edge(step: S, *roles: Role, action: A = A.ADVANCE) -> NextStep:
    return NextStep(step=step.value, allowed_roles=frozenset(roles), action=action.value)


def record_status_for_step(step: str, current: RecordStatus) -> RecordStatus:
    return _RECORD_STATUS_BY_STEP.get(step, current)


def compute_next_steps(
    workflow_type: WorkflowType,
    current_step: str,
    definition: WorkflowDefinition | None = None,
) -> tuple[NextStep, ...]:
    """Steps reachable from ``current_step`` and who may move there.

    The forward path depends on the workflow type (emergency records may be
    finalized straight from doctor review; only insurance-required records
    go through insurance processing).  The registry's ``cancel`` and
    ``archive`` edges from the current step are appended with the roles the
    registry allows for them.
    """
    step = current_step
    edges: list[NextStep] = []

    if step == S.DRAFT.value:
        edges.append(_edge(S.DOCTOR_REVIEW, Role.DOCTOR, Role.ADMIN))
    elif step == S.DOCTOR_REVIEW.value:
        edges.append(_edge(S.NURSE_VERIFY, Role.NURSE, Role.ADMIN))
        if workflow_type == WorkflowType.EMERGENCY:
            edges.append(_edge(S.FINALIZED, Role.DOCTOR, Role.ADMIN))
    elif step == S.NURSE_VERIFY.value:
        edges.append(_edge(S.BILLING_REVIEW, Role.BILLING_STAFF, Role.ADMIN))
    elif step == S.BILLING_REVIEW.value:
        if workflow_type == WorkflowType.INSURANCE_REQUIRED:
            edges.append(_edge(S.INSURANCE_PROCESS, Role.INSURANCE_STAFF, Role.ADMIN))
        else:
            edges.append(_edge(S.FINALIZED, Role.BILLING_STAFF, Role.ADMIN))
    elif step == S.INSURANCE_PROCESS.value:
        edges.append(_edge(S.FINALIZED, Role.INSURANCE_STAFF, Role.ADMIN))
    elif step == S.FINALIZED.value:
        edges.append(_edge(S.ARCHIVED, Role.ADMIN, action=A.ARCHIVE))

    if definition is not None:
        spec = definition.step(step)
        if spec is not None:
            present = {e.step for e in edges}
            for action in (A.CANCEL.value, A.ARCHIVE.value):
                if action not in spec.allowed_actions:
                    continue
                for target in spec.targets(action):
                    if target not in present:
                        edges.append(NextStep(
                            step=target,
                            allowed_roles=spec.roles_for(action),
                            action=action,
                        ))
                        present.add(target)

    return tuple(edges)


def update_assignments(
    access: AccessControl,
    new_step: str,
    actor: Actor,
    now: datetime,
) -> AccessControl:
    """Replace the assignees for ``new_step``'s required roles.

    Existing assignees holding any required role are dropped; the actor is
    added if their role is one of them.  Steps without required roles leave
    assignments untouched.
    """
    required = STEP_REQUIRED_ROLES.get(new_step)
    if not required:
        return access
    kept = tuple(a for a in access.assigned_to if a.role not in required)
    if actor.role in required:
        kept = kept + (Assignment(user=actor.id, role=actor.role, assigned_at=now),)
    return replace(access, assigned_to=kept)


def assign_user(
    record: MedicalRecord,
    user_id: str,
    role: Role,
    now: datetime,
    deadline: datetime | None = None,
) -> MedicalRecord:
    """Assign ``user_id`` in ``role``; an existing identical assignment is refreshed."""
    access = record.access_control
    kept = tuple(
        a for a in access.assigned_to if not (a.user == user_id and a.role == role)
    )
    assignment = Assignment(user=user_id, role=role, assigned_at=now, deadline=deadline)
    return replace(record, access_control=replace(access, assigned_to=kept + (assignment,)))


def _history_metadata(actor: Actor, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    meta: dict[str, Any] = {"user_role": actor.role.value}
    if actor.name:
        meta["user_name"] = actor.name
    if extra:
        meta.update(extra)
    return meta


def initialize_record_workflow(
    record: MedicalRecord,
    actor: Actor,
    workflow_type: WorkflowType,
    now: datetime,
    definition: WorkflowDefinition | None = None,
) -> MedicalRecord:
    """Put a record at the start of its workflow.

    Sets type, priority, owner, the actor's assignment, role grants, a
    synthetic ``create`` history entry and the initial next steps.
    """
    initial = definition.initial_step if definition is not None else S.DRAFT.value
    status = record.workflow_status
    history = status.step_history + (
        StepHistoryEntry(
            step=initial,
            previous_step=None,
            performed_by=actor.id,
            performed_at=now,
            action=CREATE_ACTION,
            comments=f"Medical record created with {workflow_type.value} workflow",
            metadata=_history_metadata(actor),
        ),
    )
    access = record.access_control
    return replace(
        record,
        record_status=record_status_for_step(initial, record.record_status),
        workflow_status=replace(
            status,
            current_step=initial,
            workflow_type=workflow_type,
            priority=priority_for_workflow_type(workflow_type),
            step_history=history,
            next_steps=compute_next_steps(workflow_type, initial, definition),
        ),
        access_control=replace(
            access,
            current_owner=actor.id,
            assigned_to=access.assigned_to + (
                Assignment(user=actor.id, role=actor.role, assigned_at=now),
            ),
            permissions=default_record_permissions(workflow_type),
        ),
    )


@traced_engine("record_transition", "1.0", fingerprint_fields=("new_step", "action"))
def apply_record_transition(
    record: MedicalRecord,
    new_step: str,
    actor: Actor,
    action: str,
    comments: str,
    now: datetime,
    definition: WorkflowDefinition | None = None,
) -> MedicalRecord:
    """Advance ``record`` to ``new_step``.

    Appends one history entry, mirrors the record status, sets the actual
    completion time on finalization or any terminal step, recomputes next
    steps, re-assigns by step role, and sets the estimated completion time
    if it was never set.
    """
    status = record.workflow_status
    old_step = status.current_step

    entry = StepHistoryEntry(
        step=new_step,
        previous_step=old_step,
        performed_by=actor.id,
        performed_at=now,
        action=action,
        comments=comments or "",
        metadata=_history_metadata(actor),
    )

    completed_at = status.actual_completion_time
    terminal = definition is not None and definition.is_terminal(new_step)
    if new_step == S.FINALIZED.value or (terminal and completed_at is None):
        completed_at = now

    estimated = status.estimated_completion_time
    if estimated is None:
        estimated = calculate_estimated_completion(new_step, now)

    return replace(
        record,
        record_status=record_status_for_step(new_step, record.record_status),
        workflow_status=replace(
            status,
            current_step=new_step,
            step_history=status.step_history + (entry,),
            next_steps=compute_next_steps(status.workflow_type, new_step, definition),
            actual_completion_time=completed_at,
            estimated_completion_time=estimated,
        ),
        access_control=update_assignments(record.access_control, new_step, actor, now),
    )


# ---------------------------------------------------------------------------
# Blockers and signatures
# ---------------------------------------------------------------------------


def add_blocker(
    record: MedicalRecord,
    blocker_id: str,
    blocker_type: str,
    reason: str,
    actor: Actor,
    now: datetime,
) -> MedicalRecord:
    blocker = Blocker(
        blocker_id=blocker_id,
        type=blocker_type,
        reason=reason,
        blocked_by=actor.id,
        blocked_at=now,
    )
    status = record.workflow_status
    return replace(
        record,
        workflow_status=replace(status, blockers=status.blockers + (blocker,)),
    )


def resolve_blocker(
    record: MedicalRecord,
    blocker_id: str,
    actor: Actor,
    now: datetime,
) -> MedicalRecord:
    """Mark a blocker resolved.  Resolving an already-resolved blocker is a no-op.

    Raises:
        BlockerNotFoundError: ``blocker_id`` is not on the record.
    """
    status = record.workflow_status
    if not any(b.blocker_id == blocker_id for b in status.blockers):
        raise BlockerNotFoundError(record.record_id, blocker_id)
    blockers = tuple(
        replace(b, resolved_by=actor.id, resolved_at=now)
        if b.blocker_id == blocker_id and b.is_active else b
        for b in status.blockers
    )
    return replace(record, workflow_status=replace(status, blockers=blockers))


def signature_hash(record_id: str, signer_id: str, signed_at: datetime) -> str:
    payload = f"{record_id}|{signer_id}|{signed_at.isoformat()}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def sign_record(record: MedicalRecord, actor: Actor, now: datetime) -> MedicalRecord:
    signature = ElectronicSignature(
        signed_by=actor.id,
        signed_at=now,
        signature_hash=signature_hash(record.record_id, actor.id, now),
    )
    return replace(record, content=replace(record.content, electronic_signature=signature))


# ---------------------------------------------------------------------------
# Generic workflow instances
# ---------------------------------------------------------------------------


def new_workflow_instance(
    definition: WorkflowDefinition,
    instance_id: str,
    entity: dict[str, Any],
    actor: Actor,
    now: datetime,
) -> WorkflowInstance:
    """Create an instance at the definition's initial step with one history entry."""
    entity_id = str(entity.get("id") or entity.get("_id") or "")
    initial = definition.initial_step
    return WorkflowInstance(
        instance_id=instance_id,
        workflow_name=definition.name,
        entity_type=definition.module,
        entity_id=entity_id,
        current_step=initial,
        created_by=actor.id,
        created_at=now,
        status=(
            InstanceStatus.COMPLETED if definition.is_terminal(initial)
            else InstanceStatus.ACTIVE
        ),
        history=(
            InstanceHistoryEntry(
                step=initial,
                action=INITIALIZE_ACTION,
                performed_by=actor.id,
                performed_at=now,
                metadata=_history_metadata(actor),
            ),
        ),
        metadata={
            "entity": {
                "id": entity_id,
                "title": entity.get("title") or entity.get("name") or "Untitled",
                "type": entity.get("type") or definition.module,
            },
            "workflow": {"name": definition.name, "module": definition.module},
        },
    )


def apply_instance_action(
    instance: WorkflowInstance,
    definition: WorkflowDefinition,
    action: str,
    next_step: str,
    actor: Actor,
    now: datetime,
    action_data: dict[str, Any] | None = None,
) -> WorkflowInstance:
    entry = InstanceHistoryEntry(
        step=next_step,
        action=action,
        performed_by=actor.id,
        performed_at=now,
        previous_step=instance.current_step,
        metadata=_history_metadata(actor, {"action_data": dict(action_data or {})}),
    )
    completed = definition.is_terminal(next_step)
    return replace(
        instance,
        current_step=next_step,
        history=instance.history + (entry,),
        updated_at=now,
        status=InstanceStatus.COMPLETED if completed else instance.status,
        completed_at=now if completed else instance.completed_at,
    )
