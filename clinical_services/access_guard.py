"""
clinical_services.access_guard -- Access & Blocker Guard.

Responsibility:
    Boundary pre-checks for record transitions and request-level workflow
    checks.  Each check raises the most specific error at the first
    failure; no check is skipped to fail open.

Architecture position:
    Services layer.  Consumed by ``WorkflowOrchestrator`` and directly by
    the (out-of-scope) HTTP layer.  Delegates every decision to the pure
    engines in ``clinical_engines.permissions`` and
    ``clinical_engines.scheduling``.

Record check order:

    1. identity            -> UnauthorizedError
    2. admin / owner       -> bypass assignment and capability checks
    3. assignment          -> NotAssignedError
    4. capability          -> PermissionDeniedError  (explicit permission only)
    5. active blockers     -> WorkflowLockedError    (admins bypass)
    6. overdue             -> warning, never an error
    7. next-step / edge    -> InvalidTransitionError
    8. role for next step  -> PermissionDeniedError
"""

from __future__ import annotations

from datetime import datetime

from clinical_config.registry import WorkflowRegistry
from clinical_engines.permissions import (
    AccessBasis,
    access_basis,
    can_perform_workflow_action,
    can_user_perform_action,
    find_next_step,
    is_valid_workflow_transition,
)
from clinical_engines.scheduling import is_overdue
from clinical_kernel.domain.clock import Clock, SystemClock
from clinical_kernel.domain.record import MedicalRecord, NextStep
from clinical_kernel.domain.roles import Actor, RecordPermission
from clinical_kernel.domain.workflow import RECORD_WORKFLOW_NAME
from clinical_kernel.exceptions import (
    InvalidTransitionError,
    MissingWorkflowActionError,
    MissingWorkflowStepError,
    NotAssignedError,
    PermissionDeniedError,
    UnauthorizedError,
    WorkflowLockedError,
)
from clinical_kernel.logging_config import get_logger
from clinical_services.outcomes import (
    WARNING_OVERDUE,
    TransitionAuthorization,
    WorkflowContext,
    WorkflowWarning,
)

logger = get_logger("services.access_guard")


class AccessGuard:
    """Record and request guards bound to one registry and clock."""

    def __init__(
        self,
        registry: WorkflowRegistry,
        clock: Clock | None = None,
        record_workflow: str = RECORD_WORKFLOW_NAME,
    ):
        self._registry = registry
        self._clock = clock or SystemClock()
        self._record_workflow = record_workflow

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @staticmethod
    def require_actor(actor: Actor | dict | None, operation: str = "workflow action") -> Actor:
        """Return an ``Actor``; identity mappings are parsed at this boundary."""
        if isinstance(actor, Actor):
            return actor
        if not actor:
            raise UnauthorizedError(operation)
        return Actor.from_identity(actor)

    # ------------------------------------------------------------------
    # Record checks
    # ------------------------------------------------------------------

    def check_record_access(
        self,
        record: MedicalRecord,
        actor: Actor,
        permission: RecordPermission | str | None = None,
    ) -> AccessBasis:
        """Establish the actor's standing on the record.

        Admins and the current owner bypass both the assignment and the
        capability check.  Everyone else must be assigned and, when
        ``permission`` is given, hold that capability.
        """
        basis = access_basis(record, actor)
        if basis is None:
            logger.info(
                "record_access_denied",
                extra={"record_id": record.record_id, "actor_id": actor.id},
            )
            raise NotAssignedError(actor.id, record.record_id)

        if permission is not None and basis is AccessBasis.ASSIGNED:
            if not can_user_perform_action(record, actor, permission):
                raise PermissionDeniedError(
                    role=actor.role.value,
                    action=str(getattr(permission, "value", permission)),
                    step=record.current_step,
                )
        return basis

    def check_transition(
        self,
        record: MedicalRecord,
        actor: Actor,
        new_step: str,
        action: str | None = None,
    ) -> NextStep:
        """``new_step`` must be one of the record's next steps, a registry
        edge, and open to the actor's role."""
        workflow = self._registry.get_workflow(self._record_workflow)
        current = record.current_step
        candidate = find_next_step(record, new_step)
        resolved_action = action or (candidate.action if candidate else None) or "advance"

        if candidate is None or (action is not None and candidate.action != action):
            raise InvalidTransitionError(
                workflow.name, current, new_step, resolved_action,
                reason=f"'{new_step}' is not a next step of '{current}'",
            )
        if not is_valid_workflow_transition(workflow, current, new_step, resolved_action):
            raise InvalidTransitionError(
                workflow.name, current, new_step, resolved_action,
                reason="no such edge in the workflow definition",
            )
        if actor.role not in candidate.allowed_roles or not can_perform_workflow_action(
            workflow, actor.role, current, resolved_action
        ):
            raise PermissionDeniedError(
                role=actor.role.value,
                action=resolved_action,
                step=current,
                workflow=workflow.name,
                target_step=new_step,
            )
        return candidate

    def check_blockers(
        self,
        record: MedicalRecord,
        actor: Actor,
        now: datetime | None = None,
    ) -> tuple[WorkflowWarning, ...]:
        """Reject non-admins on active blockers; report overdue as a warning."""
        active = record.workflow_status.active_blockers
        if active and not actor.is_admin:
            descriptions = [f"{b.type}: {b.reason}" for b in active]
            logger.info(
                "workflow_locked",
                extra={"record_id": record.record_id, "blocker_count": len(active)},
            )
            raise WorkflowLockedError(record.record_id, descriptions)

        now = now or self._clock.now()
        if not is_overdue(record, now):
            return ()
        logger.warning(
            "record_overdue",
            extra={
                "record_id": record.record_id,
                "estimated_completion_time": record.workflow_status.estimated_completion_time,
            },
        )
        return (
            WorkflowWarning(
                type=WARNING_OVERDUE,
                message="This medical record is past its estimated completion time",
                details={
                    "estimated_time": record.workflow_status.estimated_completion_time,
                    "current_time": now,
                },
            ),
        )

    def authorize_transition(
        self,
        record: MedicalRecord,
        actor: Actor,
        new_step: str,
        action: str | None = None,
        permission: RecordPermission | str | None = None,
    ) -> TransitionAuthorization:
        """Run every record check in order and return the verdict."""
        basis = self.check_record_access(record, actor, permission)
        warnings = self.check_blockers(record, actor)
        candidate = self.check_transition(record, actor, new_step, action)
        return TransitionAuthorization(
            basis=basis,
            next_step=candidate,
            action=action or candidate.action,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Request-level guards
    # ------------------------------------------------------------------

    def validate_workflow_state(self, workflow_name: str) -> WorkflowContext:
        """
        Raises:
            WorkflowNotFoundError: ``workflow_name`` is not registered.
        """
        workflow = self._registry.get_workflow(workflow_name)
        return WorkflowContext(workflow=workflow.name, module=workflow.module)

    def require_workflow_permission(
        self,
        workflow_name: str,
        current_step: str | None,
        action: str | None,
        actor: Actor | dict | None,
    ) -> WorkflowContext:
        actor = self.require_actor(actor)
        if not current_step:
            raise MissingWorkflowStepError("current_step")
        if not action:
            raise MissingWorkflowActionError()
        workflow = self._registry.get_workflow(workflow_name)
        if not can_perform_workflow_action(workflow, actor.role, current_step, action):
            logger.info(
                "workflow_permission_denied",
                extra={
                    "workflow": workflow_name,
                    "current_step": current_step,
                    "action": action,
                    "role": actor.role.value,
                },
            )
            raise PermissionDeniedError(
                role=actor.role.value,
                action=action,
                step=current_step,
                workflow=workflow_name,
            )
        return WorkflowContext(
            workflow=workflow.name,
            module=workflow.module,
            current_step=current_step,
            action=action,
            role=actor.role,
        )

    def require_valid_transition(
        self,
        workflow_name: str,
        current_step: str | None,
        new_step: str | None,
        action: str | None,
    ) -> WorkflowContext:
        if not current_step:
            raise MissingWorkflowStepError("current_step")
        if not new_step:
            raise MissingWorkflowStepError("new_step")
        if not action:
            raise MissingWorkflowActionError()
        workflow = self._registry.get_workflow(workflow_name)
        if not is_valid_workflow_transition(workflow, current_step, new_step, action):
            raise InvalidTransitionError(workflow_name, current_step, new_step, action)
        return WorkflowContext(
            workflow=workflow.name,
            module=workflow.module,
            current_step=current_step,
            action=action,
            new_step=new_step,
        )
