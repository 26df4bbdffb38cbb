"""
clinical_services.workflow_orchestrator -- Workflow Orchestrator.

Responsibility:
    Drives generic workflow instances and medical records through their
    workflows: load, check, apply the pure transition, persist, commit,
    trace, audit.  Also serves the read-only dashboard and statistics
    queries.

Architecture position:
    Services layer.  Thin coordinator -- permission and edge decisions are
    delegated to ``AccessGuard`` and ``clinical_engines.permissions``,
    content preconditions to ``BusinessRuleValidator``, state changes to
    the pure functions in ``clinical_engines.transitions``, persistence to
    the injected record repository and instance store.

Invariants enforced:
    - Atomicity: every mutating call is load-check-apply-save-commit.  Saves
      are version-checked, so two callers starting from the same version
      cannot both commit.
    - Nothing is written when a check fails or the caller cancels; the
      cancellation token is polled after the load and immediately before
      the save.
    - Audit writes happen after the commit; a failing audit sink is logged
      (``audit_sink_failed``) and never propagated.
    - Every transition attempt emits one ``workflow_transition`` trace
      record with an outcome code.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from clinical_config import get_workflow_registry
from clinical_config.registry import WorkflowRegistry
from clinical_config.settings import Settings, load_settings
from clinical_engines.business_rules import (
    BusinessRuleValidator,
    default_business_rule_validator,
)
from clinical_engines.permissions import (
    AccessBasis,
    can_perform_workflow_action,
    is_valid_workflow_transition,
    role_steps,
)
from clinical_engines.scheduling import (
    COMPLETED_STEPS,
    is_overdue,
    sort_by_priority,
    workflow_progress,
)
from clinical_engines.transitions import (
    add_blocker,
    apply_instance_action,
    apply_record_transition,
    assign_user,
    determine_next_step,
    initialize_record_workflow,
    new_workflow_instance,
    resolve_blocker,
    sign_record,
)
from clinical_kernel.db.immutability import register_immutability_listeners
from clinical_kernel.domain.cancellation import CancellationToken, check_cancelled
from clinical_kernel.domain.clock import Clock, SystemClock
from clinical_kernel.domain.instance import InstanceStatus, WorkflowInstance
from clinical_kernel.domain.record import MedicalRecord
from clinical_kernel.domain.roles import Actor, RecordPermission, Role
from clinical_kernel.domain.workflow import (
    RECORD_WORKFLOW_NAME,
    Priority,
    WorkflowType,
    action_description,
    action_display_name,
)
from clinical_kernel.exceptions import (
    BusinessRuleFailedError,
    ClinicalWorkflowError,
    InvalidTransitionError,
    MissingWorkflowActionError,
    MissingWorkflowStepError,
    NotAssignedError,
    OperationCancelledError,
    OptimisticLockError,
    PermissionDeniedError,
    RecordNotFoundError,
    ResourceError,
    WorkflowInstanceNotFoundError,
    WorkflowLockedError,
)
from clinical_kernel.logging_config import LogContext, get_logger
from clinical_kernel.services.instance_store import (
    InMemoryInstanceStore,
    SqlInstanceStore,
    WorkflowInstanceStore,
)
from clinical_kernel.services.record_repository import (
    MedicalRecordRepository,
    SqlMedicalRecordRepository,
)
from clinical_services.access_guard import AccessGuard
from clinical_services.audit import AuditAction, AuditRecord, AuditSink, LoggingAuditSink
from clinical_services.outcomes import TransitionOutcome

logger = get_logger("services.workflow_orchestrator")

# Trace message and outcome codes for structured logging and traceability
TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_PERMISSION_DENIED = "permission_denied"
OUTCOME_NOT_ASSIGNED = "not_assigned"
OUTCOME_INVALID_TRANSITION = "invalid_transition"
OUTCOME_BUSINESS_RULE_FAILED = "business_rule_failed"
OUTCOME_LOCKED = "locked"
OUTCOME_OPTIMISTIC_LOCK_CONFLICT = "optimistic_lock_conflict"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_ERROR = "error"

_OUTCOME_BY_ERROR: tuple[tuple[type[ClinicalWorkflowError], str], ...] = (
    (PermissionDeniedError, OUTCOME_PERMISSION_DENIED),
    (NotAssignedError, OUTCOME_NOT_ASSIGNED),
    (InvalidTransitionError, OUTCOME_INVALID_TRANSITION),
    (BusinessRuleFailedError, OUTCOME_BUSINESS_RULE_FAILED),
    (WorkflowLockedError, OUTCOME_LOCKED),
    (OptimisticLockError, OUTCOME_OPTIMISTIC_LOCK_CONFLICT),
    (OperationCancelledError, OUTCOME_CANCELLED),
    (ResourceError, OUTCOME_NOT_FOUND),
)

ENTITY_MEDICAL_RECORD = "medical_record"
ENTITY_WORKFLOW_INSTANCE = "workflow_instance"

PENDING_TASK_LIMIT = 10
_HIGH_PRIORITIES = frozenset({Priority.HIGH, Priority.URGENT})


def _outcome_for(exc: BaseException) -> str:
    for error_type, outcome in _OUTCOME_BY_ERROR:
        if isinstance(exc, error_type):
            return outcome
    return OUTCOME_ERROR


def _emit_workflow_trace(
    workflow_name: str,
    action: str | None,
    entity_type: str,
    entity_id: str,
    from_step: str | None,
    outcome: str,
    reason: str,
    duration_ms: float,
    to_step: str | None = None,
    outcome_sink: Callable[[dict], None] | None = None,
) -> None:
    """Emit a structured workflow transition record for traceability."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "ts": datetime.now(UTC).isoformat(),
        "workflow": workflow_name,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "from_step": from_step,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
    }
    if to_step is not None:
        record["to_step"] = to_step
    record.update(LogContext.get_all())
    # LogRecord reserves "message"; use log msg as first arg, not in extra
    extra_for_log = {k: v for k, v in record.items() if k != "message"}
    if outcome == OUTCOME_SUCCESS:
        logger.info("workflow_transition", extra=extra_for_log)
    else:
        logger.warning("workflow_transition", extra=extra_for_log)
    record["message"] = "workflow_transition"
    if outcome_sink is not None:
        outcome_sink(record)


class WorkflowOrchestrator:
    """
    Coordinates workflow instances and medical record workflows.

    Contract:
        Constructed with its collaborators; holds no global state.  Several
        independent orchestrators may coexist (one per test, one per
        tenant, ...).
    """

    def __init__(
        self,
        registry: WorkflowRegistry,
        records: MedicalRecordRepository,
        instances: WorkflowInstanceStore,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        rule_validator: BusinessRuleValidator | None = None,
        guard: AccessGuard | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
        record_workflow: str = RECORD_WORKFLOW_NAME,
    ):
        self._registry = registry
        self._records = records
        self._instances = instances
        self._clock = clock or SystemClock()
        self._audit_sink = audit_sink
        self._rules = rule_validator or default_business_rule_validator()
        self._guard = guard or AccessGuard(registry, self._clock, record_workflow)
        self._outcome_sink = outcome_sink
        self._record_workflow = record_workflow

    @property
    def guard(self) -> AccessGuard:
        return self._guard

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    def _audit(self, event: AuditRecord) -> None:
        if self._audit_sink is None:
            return
        try:
            self._audit_sink.record(event)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "audit_sink_failed",
                extra={
                    "audit_action": event.action.value,
                    "entity_type": event.entity_type,
                    "entity_id": event.entity_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )

    def _save_record(self, record: MedicalRecord) -> MedicalRecord:
        try:
            saved = self._records.save(record)
            self._records.commit()
        except Exception:
            self._records.rollback()
            raise
        return saved

    def _put_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        try:
            stored = self._instances.put(instance)
            self._instances.commit()
        except Exception:
            self._instances.rollback()
            raise
        return stored

    def _load_record(self, record_id: str) -> MedicalRecord:
        record = self._records.find_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    # ------------------------------------------------------------------
    # Generic workflow instances
    # ------------------------------------------------------------------

    def initialize_workflow(
        self,
        workflow_name: str,
        entity: dict[str, Any],
        actor: Actor | dict | None,
        cancel_token: CancellationToken | None = None,
    ) -> WorkflowInstance:
        """Create an instance at the workflow's initial step.

        Raises:
            UnauthorizedError: No actor.
            WorkflowNotFoundError: ``workflow_name`` is not registered.
        """
        actor = self._guard.require_actor(actor, "initialize_workflow")
        definition = self._registry.get_workflow(workflow_name)
        instance = new_workflow_instance(
            definition,
            instance_id=f"{workflow_name}_{uuid4().hex}",
            entity=entity,
            actor=actor,
            now=self._clock.now(),
        )

        with LogContext.bind(
            instance_id=instance.instance_id, workflow=workflow_name, actor_id=actor.id,
        ):
            check_cancelled(cancel_token, "initialize_workflow")
            stored = self._put_instance(instance)
            logger.info(
                "workflow_initialized",
                extra={"entity_id": stored.entity_id, "initial_step": stored.current_step},
            )
            self._audit(AuditRecord(
                entity_type=ENTITY_WORKFLOW_INSTANCE,
                entity_id=stored.instance_id,
                action=AuditAction.INSTANCE_INITIALIZED,
                actor=actor,
                occurred_at=stored.created_at,
                to_step=stored.current_step,
                payload={"workflow": workflow_name, "entity_id": stored.entity_id},
            ))
        return stored

    def execute_action(
        self,
        instance_id: str,
        action: str | None,
        actor: Actor | dict | None,
        action_data: dict[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> WorkflowInstance:
        """Perform ``action`` on an instance and advance it.

        Raises:
            UnauthorizedError: No actor.
            MissingWorkflowActionError: No action.
            WorkflowInstanceNotFoundError: Unknown or expired instance.
            PermissionDeniedError: The role may not perform the action here.
            InvalidTransitionError: No legal edge, or the instance is completed.
            OptimisticLockError: A concurrent action committed first.
            OperationCancelledError: The caller cancelled.
        """
        actor = self._guard.require_actor(actor, "execute_action")
        if not action:
            raise MissingWorkflowActionError()

        instance = self._instances.get(instance_id)
        if instance is None:
            raise WorkflowInstanceNotFoundError(instance_id)

        t0 = time.monotonic()
        from_step = instance.current_step
        next_step: str | None = None

        with LogContext.bind(
            instance_id=instance_id, workflow=instance.workflow_name, actor_id=actor.id,
        ):
            try:
                definition = self._registry.get_workflow(instance.workflow_name)
                check_cancelled(cancel_token, "execute_action")

                if instance.is_completed:
                    raise InvalidTransitionError(
                        definition.name, from_step, None, action,
                        reason="workflow instance is completed",
                    )
                if not can_perform_workflow_action(definition, actor.role, from_step, action):
                    raise PermissionDeniedError(
                        role=actor.role.value,
                        action=action,
                        step=from_step,
                        workflow=definition.name,
                    )

                next_step = determine_next_step(definition, from_step, action, action_data)
                if not is_valid_workflow_transition(definition, from_step, next_step, action):
                    raise InvalidTransitionError(definition.name, from_step, next_step, action)

                updated = apply_instance_action(
                    instance, definition, action, next_step, actor,
                    self._clock.now(), action_data,
                )
                check_cancelled(cancel_token, "execute_action")
                stored = self._put_instance(updated)
            except ClinicalWorkflowError as exc:
                _emit_workflow_trace(
                    workflow_name=instance.workflow_name,
                    action=action,
                    entity_type=ENTITY_WORKFLOW_INSTANCE,
                    entity_id=instance_id,
                    from_step=from_step,
                    to_step=next_step,
                    outcome=_outcome_for(exc),
                    reason=str(exc),
                    duration_ms=(time.monotonic() - t0) * 1000,
                    outcome_sink=self._outcome_sink,
                )
                raise

            _emit_workflow_trace(
                workflow_name=instance.workflow_name,
                action=action,
                entity_type=ENTITY_WORKFLOW_INSTANCE,
                entity_id=instance_id,
                from_step=from_step,
                to_step=stored.current_step,
                outcome=OUTCOME_SUCCESS,
                reason=f"'{action}' moved instance to '{stored.current_step}'",
                duration_ms=(time.monotonic() - t0) * 1000,
                outcome_sink=self._outcome_sink,
            )
            if stored.is_completed:
                logger.info("workflow_completed", extra={"final_step": stored.current_step})
            self._audit(AuditRecord(
                entity_type=ENTITY_WORKFLOW_INSTANCE,
                entity_id=instance_id,
                action=AuditAction.INSTANCE_ACTION_EXECUTED,
                actor=actor,
                occurred_at=stored.updated_at or self._clock.now(),
                from_step=from_step,
                to_step=stored.current_step,
                payload={"workflow": instance.workflow_name, "workflow_action": action},
            ))
        return stored

    def get_workflow_instance(self, instance_id: str) -> WorkflowInstance | None:
        return self._instances.get(instance_id)

    def get_workflow_by_entity(self, entity_id: str, workflow_name: str) -> WorkflowInstance | None:
        for instance in self._instances.values():
            if instance.entity_id == entity_id and instance.workflow_name == workflow_name:
                return instance
        return None

    def get_available_actions(
        self,
        instance_id: str,
        actor: Actor,
    ) -> list[dict[str, Any]]:
        """Actions the actor's role may perform on the instance right now."""
        instance = self._instances.get(instance_id)
        if instance is None:
            return []
        definition = self._registry.find(instance.workflow_name)
        spec = definition.step(instance.current_step) if definition else None
        if spec is None:
            return []
        return [
            {
                "action": action,
                "name": action_display_name(action),
                "description": action_description(action),
                "next_steps": list(definition.next_steps(instance.current_step, action)),
            }
            for action in sorted(spec.allowed_actions)
            if can_perform_workflow_action(definition, actor.role, instance.current_step, action)
        ]

    def get_workflow_status(self, instance_id: str) -> dict[str, Any] | None:
        instance = self._instances.get(instance_id)
        if instance is None:
            return None
        definition = self._registry.find(instance.workflow_name)
        spec = definition.step(instance.current_step) if definition else None
        return {
            "instance_id": instance.instance_id,
            "workflow_name": instance.workflow_name,
            "entity_id": instance.entity_id,
            "current_step": {
                "name": instance.current_step,
                "display_name": spec.display_name if spec else instance.current_step,
                "description": spec.description if spec else "",
                "is_terminal": self._registry.is_terminal_step(
                    instance.workflow_name, instance.current_step
                ),
            },
            "status": instance.status.value,
            "created_at": instance.created_at,
            "updated_at": instance.updated_at,
            "completed_at": instance.completed_at,
            "history_count": len(instance.history),
            "metadata": instance.metadata,
        }

    def get_workflow_statistics(self, workflow_name: str | None = None) -> dict[str, Any]:
        instances = self._instances.values()
        if workflow_name:
            instances = [i for i in instances if i.workflow_name == workflow_name]
        return {
            "total": len(instances),
            "active": sum(1 for i in instances if i.status is InstanceStatus.ACTIVE),
            "completed": sum(1 for i in instances if i.status is InstanceStatus.COMPLETED),
            "by_step": dict(Counter(i.current_step for i in instances)),
            "by_workflow": dict(Counter(i.workflow_name for i in instances)),
        }

    # ------------------------------------------------------------------
    # Medical records
    # ------------------------------------------------------------------

    def initialize_medical_record_workflow(
        self,
        record: MedicalRecord,
        actor: Actor | dict | None,
        workflow_type: WorkflowType = WorkflowType.STANDARD,
        cancel_token: CancellationToken | None = None,
    ) -> MedicalRecord:
        """Start a record on the record workflow and persist it.

        Raises:
            UnauthorizedError: No actor.
            InvalidTransitionError: The record already has workflow history.
            OptimisticLockError: The stored record moved on.
        """
        actor = self._guard.require_actor(actor, "initialize_medical_record_workflow")
        workflow_type = WorkflowType(workflow_type)
        definition = self._registry.get_workflow(self._record_workflow)

        with LogContext.bind(
            record_id=record.record_id, workflow=definition.name, actor_id=actor.id,
        ):
            if record.history_length:
                raise InvalidTransitionError(
                    definition.name, record.current_step, definition.initial_step,
                    "create", reason="workflow already initialized",
                )
            now = self._clock.now()
            initialized = initialize_record_workflow(record, actor, workflow_type, now, definition)
            check_cancelled(cancel_token, "initialize_medical_record_workflow")
            saved = self._save_record(initialized)

            logger.info(
                "record_workflow_initialized",
                extra={
                    "workflow_type": workflow_type.value,
                    "priority": saved.workflow_status.priority.value,
                },
            )
            self._audit(AuditRecord(
                entity_type=ENTITY_MEDICAL_RECORD,
                entity_id=saved.record_id,
                action=AuditAction.RECORD_WORKFLOW_INITIALIZED,
                actor=actor,
                occurred_at=now,
                to_step=saved.current_step,
                payload={"workflow_type": workflow_type.value},
            ))
        return saved

    def transition_medical_record(
        self,
        record_id: str,
        new_step: str | None,
        actor: Actor | dict | None,
        action: str | None = None,
        comments: str = "",
        cancel_token: CancellationToken | None = None,
        permission: RecordPermission | str | None = None,
    ) -> TransitionOutcome:
        """Move a record to ``new_step``.

        ``action`` defaults to the action of the matching next step
        (``advance`` for the forward path).  When ``permission`` is given, an
        assigned actor must also hold that capability on the record.

        Raises:
            UnauthorizedError, MissingWorkflowStepError, RecordNotFoundError,
            NotAssignedError, InvalidTransitionError, PermissionDeniedError,
            WorkflowLockedError, BusinessRuleFailedError,
            OperationCancelledError, OptimisticLockError.
        """
        actor = self._guard.require_actor(actor, "transition_medical_record")
        if not new_step:
            raise MissingWorkflowStepError("new_step")

        t0 = time.monotonic()
        from_step: str | None = None

        with LogContext.bind(
            record_id=record_id, workflow=self._record_workflow, actor_id=actor.id,
        ):
            try:
                record = self._load_record(record_id)
                from_step = record.current_step
                check_cancelled(cancel_token, "transition_medical_record")

                auth = self._guard.authorize_transition(
                    record, actor, new_step, action, permission,
                )
                action = auth.action

                rule = self._rules.validate(record, new_step, action)
                if not rule.valid:
                    logger.info(
                        "business_rule_failed",
                        extra={"target_step": new_step, "rule_message": rule.message},
                    )
                    raise BusinessRuleFailedError(new_step, rule.message or "Business rule failed")

                definition = self._registry.get_workflow(self._record_workflow)
                updated = apply_record_transition(
                    record, new_step, actor, action, comments, self._clock.now(), definition,
                )
                check_cancelled(cancel_token, "transition_medical_record")
                saved = self._save_record(updated)
            except ClinicalWorkflowError as exc:
                _emit_workflow_trace(
                    workflow_name=self._record_workflow,
                    action=action,
                    entity_type=ENTITY_MEDICAL_RECORD,
                    entity_id=record_id,
                    from_step=from_step,
                    to_step=new_step,
                    outcome=_outcome_for(exc),
                    reason=str(exc),
                    duration_ms=(time.monotonic() - t0) * 1000,
                    outcome_sink=self._outcome_sink,
                )
                raise

            _emit_workflow_trace(
                workflow_name=self._record_workflow,
                action=action,
                entity_type=ENTITY_MEDICAL_RECORD,
                entity_id=record_id,
                from_step=from_step,
                to_step=saved.current_step,
                outcome=OUTCOME_SUCCESS,
                reason=f"{auth.basis.value}: '{from_step}' -> '{new_step}'",
                duration_ms=(time.monotonic() - t0) * 1000,
                outcome_sink=self._outcome_sink,
            )
            self._audit(AuditRecord(
                entity_type=ENTITY_MEDICAL_RECORD,
                entity_id=record_id,
                action=AuditAction.RECORD_TRANSITIONED,
                actor=actor,
                occurred_at=saved.workflow_status.step_history[-1].performed_at,
                from_step=from_step,
                to_step=saved.current_step,
                payload={
                    "workflow_action": action,
                    "access_basis": auth.basis.value,
                    "comments": comments or "",
                },
            ))

        return TransitionOutcome(
            record=saved,
            from_step=from_step,
            to_step=saved.current_step,
            action=action,
            warnings=auth.warnings,
        )

    def add_blocker(
        self,
        record_id: str,
        blocker_type: str,
        reason: str,
        actor: Actor | dict | None,
        cancel_token: CancellationToken | None = None,
    ) -> MedicalRecord:
        """Attach an active blocker.  Any actor with standing on the record may."""
        actor = self._guard.require_actor(actor, "add_blocker")
        with LogContext.bind(record_id=record_id, actor_id=actor.id):
            record = self._load_record(record_id)
            self._guard.check_record_access(record, actor)
            now = self._clock.now()
            blocker_id = uuid4().hex
            updated = add_blocker(record, blocker_id, blocker_type, reason, actor, now)
            check_cancelled(cancel_token, "add_blocker")
            saved = self._save_record(updated)

            logger.info(
                "blocker_added",
                extra={"blocker_id": blocker_id, "blocker_type": blocker_type},
            )
            self._audit(AuditRecord(
                entity_type=ENTITY_MEDICAL_RECORD,
                entity_id=record_id,
                action=AuditAction.BLOCKER_ADDED,
                actor=actor,
                occurred_at=now,
                from_step=saved.current_step,
                payload={"blocker_id": blocker_id, "type": blocker_type, "reason": reason},
            ))
        return saved

    def resolve_blocker(
        self,
        record_id: str,
        blocker_id: str,
        actor: Actor | dict | None,
        cancel_token: CancellationToken | None = None,
    ) -> MedicalRecord:
        """
        Raises:
            BlockerNotFoundError: ``blocker_id`` is not on the record.
        """
        actor = self._guard.require_actor(actor, "resolve_blocker")
        with LogContext.bind(record_id=record_id, actor_id=actor.id):
            record = self._load_record(record_id)
            self._guard.check_record_access(record, actor)
            now = self._clock.now()
            updated = resolve_blocker(record, blocker_id, actor, now)
            check_cancelled(cancel_token, "resolve_blocker")
            saved = self._save_record(updated)

            logger.info("blocker_resolved", extra={"blocker_id": blocker_id})
            self._audit(AuditRecord(
                entity_type=ENTITY_MEDICAL_RECORD,
                entity_id=record_id,
                action=AuditAction.BLOCKER_RESOLVED,
                actor=actor,
                occurred_at=now,
                from_step=saved.current_step,
                payload={"blocker_id": blocker_id},
            ))
        return saved

    def assign_user(
        self,
        record_id: str,
        user_id: str,
        role: Role | str,
        actor: Actor | dict | None,
        deadline: datetime | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> MedicalRecord:
        """Give ``user_id`` standing on the record in ``role``.

        Only an admin or the record's current owner may assign.

        Raises:
            NotAssignedError: The actor has no standing on the record.
            PermissionDeniedError: The actor is only an assignee, or ``role``
                names no known role.
        """
        actor = self._guard.require_actor(actor, "assign_user")
        with LogContext.bind(record_id=record_id, actor_id=actor.id):
            record = self._load_record(record_id)
            basis = self._guard.check_record_access(record, actor)
            if basis is AccessBasis.ASSIGNED:
                raise PermissionDeniedError(
                    role=actor.role.value, action="assign", step=record.current_step,
                )
            assigned_role = Role.try_parse(role)
            if assigned_role is None:
                raise PermissionDeniedError(
                    role=str(role), action="assign", step=record.current_step,
                )
            now = self._clock.now()
            updated = assign_user(record, user_id, assigned_role, now, deadline)
            check_cancelled(cancel_token, "assign_user")
            saved = self._save_record(updated)

            logger.info(
                "record_assigned",
                extra={"assignee_id": user_id, "assignee_role": assigned_role.value},
            )
            self._audit(AuditRecord(
                entity_type=ENTITY_MEDICAL_RECORD,
                entity_id=record_id,
                action=AuditAction.RECORD_ASSIGNED,
                actor=actor,
                occurred_at=now,
                from_step=saved.current_step,
                payload={"user_id": user_id, "role": assigned_role.value},
            ))
        return saved

    def sign_record(
        self,
        record_id: str,
        actor: Actor | dict | None,
        cancel_token: CancellationToken | None = None,
    ) -> MedicalRecord:
        """Attach the actor's electronic signature.

        Raises:
            PermissionDeniedError: The actor is not a doctor or admin.
        """
        actor = self._guard.require_actor(actor, "sign_record")
        with LogContext.bind(record_id=record_id, actor_id=actor.id):
            record = self._load_record(record_id)
            self._guard.check_record_access(record, actor)
            if actor.role not in (Role.DOCTOR, Role.ADMIN):
                raise PermissionDeniedError(
                    role=actor.role.value, action="sign", step=record.current_step,
                )
            now = self._clock.now()
            updated = sign_record(record, actor, now)
            check_cancelled(cancel_token, "sign_record")
            saved = self._save_record(updated)

            signature = saved.content.electronic_signature
            logger.info("record_signed", extra={"signed_by": actor.id})
            self._audit(AuditRecord(
                entity_type=ENTITY_MEDICAL_RECORD,
                entity_id=record_id,
                action=AuditAction.RECORD_SIGNED,
                actor=actor,
                occurred_at=now,
                from_step=saved.current_step,
                payload={"signature_hash": signature.signature_hash if signature else None},
            ))
        return saved

    # ------------------------------------------------------------------
    # Record queries (read-only)
    # ------------------------------------------------------------------

    def get_medical_records_by_step(self, step: str, actor: Actor) -> list[MedicalRecord]:
        """Records at ``step`` visible to the actor, highest priority and newest first."""
        records = self._records.find(current_step=step, visible_to=actor)
        logger.debug(
            "records_by_step",
            extra={"step": step, "role": actor.role.value, "count": len(records)},
        )
        return sort_by_priority(records, newest_first=True)

    def get_medical_record_workflow_dashboard(self, actor: Actor) -> dict[str, Any]:
        now = self._clock.now()
        visible = self._records.find(visible_to=actor)

        step_counts: dict[str, dict[str, int]] = {}
        for record in visible:
            bucket = step_counts.setdefault(record.current_step, {"total": 0, "high_priority": 0})
            bucket["total"] += 1
            if record.workflow_status.priority in _HIGH_PRIORITIES:
                bucket["high_priority"] += 1

        assigned = [
            r for r in self._records.find(assigned_user=actor.id)
            if r.current_step not in COMPLETED_STEPS
        ]
        pending = sort_by_priority(assigned)[:PENDING_TASK_LIMIT]
        overdue = sum(1 for r in assigned if is_overdue(r, now))

        return {
            "step_counts": step_counts,
            "pending_tasks": [
                {
                    "record_id": r.record_id,
                    "patient_id": r.patient_id,
                    "current_step": r.current_step,
                    "priority": r.workflow_status.priority.value,
                    "created_at": r.created_at,
                    "progress": workflow_progress(r),
                }
                for r in pending
            ],
            "overdue": overdue,
            "summary": {
                "total_assigned": len(pending),
                "total_overdue": overdue,
                "can_review": list(role_steps(actor.role)),
            },
        }

    def get_medical_record_statistics(self) -> dict[str, Any]:
        now = self._clock.now()
        records = self._records.find()
        return {
            "total": len(records),
            "by_step": dict(Counter(r.current_step for r in records)),
            "by_priority": dict(Counter(r.workflow_status.priority.value for r in records)),
            "overdue": sum(1 for r in records if is_overdue(r, now)),
        }


def build_workflow_orchestrator(
    session: Session,
    settings: Settings | None = None,
    clock: Clock | None = None,
    audit_sink: AuditSink | None = None,
    durable_instances: bool = False,
) -> WorkflowOrchestrator:
    """Build a WorkflowOrchestrator from settings (single entrypoint for production).

    Loads the workflow registry from ``settings.workflow_config_dir`` (strict
    when ``settings.strict_transitions``), stores records through ``session``
    and keeps instances in memory, or in ``session`` when
    ``durable_instances`` is set.
    Step history and audit rows are made append-only before anything is
    written.

    Args:
        session: SQLAlchemy session for records (and durable instances).
        settings: Process settings; default ``load_settings()``.
        clock: Optional clock; default SystemClock.
        audit_sink: Optional audit sink; default ``LoggingAuditSink``.
        durable_instances: Persist instances in ``workflow_instances``.
    """
    settings = settings or load_settings()
    clock = clock or SystemClock()
    register_immutability_listeners()
    registry = get_workflow_registry(
        settings.workflow_config_dir, strict=settings.strict_transitions,
    )
    if durable_instances:
        instances: WorkflowInstanceStore = SqlInstanceStore(
            session, ttl_seconds=settings.instance_ttl_seconds, clock=clock,
        )
    else:
        instances = InMemoryInstanceStore(
            ttl_seconds=settings.instance_ttl_seconds,
            max_entries=settings.instance_max_entries,
            clock=clock,
        )
    return WorkflowOrchestrator(
        registry,
        SqlMedicalRecordRepository(session),
        instances,
        clock=clock,
        audit_sink=audit_sink or LoggingAuditSink(),
    )
