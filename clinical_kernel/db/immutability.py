"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

A medical record's step history and the workflow audit trail are the record
of who moved a record where, and when.  They may only ever grow.  This
module intercepts UPDATE and DELETE of those rows inside SQLAlchemy before
any SQL reaches the database.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_update event] --> _reject_*_update() --> ImmutabilityViolationError
         |                                                   ^
         v                                                   |
    [before_delete event] --> _reject_*_delete() ------------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails the flush aborts and the database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | When Immutable         | Notes
---------------------|------------------------|-----------------------------
StepHistoryModel     | ALWAYS (from creation) | Transition history
WorkflowAuditEvent   | ALWAYS (from creation) | Audit trail

===============================================================================
USAGE
===============================================================================

Registered by ``init_engine_from_url`` and ``build_workflow_orchestrator``;
registering again is a no-op:

    from clinical_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from clinical_kernel.exceptions import ImmutabilityViolationError
from clinical_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _reject_step_history_update(mapper, connection, target):
    _block(
        "StepHistory", target, "UPDATE",
        "Step history entries are append-only and cannot be modified",
    )


def _reject_step_history_delete(mapper, connection, target):
    _block(
        "StepHistory", target, "DELETE",
        "Step history entries are append-only and cannot be deleted",
    )


def _reject_audit_event_update(mapper, connection, target):
    _block(
        "WorkflowAuditEvent", target, "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _reject_audit_event_delete(mapper, connection, target):
    _block(
        "WorkflowAuditEvent", target, "DELETE",
        "Audit events are immutable and cannot be deleted",
    )


def _listeners():
    from clinical_kernel.models.audit_event import WorkflowAuditEvent
    from clinical_kernel.models.medical_record import StepHistoryModel

    return (
        (StepHistoryModel, "before_update", _reject_step_history_update),
        (StepHistoryModel, "before_delete", _reject_step_history_delete),
        (WorkflowAuditEvent, "before_update", _reject_audit_event_update),
        (WorkflowAuditEvent, "before_delete", _reject_audit_event_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability enforcement listeners (idempotent)."""
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
