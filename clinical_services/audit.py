"""
clinical_services.audit -- "Who did what" audit sinks.

Responsibility:
    Record one audit event per committed workflow change.  The orchestrator
    calls the sink only after the primary commit has succeeded.

Architecture position:
    Services layer.  ``SqlAuditSink`` writes ``WorkflowAuditEvent`` rows in a
    session of its own so that it never shares a transaction with the
    change it describes.

Invariants enforced:
    - Sinks raise on failure.  Suppression is the caller's decision: the
      orchestrator logs ``audit_sink_failed`` and carries on.
    - Audit rows are append-only (see ``clinical_kernel.db.immutability``).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.orm import Session

from clinical_kernel.domain.roles import Actor
from clinical_kernel.logging_config import get_logger
from clinical_kernel.models.audit_event import AuditAction, WorkflowAuditEvent

logger = get_logger("services.audit")


@dataclass(frozen=True)
class AuditRecord:
    entity_type: str
    entity_id: str
    action: AuditAction
    actor: Actor
    occurred_at: datetime
    from_step: str | None = None
    to_step: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class AuditSink(Protocol):
    def record(self, event: AuditRecord) -> None: ...


class LoggingAuditSink:
    """Writes each audit record to the ``clinical_kernel.audit`` logger."""

    def __init__(self) -> None:
        self._logger = get_logger("audit")

    def record(self, event: AuditRecord) -> None:
        self._logger.info(
            "workflow_audit",
            extra={
                "audit_action": event.action.value,
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
                "actor_id": event.actor.id,
                "actor_role": event.actor.role.value,
                "occurred_at": event.occurred_at,
                "from_step": event.from_step,
                "to_step": event.to_step,
                "payload": event.payload,
            },
        )


class SqlAuditSink:
    """
    Appends ``WorkflowAuditEvent`` rows.

    Contract:
        Each call opens a session from ``session_factory``, inserts one row,
        commits and closes.  Failures roll back that session and re-raise.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def record(self, event: AuditRecord) -> None:
        session = self._session_factory()
        try:
            session.add(
                WorkflowAuditEvent(
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    action=event.action.value,
                    actor_id=event.actor.id,
                    actor_role=event.actor.role.value,
                    occurred_at=event.occurred_at,
                    from_step=event.from_step,
                    to_step=event.to_step,
                    payload=event.payload or None,
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
