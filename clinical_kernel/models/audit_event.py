"""
Module: clinical_kernel.models.audit_event
Responsibility: ORM persistence for the workflow audit trail ("who did what").
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit rows are append-only; no UPDATE or DELETE (ORM listeners in
      db/immutability.py).

Audit relevance:
    Every committed transition, record-workflow initialization, blocker
    change and signature produces one WorkflowAuditEvent.  Rows are written
    after the primary commit, in their own session, so a failing audit write
    never rolls back the transition it describes.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from clinical_kernel.db.base import Base


class AuditAction(str, Enum):
    """Types of auditable workflow actions."""

    RECORD_WORKFLOW_INITIALIZED = "record_workflow_initialized"
    RECORD_TRANSITIONED = "record_transitioned"
    RECORD_SIGNED = "record_signed"
    RECORD_ASSIGNED = "record_assigned"
    BLOCKER_ADDED = "blocker_added"
    BLOCKER_RESOLVED = "blocker_resolved"
    INSTANCE_INITIALIZED = "instance_initialized"
    INSTANCE_ACTION_EXECUTED = "instance_action_executed"


class WorkflowAuditEvent(Base):
    """
    One audit trail entry.

    Contract:
        Rows are append-only -- never updated or deleted.
    """

    __tablename__ = "workflow_audit_events"

    __table_args__ = (
        Index("idx_workflow_audit_entity", "entity_type", "entity_id"),
        Index("idx_workflow_audit_action", "action"),
        Index("idx_workflow_audit_occurred", "occurred_at"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(30), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    from_step: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_step: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<WorkflowAuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"
