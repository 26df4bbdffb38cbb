"""
Module: clinical_kernel.models.workflow_instance
Responsibility: ORM persistence for generic workflow instances, used by
    ``SqlInstanceStore`` so instance state survives the process and expires
    on an explicit TTL.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Optimistic concurrency via ``version`` (version_id_col, managed
      explicitly by the store).
    - ``expires_at`` is refreshed on every write; rows past it are treated
      as absent and removed by ``purge_expired``.
"""

from __future__ import annotations

from copy import deepcopy
from datetime import datetime

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from clinical_kernel.db.base import Base
from clinical_kernel.domain.instance import (
    InstanceHistoryEntry,
    InstanceStatus,
    WorkflowInstance,
)


class WorkflowInstanceModel(Base):
    __tablename__ = "workflow_instances"

    __table_args__ = (
        Index("ix_workflow_instances_entity", "entity_id", "workflow_name"),
        Index("ix_workflow_instances_expires", "expires_at"),
    )

    instance_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    workflow_name: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    current_step: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.instance_id} {self.workflow_name} "
            f"step={self.current_step} v{self.version}>"
        )

    def to_dto(self) -> WorkflowInstance:
        return WorkflowInstance(
            instance_id=self.instance_id,
            workflow_name=self.workflow_name,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            current_step=self.current_step,
            created_by=self.created_by,
            created_at=self.created_at,
            status=InstanceStatus(self.status),
            history=tuple(_history_from_json(h) for h in self.history or ()),
            metadata=deepcopy(self.metadata_ or {}),
            updated_at=self.updated_at,
            completed_at=self.completed_at,
            version=self.version,
        )

    def apply_dto(self, dto: WorkflowInstance, expires_at: datetime) -> None:
        self.workflow_name = dto.workflow_name
        self.entity_type = dto.entity_type
        self.entity_id = dto.entity_id
        self.current_step = dto.current_step
        self.status = dto.status.value
        self.created_by = dto.created_by
        self.created_at = dto.created_at
        self.updated_at = dto.updated_at
        self.completed_at = dto.completed_at
        self.history = [_history_to_json(h) for h in dto.history]
        self.metadata_ = deepcopy(dto.metadata)
        self.expires_at = expires_at


def _history_to_json(entry: InstanceHistoryEntry) -> dict:
    return {
        "step": entry.step,
        "action": entry.action,
        "performed_by": entry.performed_by,
        "performed_at": entry.performed_at.isoformat(),
        "previous_step": entry.previous_step,
        "metadata": deepcopy(entry.metadata),
    }


def _history_from_json(data: dict) -> InstanceHistoryEntry:
    return InstanceHistoryEntry(
        step=data["step"],
        action=data["action"],
        performed_by=data["performed_by"],
        performed_at=datetime.fromisoformat(data["performed_at"]),
        previous_step=data.get("previous_step"),
        metadata=deepcopy(data.get("metadata") or {}),
    )
