"""
Module: clinical_kernel.models.medical_record
Responsibility: ORM persistence for medical records and their workflow state:
    the record row itself, the append-only step history, blockers,
    assignments and per-capability role grants.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Optimistic concurrency: ``version`` is the SQLAlchemy version_id_col.
      Every save sets it to ``loaded_version + 1`` and the UPDATE carries
      ``WHERE version = loaded_version``; a concurrent writer makes the
      UPDATE match zero rows and SQLAlchemy raises StaleDataError.
    - Step history rows are append-only (see db/immutability.py).
    - ``seq`` is unique per record, so history order is total.

Failure modes:
    - StaleDataError on a concurrent update (mapped to OptimisticLockError
      by the repository).
    - ImmutabilityViolationError on UPDATE/DELETE of a step history row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinical_kernel.db.base import Base, UUIDString
from clinical_kernel.domain.record import (
    AccessControl,
    Assignment,
    Blocker,
    ClinicalContent,
    MedicalRecord,
    NextStep,
    RecordStatus,
    StepHistoryEntry,
    WorkflowStatus,
)
from clinical_kernel.domain.roles import RecordPermission, Role
from clinical_kernel.domain.workflow import Priority, WorkflowType


class MedicalRecordModel(Base):
    """Persistent medical record with its workflow status.

    Contract:
        ``record_id`` is the business key used by callers.  All child rows
        reference the surrogate ``id``.
    """

    __tablename__ = "medical_records"

    __table_args__ = (
        Index("ix_medical_records_current_step", "current_step"),
        Index("ix_medical_records_owner", "current_owner"),
        Index("ix_medical_records_priority", "priority"),
        Index("ix_medical_records_estimated", "estimated_completion_time"),
    )

    record_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    patient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    doctor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    record_status: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    current_step: Mapped[str] = mapped_column(String(50), nullable=False)
    workflow_type: Mapped[str] = mapped_column(String(30), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False)
    next_steps: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    estimated_completion_time: Mapped[datetime | None] = mapped_column(nullable=True)
    actual_completion_time: Mapped[datetime | None] = mapped_column(nullable=True)

    current_owner: Mapped[str | None] = mapped_column(String(64), nullable=True)

    version: Mapped[int] = mapped_column(nullable=False)

    step_history: Mapped[list["StepHistoryModel"]] = relationship(
        back_populates="record",
        order_by="StepHistoryModel.seq",
        lazy="selectin",
        cascade="save-update, merge",
    )
    blockers: Mapped[list["BlockerModel"]] = relationship(
        back_populates="record",
        order_by="BlockerModel.blocked_at",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    assignments: Mapped[list["AssignmentModel"]] = relationship(
        back_populates="record",
        order_by="AssignmentModel.seq",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    permissions: Mapped[list["RecordPermissionModel"]] = relationship(
        back_populates="record",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    def __repr__(self) -> str:
        return (
            f"<MedicalRecord {self.record_id} step={self.current_step} "
            f"v{self.version}>"
        )

    def to_dto(self) -> MedicalRecord:
        """Convert ORM model to the immutable domain record."""
        permissions: dict[RecordPermission, set[Role]] = {}
        for grant in self.permissions:
            permissions.setdefault(RecordPermission(grant.capability), set()).add(
                Role(grant.role)
            )

        return MedicalRecord(
            record_id=self.record_id,
            patient_id=self.patient_id,
            doctor_id=self.doctor_id,
            created_at=self.created_at,
            content=ClinicalContent.from_dict(self.content),
            record_status=RecordStatus(self.record_status),
            workflow_status=WorkflowStatus(
                current_step=self.current_step,
                workflow_type=WorkflowType(self.workflow_type),
                priority=Priority(self.priority),
                next_steps=tuple(_next_step_from_json(n) for n in self.next_steps or ()),
                step_history=tuple(h.to_dto() for h in self.step_history),
                blockers=tuple(b.to_dto() for b in self.blockers),
                estimated_completion_time=self.estimated_completion_time,
                actual_completion_time=self.actual_completion_time,
            ),
            access_control=AccessControl(
                current_owner=self.current_owner,
                assigned_to=tuple(a.to_dto() for a in self.assignments),
                permissions={k: frozenset(v) for k, v in permissions.items()},
            ),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: MedicalRecord) -> MedicalRecordModel:
        """Create a new ORM row (version 1) from a never-persisted record."""
        model = cls(
            record_id=dto.record_id,
            patient_id=dto.patient_id,
            doctor_id=dto.doctor_id,
            created_at=dto.created_at,
            version=1,
        )
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: MedicalRecord) -> None:
        """Copy mutable state from ``dto`` onto this row.

        History rows already persisted are left untouched; only entries past
        the persisted length are inserted.
        """
        status = dto.workflow_status
        access = dto.access_control

        self.record_status = dto.record_status.value
        self.content = dto.content.to_dict()
        self.current_step = status.current_step
        self.workflow_type = status.workflow_type.value
        self.priority = status.priority.value
        self.next_steps = [_next_step_to_json(n) for n in status.next_steps]
        self.estimated_completion_time = status.estimated_completion_time
        self.actual_completion_time = status.actual_completion_time
        self.current_owner = access.current_owner

        persisted = len(self.step_history)
        for seq, entry in enumerate(status.step_history[persisted:], start=persisted):
            self.step_history.append(StepHistoryModel.from_dto(entry, seq))

        existing = {b.blocker_id: b for b in self.blockers}
        for blocker in status.blockers:
            row = existing.get(blocker.blocker_id)
            if row is None:
                self.blockers.append(BlockerModel.from_dto(blocker))
            elif row.resolved_at is None and blocker.resolved_at is not None:
                row.resolved_by = blocker.resolved_by
                row.resolved_at = blocker.resolved_at

        current = [a.to_dto() for a in self.assignments]
        if current != list(access.assigned_to):
            self.assignments = [
                AssignmentModel.from_dto(a, seq)
                for seq, a in enumerate(access.assigned_to)
            ]

        grants = {
            (perm.value, role.value)
            for perm, roles in access.permissions.items()
            for role in roles
        }
        stored = {(g.capability, g.role): g for g in self.permissions}
        for key, grant in stored.items():
            if key not in grants:
                self.permissions.remove(grant)
        for cap, role in sorted(grants - stored.keys()):
            self.permissions.append(RecordPermissionModel(capability=cap, role=role))


def _next_step_to_json(step: NextStep) -> dict[str, Any]:
    return {
        "step": step.step,
        "allowed_roles": sorted(r.value for r in step.allowed_roles),
        "action": step.action,
    }


def _next_step_from_json(data: dict[str, Any]) -> NextStep:
    return NextStep(
        step=data["step"],
        allowed_roles=frozenset(Role(r) for r in data.get("allowed_roles", ())),
        action=data.get("action", "advance"),
    )


class StepHistoryModel(Base):
    """One appended workflow transition.  Append-only.

    Contract:
        Rows are immutable once flushed -- no UPDATE, no DELETE.
    """

    __tablename__ = "medical_record_step_history"

    __table_args__ = (
        UniqueConstraint("record_pk", "seq", name="uq_step_history_record_seq"),
    )

    record_pk: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("medical_records.id"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(nullable=False)
    step: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_step: Mapped[str | None] = mapped_column(String(50), nullable=True)
    performed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    comments: Mapped[str] = mapped_column(Text, nullable=False, default="")
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    record: Mapped[MedicalRecordModel] = relationship(back_populates="step_history")

    def __repr__(self) -> str:
        return f"<StepHistory #{self.seq} {self.previous_step}->{self.step}>"

    def to_dto(self) -> StepHistoryEntry:
        return StepHistoryEntry(
            step=self.step,
            previous_step=self.previous_step,
            performed_by=self.performed_by,
            performed_at=self.performed_at,
            action=self.action,
            comments=self.comments,
            metadata=dict(self.metadata_ or {}),
        )

    @classmethod
    def from_dto(cls, dto: StepHistoryEntry, seq: int) -> StepHistoryModel:
        return cls(
            seq=seq,
            step=dto.step,
            previous_step=dto.previous_step,
            performed_by=dto.performed_by,
            performed_at=dto.performed_at,
            action=dto.action,
            comments=dto.comments or "",
            metadata_=dict(dto.metadata),
        )


class BlockerModel(Base):
    """A blocker raised against a record.  Only resolution fields change."""

    __tablename__ = "medical_record_blockers"

    record_pk: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("medical_records.id"), nullable=False,
    )
    blocker_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    blocked_by: Mapped[str] = mapped_column(String(64), nullable=False)
    blocked_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    record: Mapped[MedicalRecordModel] = relationship(back_populates="blockers")

    def to_dto(self) -> Blocker:
        return Blocker(
            blocker_id=self.blocker_id,
            type=self.type,
            reason=self.reason,
            blocked_by=self.blocked_by,
            blocked_at=self.blocked_at,
            resolved_by=self.resolved_by,
            resolved_at=self.resolved_at,
        )

    @classmethod
    def from_dto(cls, dto: Blocker) -> BlockerModel:
        return cls(
            blocker_id=dto.blocker_id,
            type=dto.type,
            reason=dto.reason,
            blocked_by=dto.blocked_by,
            blocked_at=dto.blocked_at,
            resolved_by=dto.resolved_by,
            resolved_at=dto.resolved_at,
        )


class AssignmentModel(Base):
    __tablename__ = "medical_record_assignments"

    __table_args__ = (
        Index("ix_record_assignments_user", "user_id"),
    )

    record_pk: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("medical_records.id"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(30), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    deadline: Mapped[datetime | None] = mapped_column(nullable=True)

    record: Mapped[MedicalRecordModel] = relationship(back_populates="assignments")

    def to_dto(self) -> Assignment:
        return Assignment(
            user=self.user_id,
            role=Role(self.role),
            assigned_at=self.assigned_at,
            deadline=self.deadline,
        )

    @classmethod
    def from_dto(cls, dto: Assignment, seq: int) -> AssignmentModel:
        return cls(
            seq=seq,
            user_id=dto.user,
            role=dto.role.value,
            assigned_at=dto.assigned_at,
            deadline=dto.deadline,
        )


class RecordPermissionModel(Base):
    """Grant of one capability (read/edit/approve/reject) to one role."""

    __tablename__ = "medical_record_permissions"

    __table_args__ = (
        UniqueConstraint(
            "record_pk", "capability", "role", name="uq_record_permission",
        ),
        Index("ix_record_permissions_lookup", "capability", "role"),
    )

    record_pk: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("medical_records.id"), nullable=False,
    )
    capability: Mapped[str] = mapped_column(String(10), nullable=False)
    role: Mapped[str] = mapped_column(String(30), nullable=False)

    record: Mapped[MedicalRecordModel] = relationship(back_populates="permissions")
