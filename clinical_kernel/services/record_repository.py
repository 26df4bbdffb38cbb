"""
Medical record store.

Responsibility:
    Loads and saves ``MedicalRecord`` value objects, translating between the
    immutable domain record and its ORM rows.  Callers never see ORM objects.

Architecture position:
    Kernel > Services -- imperative shell.  The orchestrator depends on the
    ``MedicalRecordRepository`` protocol; ``SqlMedicalRecordRepository`` is
    the SQLAlchemy implementation.

Invariants enforced:
    - Optimistic concurrency: ``save`` only succeeds if the stored version
      equals the version the record was loaded at.  Two writers starting
      from the same version cannot both succeed.
    - Step history rows are only ever inserted.

Failure modes:
    - OptimisticLockError on a version mismatch or a StaleDataError during
      flush.
    - RecordNotFoundError when saving a loaded record whose row vanished.
"""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from clinical_kernel.domain.record import MedicalRecord
from clinical_kernel.domain.roles import Actor, RecordPermission
from clinical_kernel.exceptions import OptimisticLockError, RecordNotFoundError
from clinical_kernel.logging_config import get_logger
from clinical_kernel.models.medical_record import (
    AssignmentModel,
    MedicalRecordModel,
    RecordPermissionModel,
)

logger = get_logger("services.record_repository")


class MedicalRecordRepository(Protocol):
    def find_by_id(self, record_id: str) -> MedicalRecord | None: ...

    def save(self, record: MedicalRecord) -> MedicalRecord: ...

    def find(
        self,
        *,
        current_step: str | None = None,
        assigned_user: str | None = None,
        current_owner: str | None = None,
        visible_to: Actor | None = None,
    ) -> list[MedicalRecord]: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class SqlMedicalRecordRepository:
    """
    SQLAlchemy-backed record store.

    Contract:
        ``save`` flushes; ``commit``/``rollback`` are explicit so that the
        orchestrator owns the transaction boundary.
    """

    def __init__(self, session: Session):
        self.session = session

    def _load(self, record_id: str) -> MedicalRecordModel | None:
        stmt = select(MedicalRecordModel).where(
            MedicalRecordModel.record_id == record_id
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def find_by_id(self, record_id: str) -> MedicalRecord | None:
        row = self._load(record_id)
        return None if row is None else row.to_dto()

    def save(self, record: MedicalRecord) -> MedicalRecord:
        """
        Persist ``record`` and return it at its new version.

        Raises:
            OptimisticLockError: The stored row moved past ``record.version``.
            RecordNotFoundError: ``record.version`` > 0 but no row exists.
        """
        if record.version == 0:
            row = MedicalRecordModel.from_dto(record)
            self.session.add(row)
        else:
            row = self._load(record.record_id)
            if row is None:
                raise RecordNotFoundError(record.record_id)
            if row.version != record.version:
                logger.warning(
                    "optimistic_lock_conflict",
                    extra={
                        "record_id": record.record_id,
                        "expected_version": record.version,
                        "actual_version": row.version,
                    },
                )
                raise OptimisticLockError(
                    "MedicalRecord",
                    record.record_id,
                    expected_version=record.version,
                    actual_version=row.version,
                )
            row.apply_dto(record)
            row.version = record.version + 1

        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "optimistic_lock_conflict",
                extra={"record_id": record.record_id, "expected_version": record.version},
            )
            raise OptimisticLockError(
                "MedicalRecord", record.record_id, expected_version=record.version,
            ) from exc

        return row.to_dto()

    def find(
        self,
        *,
        current_step: str | None = None,
        assigned_user: str | None = None,
        current_owner: str | None = None,
        visible_to: Actor | None = None,
    ) -> list[MedicalRecord]:
        """Query records; all supplied filters must hold.

        ``visible_to`` matches records the actor is assigned to, owns, or
        whose read grant includes the actor's role.
        """
        stmt = select(MedicalRecordModel)

        if current_step is not None:
            stmt = stmt.where(MedicalRecordModel.current_step == current_step)
        if assigned_user is not None:
            stmt = stmt.where(_assigned_to(assigned_user))
        if current_owner is not None:
            stmt = stmt.where(MedicalRecordModel.current_owner == current_owner)
        if visible_to is not None:
            can_read = exists().where(
                RecordPermissionModel.record_pk == MedicalRecordModel.id,
                RecordPermissionModel.capability == RecordPermission.READ.value,
                RecordPermissionModel.role == visible_to.role.value,
            )
            stmt = stmt.where(
                or_(
                    _assigned_to(visible_to.id),
                    MedicalRecordModel.current_owner == visible_to.id,
                    can_read,
                )
            )

        stmt = stmt.order_by(MedicalRecordModel.created_at, MedicalRecordModel.record_id)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


def _assigned_to(user_id: str):
    return exists().where(
        AssignmentModel.record_pk == MedicalRecordModel.id,
        AssignmentModel.user_id == user_id,
    )
