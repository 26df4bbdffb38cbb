"""SQLAlchemy ORM models for the clinical workflow kernel."""

from clinical_kernel.models.audit_event import AuditAction, WorkflowAuditEvent
from clinical_kernel.models.medical_record import (
    AssignmentModel,
    BlockerModel,
    MedicalRecordModel,
    RecordPermissionModel,
    StepHistoryModel,
)
from clinical_kernel.models.workflow_instance import WorkflowInstanceModel

__all__ = [
    "MedicalRecordModel",
    "StepHistoryModel",
    "BlockerModel",
    "AssignmentModel",
    "RecordPermissionModel",
    "WorkflowInstanceModel",
    "AuditAction",
    "WorkflowAuditEvent",
]
