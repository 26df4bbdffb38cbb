"""Stores for the clinical kernel (imperative shell)."""

from clinical_kernel.services.instance_store import (
    InMemoryInstanceStore,
    SqlInstanceStore,
    WorkflowInstanceStore,
)
from clinical_kernel.services.record_repository import (
    MedicalRecordRepository,
    SqlMedicalRecordRepository,
)

__all__ = [
    "InMemoryInstanceStore",
    "MedicalRecordRepository",
    "SqlInstanceStore",
    "SqlMedicalRecordRepository",
    "WorkflowInstanceStore",
]
