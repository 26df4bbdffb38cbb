"""
Pure domain layer.

This module contains value objects and domain vocabulary with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from clinical_kernel.domain.cancellation import CancellationToken, check_cancelled
from clinical_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from clinical_kernel.domain.instance import (
    InstanceHistoryEntry,
    InstanceStatus,
    WorkflowInstance,
)
from clinical_kernel.domain.record import (
    AccessControl,
    Assignment,
    Blocker,
    ClinicalContent,
    ElectronicSignature,
    MedicalRecord,
    NextStep,
    RecordStatus,
    StepHistoryEntry,
    TreatmentPlan,
    WorkflowStatus,
)
from clinical_kernel.domain.roles import Actor, RecordPermission, Role
from clinical_kernel.domain.workflow import (
    RECORD_WORKFLOW_NAME,
    WORKFLOW_ACTIONS,
    WORKFLOW_STEPS,
    Priority,
    StepSpec,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowStep,
    WorkflowType,
    action_description,
    action_display_name,
)

__all__ = [
    # Time and cancellation
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "CancellationToken",
    "check_cancelled",
    # Identity
    "Role",
    "RecordPermission",
    "Actor",
    # Workflow vocabulary
    "WorkflowAction",
    "WorkflowStep",
    "WORKFLOW_ACTIONS",
    "WORKFLOW_STEPS",
    "RECORD_WORKFLOW_NAME",
    "WorkflowType",
    "Priority",
    "StepSpec",
    "WorkflowDefinition",
    "action_display_name",
    "action_description",
    # Records
    "RecordStatus",
    "TreatmentPlan",
    "ElectronicSignature",
    "ClinicalContent",
    "StepHistoryEntry",
    "Blocker",
    "NextStep",
    "WorkflowStatus",
    "Assignment",
    "AccessControl",
    "MedicalRecord",
    # Instances
    "InstanceStatus",
    "InstanceHistoryEntry",
    "WorkflowInstance",
]
