"""
clinical_engines.scheduling -- Completion estimates, overdue detection, progress.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The current time is always
    passed in by the caller; nothing here reads a clock.

Overdue detection is lazy: it is computed when a record is read, never
pushed by a timer.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from clinical_kernel.domain.record import MedicalRecord
from clinical_kernel.domain.workflow import Priority, WorkflowStep, WorkflowType

DEFAULT_STEP_DURATION_HOURS = 48

STEP_DURATION_HOURS: dict[str, int] = {
    WorkflowStep.DRAFT.value: 24,
    WorkflowStep.DOCTOR_REVIEW.value: 48,
    WorkflowStep.NURSE_VERIFY.value: 24,
    WorkflowStep.BILLING_REVIEW.value: 72,
    WorkflowStep.INSURANCE_PROCESS.value: 120,
    WorkflowStep.FINALIZED.value: 0,
}

# Steps after which a record can no longer be overdue.
COMPLETED_STEPS: frozenset[str] = frozenset({
    WorkflowStep.FINALIZED.value,
    WorkflowStep.ARCHIVED.value,
    WorkflowStep.CANCELLED.value,
})

PROGRESS_STEPS: tuple[str, ...] = (
    WorkflowStep.DRAFT.value,
    WorkflowStep.DOCTOR_REVIEW.value,
    WorkflowStep.NURSE_VERIFY.value,
    WorkflowStep.BILLING_REVIEW.value,
    WorkflowStep.INSURANCE_PROCESS.value,
    WorkflowStep.FINALIZED.value,
)


def calculate_estimated_completion(step: str, now: datetime) -> datetime:
    hours = STEP_DURATION_HOURS.get(step, DEFAULT_STEP_DURATION_HOURS)
    return now + timedelta(hours=hours)


def is_overdue(record: MedicalRecord, now: datetime) -> bool:
    """Past the estimated completion time and not yet finalized."""
    status = record.workflow_status
    if status.estimated_completion_time is None:
        return False
    if status.current_step in COMPLETED_STEPS:
        return False
    return now > status.estimated_completion_time


def workflow_progress(record: MedicalRecord) -> int:
    """Percentage of the record workflow completed (0-100).

    Archived records count as complete; cancelled records as not started.
    """
    step = record.current_step
    if step == WorkflowStep.ARCHIVED.value:
        return 100
    try:
        index = PROGRESS_STEPS.index(step)
    except ValueError:
        return 0
    return round((index + 1) / len(PROGRESS_STEPS) * 100)


def priority_for_workflow_type(workflow_type: WorkflowType) -> Priority:
    if workflow_type == WorkflowType.EMERGENCY:
        return Priority.URGENT
    if workflow_type == WorkflowType.COMPLEX_CASE:
        return Priority.HIGH
    return Priority.MEDIUM


def sort_by_priority(records: list[MedicalRecord], newest_first: bool = False) -> list[MedicalRecord]:
    """Highest priority first; ties broken by creation time."""
    if newest_first:
        return sorted(
            records,
            key=lambda r: (-r.workflow_status.priority.rank, -r.created_at.timestamp()),
        )
    return sorted(
        records,
        key=lambda r: (-r.workflow_status.priority.rank, r.created_at),
    )
