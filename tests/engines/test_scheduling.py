"""
Tests for completion estimates, overdue detection and progress
(clinical_engines.scheduling).
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from clinical_engines.scheduling import (
    calculate_estimated_completion,
    is_overdue,
    priority_for_workflow_type,
    sort_by_priority,
    workflow_progress,
)
from clinical_kernel.domain.record import MedicalRecord, WorkflowStatus
from clinical_kernel.domain.workflow import Priority, WorkflowType

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _record(
    record_id: str = "MR-1",
    step: str = "draft",
    estimated: datetime | None = None,
    priority: Priority = Priority.MEDIUM,
    created_at: datetime = T0,
) -> MedicalRecord:
    return MedicalRecord(
        record_id=record_id,
        patient_id="p",
        doctor_id=None,
        created_at=created_at,
        workflow_status=WorkflowStatus(
            current_step=step,
            priority=priority,
            estimated_completion_time=estimated,
        ),
    )


@pytest.mark.parametrize(
    "step, hours",
    [
        ("draft", 24),
        ("doctor_review", 48),
        ("nurse_verify", 24),
        ("billing_review", 72),
        ("insurance_process", 120),
        ("finalized", 0),
        ("triage", 48),
    ],
)
def test_estimated_completion_table(step, hours):
    assert calculate_estimated_completion(step, T0) == T0 + timedelta(hours=hours)


class TestIsOverdue:
    def test_no_estimate_is_never_overdue(self):
        assert not is_overdue(_record(), T0 + timedelta(days=365))

    def test_past_estimate(self):
        record = _record(step="doctor_review", estimated=T0)
        assert not is_overdue(record, T0)
        assert is_overdue(record, T0 + timedelta(seconds=1))

    @pytest.mark.parametrize("step", ["finalized", "archived", "cancelled"])
    def test_completed_steps_are_never_overdue(self, step):
        assert not is_overdue(_record(step=step, estimated=T0), T0 + timedelta(days=10))


@pytest.mark.parametrize(
    "step, percent",
    [
        ("draft", 17),
        ("doctor_review", 33),
        ("nurse_verify", 50),
        ("billing_review", 67),
        ("insurance_process", 83),
        ("finalized", 100),
        ("archived", 100),
        ("cancelled", 0),
    ],
)
def test_workflow_progress(step, percent):
    assert workflow_progress(_record(step=step)) == percent


def test_priority_for_workflow_type():
    assert priority_for_workflow_type(WorkflowType.EMERGENCY) is Priority.URGENT
    assert priority_for_workflow_type(WorkflowType.COMPLEX_CASE) is Priority.HIGH
    assert priority_for_workflow_type(WorkflowType.STANDARD) is Priority.MEDIUM


class TestSortByPriority:
    def _records(self):
        return [
            _record("old-medium", created_at=T0),
            _record("new-medium", created_at=T0 + timedelta(hours=1)),
            _record("urgent", priority=Priority.URGENT, created_at=T0 + timedelta(hours=2)),
            _record("low", priority=Priority.LOW, created_at=T0 - timedelta(hours=1)),
        ]

    def test_oldest_first_within_priority(self):
        ordered = sort_by_priority(self._records())
        assert [r.record_id for r in ordered] == ["urgent", "old-medium", "new-medium", "low"]

    def test_newest_first_within_priority(self):
        ordered = sort_by_priority(self._records(), newest_first=True)
        assert [r.record_id for r in ordered] == ["urgent", "new-medium", "old-medium", "low"]

    def test_does_not_reorder_input(self):
        records = self._records()
        original = [replace(r) for r in records]
        sort_by_priority(records)
        assert records == original
