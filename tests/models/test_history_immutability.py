"""
Append-only enforcement for step history and the workflow audit trail.

The ORM listeners in clinical_kernel.db.immutability must abort the flush
before any UPDATE or DELETE of these rows reaches the database.
"""

import pytest
from sqlalchemy import select

from clinical_engines.transitions import initialize_record_workflow
from clinical_kernel.domain.workflow import WorkflowType
from clinical_kernel.exceptions import ImmutabilityViolationError
from clinical_kernel.models.audit_event import AuditAction, WorkflowAuditEvent
from clinical_kernel.models.medical_record import StepHistoryModel


@pytest.fixture
def history_row(session, record_repo, make_record, doctor, deterministic_clock, record_workflow):
    record = initialize_record_workflow(
        make_record(), doctor, WorkflowType.STANDARD, deterministic_clock.now(), record_workflow,
    )
    record_repo.save(record)
    return session.execute(select(StepHistoryModel)).scalars().one()


@pytest.fixture
def audit_row(session, deterministic_clock):
    row = WorkflowAuditEvent(
        entity_type="MedicalRecord",
        entity_id="MR-0001",
        action=AuditAction.RECORD_TRANSITIONED.value,
        actor_id="doc-1",
        actor_role="doctor",
        occurred_at=deterministic_clock.now(),
        from_step="draft",
        to_step="doctor_review",
        payload={"comments": ""},
    )
    session.add(row)
    session.flush()
    return row


class TestStepHistory:
    def test_update_blocked(self, session, history_row):
        history_row.comments = "rewritten"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "StepHistory"

    def test_delete_blocked(self, session, history_row):
        session.delete(history_row)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_violation_is_logged(self, session, history_row, captured_logs):
        history_row.action = "approve"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["operation"] == "UPDATE"
        assert blocked[0]["entity_type"] == "StepHistory"


class TestAuditEvents:
    def test_update_blocked(self, session, audit_row):
        audit_row.to_step = "finalized"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "WorkflowAuditEvent"

    def test_delete_blocked(self, session, audit_row):
        session.delete(audit_row)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_insert_allowed(self, session, audit_row):
        rows = session.execute(select(WorkflowAuditEvent)).scalars().all()
        assert [r.action for r in rows] == ["record_transitioned"]
