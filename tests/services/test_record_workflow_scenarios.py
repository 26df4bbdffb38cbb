"""
End-to-end record workflow through WorkflowOrchestrator.transition_medical_record.

Covers the acceptance scenarios:
- A: doctor advances a draft with a chief complaint to doctor review
- B: the same request without a chief complaint fails its business rule
- C: a nurse may not move a record into billing review
- D: an active blocker locks the record for non-admins
- E: an admin passes the same blocker
- F: finalization requires an electronic signature

And the invariants every transition must keep: one history entry per
success, prior entries untouched, every entry a registry edge, terminal
steps closed.
"""

import pytest

from clinical_kernel.domain.record import RecordStatus
from clinical_kernel.domain.roles import RecordPermission, Role
from clinical_kernel.domain.workflow import Priority, WorkflowType
from clinical_kernel.exceptions import (
    BusinessRuleFailedError,
    InvalidTransitionError,
    MissingWorkflowStepError,
    NotAssignedError,
    PermissionDeniedError,
    RecordNotFoundError,
    UnauthorizedError,
    WorkflowLockedError,
)


class TestScenarios:
    def test_a_doctor_advances_draft(self, orchestrator, create_record, record_repo, doctor):
        record = create_record()

        outcome = orchestrator.transition_medical_record(
            record.record_id, "doctor_review", doctor, action="advance",
        )

        assert outcome.from_step == "draft"
        assert outcome.to_step == "doctor_review"
        assert outcome.action == "advance"
        assert outcome.warnings == ()
        stored = record_repo.find_by_id(record.record_id)
        assert stored.current_step == "doctor_review"
        assert stored.history_length == record.history_length + 1
        assert stored.record_status is RecordStatus.IN_PROGRESS
        assert stored.version == record.version + 1

    def test_b_missing_chief_complaint(self, orchestrator, create_record, record_repo, doctor):
        record = create_record(chief_complaint=None)

        with pytest.raises(BusinessRuleFailedError) as exc_info:
            orchestrator.transition_medical_record(
                record.record_id, "doctor_review", doctor, action="advance",
            )

        assert str(exc_info.value) == "Chief complaint is required before doctor review"
        assert exc_info.value.target_step == "doctor_review"
        stored = record_repo.find_by_id(record.record_id)
        assert stored.current_step == "draft"
        assert stored == record

    def test_c_nurse_cannot_enter_billing_review(
        self, orchestrator, create_record, record_repo, doctor, nurse,
    ):
        record = create_record(clinical_impression="Stable angina")
        orchestrator.transition_medical_record(record.record_id, "doctor_review", doctor)
        orchestrator.assign_user(record.record_id, nurse.id, Role.NURSE, doctor)
        orchestrator.transition_medical_record(record.record_id, "nurse_verify", nurse)
        before = record_repo.find_by_id(record.record_id)

        with pytest.raises(PermissionDeniedError) as exc_info:
            orchestrator.transition_medical_record(record.record_id, "billing_review", nurse)

        assert exc_info.value.role == "nurse"
        assert exc_info.value.step == "nurse_verify"
        assert exc_info.value.target_step == "billing_review"
        assert record_repo.find_by_id(record.record_id).history_length == before.history_length

    def test_c_capability_required_when_requested(
        self, orchestrator, create_record, record_repo, doctor, nurse,
    ):
        record = create_record(clinical_impression="Stable angina")
        orchestrator.transition_medical_record(record.record_id, "doctor_review", doctor)
        orchestrator.assign_user(record.record_id, nurse.id, Role.NURSE, doctor)

        with pytest.raises(PermissionDeniedError) as exc_info:
            orchestrator.transition_medical_record(
                record.record_id, "nurse_verify", nurse, permission=RecordPermission.APPROVE,
            )
        assert exc_info.value.action == "approve"
        assert record_repo.find_by_id(record.record_id).current_step == "doctor_review"

        outcome = orchestrator.transition_medical_record(
            record.record_id, "nurse_verify", nurse, permission=RecordPermission.EDIT,
        )
        assert outcome.to_step == "nurse_verify"

    def test_c_step_outside_next_steps(self, orchestrator, create_record, doctor, nurse):
        record = create_record()
        orchestrator.assign_user(record.record_id, nurse.id, Role.NURSE, doctor)

        with pytest.raises(InvalidTransitionError):
            orchestrator.transition_medical_record(record.record_id, "billing_review", nurse)

    def test_d_blocker_locks_non_admin(self, orchestrator, create_record, record_repo, doctor):
        record = create_record()
        orchestrator.add_blocker(record.record_id, "lab_pending", "Awaiting troponin", doctor)

        with pytest.raises(WorkflowLockedError) as exc_info:
            orchestrator.transition_medical_record(record.record_id, "doctor_review", doctor)

        assert exc_info.value.http_status == 423
        assert exc_info.value.blockers == ["lab_pending: Awaiting troponin"]
        assert record_repo.find_by_id(record.record_id).current_step == "draft"

    def test_d_blocker_locks_whatever_the_target(self, orchestrator, create_record, doctor, nurse):
        record = create_record()
        orchestrator.transition_medical_record(record.record_id, "doctor_review", doctor)
        orchestrator.assign_user(record.record_id, nurse.id, Role.NURSE, doctor)
        orchestrator.add_blocker(record.record_id, "consent", "Unsigned", doctor)

        with pytest.raises(WorkflowLockedError):
            orchestrator.transition_medical_record(record.record_id, "finalized", nurse)
        with pytest.raises(WorkflowLockedError):
            orchestrator.transition_medical_record(record.record_id, "cancelled", nurse)

    def test_e_admin_passes_blocker(self, orchestrator, create_record, doctor, admin):
        record = create_record()
        orchestrator.add_blocker(record.record_id, "lab_pending", "Awaiting troponin", doctor)

        outcome = orchestrator.transition_medical_record(record.record_id, "doctor_review", admin)

        assert outcome.to_step == "doctor_review"
        assert len(outcome.record.workflow_status.active_blockers) == 1

    def test_e_admin_still_subject_to_business_rules(
        self, orchestrator, create_record, doctor, admin,
    ):
        record = create_record(chief_complaint=None)
        orchestrator.add_blocker(record.record_id, "lab_pending", "Awaiting troponin", doctor)

        with pytest.raises(BusinessRuleFailedError):
            orchestrator.transition_medical_record(record.record_id, "doctor_review", admin)

    def test_f_finalization_needs_signature(
        self, orchestrator, create_record, record_repo, doctor,
    ):
        record = create_record(
            workflow_type=WorkflowType.EMERGENCY, clinical_impression="Unstable angina",
        )
        assert record.workflow_status.priority is Priority.URGENT
        orchestrator.transition_medical_record(record.record_id, "doctor_review", doctor)

        with pytest.raises(BusinessRuleFailedError) as exc_info:
            orchestrator.transition_medical_record(record.record_id, "finalized", doctor)
        assert str(exc_info.value) == "Electronic signature is required before finalization"
        assert record_repo.find_by_id(record.record_id).current_step == "doctor_review"

        orchestrator.sign_record(record.record_id, doctor)
        outcome = orchestrator.transition_medical_record(record.record_id, "finalized", doctor)
        assert outcome.record.record_status is RecordStatus.FINALIZED
        assert outcome.record.workflow_status.actual_completion_time is not None


class TestResolvedBlocker:
    def test_doctor_proceeds_after_resolution(self, orchestrator, create_record, doctor):
        record = create_record()
        blocked = orchestrator.add_blocker(record.record_id, "consent", "Consent form", doctor)
        (blocker,) = blocked.workflow_status.blockers

        orchestrator.resolve_blocker(record.record_id, blocker.blocker_id, doctor)
        outcome = orchestrator.transition_medical_record(record.record_id, "doctor_review", doctor)

        assert outcome.to_step == "doctor_review"


class TestInvariants:
    @pytest.fixture
    def archived(self, orchestrator, create_record, admin, complete_content):
        record = create_record(**complete_content)
        rid = record.record_id
        orchestrator.transition_medical_record(rid, "doctor_review", admin)
        orchestrator.transition_medical_record(rid, "nurse_verify", admin)
        orchestrator.transition_medical_record(rid, "billing_review", admin)
        orchestrator.sign_record(rid, admin)
        orchestrator.transition_medical_record(rid, "finalized", admin)
        return orchestrator.transition_medical_record(rid, "archived", admin).record

    def test_every_history_entry_is_a_registry_edge(self, archived, registry):
        history = archived.workflow_status.step_history
        assert [h.step for h in history] == [
            "draft", "doctor_review", "nurse_verify", "billing_review", "finalized", "archived",
        ]
        for entry in history[1:]:
            assert registry.is_valid_workflow_transition(
                "medical_record", entry.previous_step, entry.step, entry.action,
            )
        assert history[-1].action == "archive"

    def test_history_grows_by_one_and_never_changes(
        self, orchestrator, create_record, record_repo, admin, complete_content,
    ):
        record = create_record(**complete_content)
        snapshots = [record.workflow_status.step_history]
        for step in ("doctor_review", "nurse_verify", "billing_review"):
            orchestrator.transition_medical_record(record.record_id, step, admin)
            snapshots.append(record_repo.find_by_id(record.record_id).workflow_status.step_history)

        for previous, current in zip(snapshots, snapshots[1:]):
            assert len(current) == len(previous) + 1
            assert current[: len(previous)] == previous

    def test_archived_is_closed(self, orchestrator, archived, admin):
        assert archived.workflow_status.next_steps == ()
        for step in ("draft", "finalized", "cancelled"):
            with pytest.raises(InvalidTransitionError):
                orchestrator.transition_medical_record(archived.record_id, step, admin)

    def test_cancelled_is_closed(self, orchestrator, create_record, doctor, admin):
        record = create_record()
        outcome = orchestrator.transition_medical_record(record.record_id, "cancelled", doctor)
        assert outcome.action == "cancel"
        assert outcome.record.record_status is RecordStatus.CANCELLED

        with pytest.raises(InvalidTransitionError):
            orchestrator.transition_medical_record(record.record_id, "doctor_review", admin)

    def test_only_admin_archives_finalized(
        self, orchestrator, create_record, doctor, complete_content,
    ):
        record = create_record(workflow_type=WorkflowType.EMERGENCY, **complete_content)
        orchestrator.transition_medical_record(record.record_id, "doctor_review", doctor)
        orchestrator.sign_record(record.record_id, doctor)
        orchestrator.transition_medical_record(record.record_id, "finalized", doctor)

        with pytest.raises(PermissionDeniedError):
            orchestrator.transition_medical_record(record.record_id, "archived", doctor)


class TestRequestChecks:
    def test_no_actor(self, orchestrator, create_record):
        record = create_record()
        with pytest.raises(UnauthorizedError):
            orchestrator.transition_medical_record(record.record_id, "doctor_review", None)

    def test_missing_step(self, orchestrator, create_record, doctor):
        record = create_record()
        with pytest.raises(MissingWorkflowStepError):
            orchestrator.transition_medical_record(record.record_id, "", doctor)

    def test_unknown_record(self, orchestrator, doctor, trace_records):
        with pytest.raises(RecordNotFoundError):
            orchestrator.transition_medical_record("MR-absent", "doctor_review", doctor)
        assert trace_records[-1]["outcome"] == "not_found"

    def test_unassigned_doctor(self, orchestrator, create_record, other_doctor, trace_records):
        record = create_record()
        with pytest.raises(NotAssignedError):
            orchestrator.transition_medical_record(record.record_id, "doctor_review", other_doctor)
        assert trace_records[-1]["outcome"] == "not_assigned"

    def test_identity_mapping_accepted(self, orchestrator, create_record):
        record = create_record()
        outcome = orchestrator.transition_medical_record(
            record.record_id, "doctor_review", {"id": "doc-1", "role": "Doctor", "name": "Dr. Grey"},
        )
        assert outcome.record.workflow_status.step_history[-1].performed_by == "doc-1"

    def test_action_must_match_next_step(self, orchestrator, create_record, doctor):
        record = create_record()
        with pytest.raises(InvalidTransitionError):
            orchestrator.transition_medical_record(
                record.record_id, "doctor_review", doctor, action="cancel",
            )

    def test_reinitialize_rejected(self, orchestrator, create_record, doctor):
        record = create_record()
        with pytest.raises(InvalidTransitionError):
            orchestrator.initialize_medical_record_workflow(record, doctor)


class TestOverdueWarning:
    def test_overdue_record_moves_with_warning(
        self, orchestrator, create_record, admin, deterministic_clock, complete_content,
    ):
        record = create_record(**complete_content)
        first = orchestrator.transition_medical_record(record.record_id, "doctor_review", admin)
        estimated = first.record.workflow_status.estimated_completion_time
        assert estimated == deterministic_clock.now().replace(day=3)

        deterministic_clock.advance_hours(49)
        outcome = orchestrator.transition_medical_record(record.record_id, "nurse_verify", admin)

        (warning,) = outcome.warnings
        assert warning.type == "overdue"
        assert warning.to_dict()["estimated_time"] == estimated.isoformat()
        assert outcome.to_step == "nurse_verify"


class TestTraceAndAudit:
    def test_success_trace(self, orchestrator, create_record, doctor, trace_records):
        record = create_record()
        orchestrator.transition_medical_record(record.record_id, "doctor_review", doctor)

        trace = trace_records[-1]
        assert trace["trace_type"] == "WORKFLOW_TRANSITION"
        assert trace["message"] == "workflow_transition"
        assert trace["outcome"] == "success"
        assert trace["entity_type"] == "medical_record"
        assert trace["from_step"] == "draft"
        assert trace["to_step"] == "doctor_review"
        assert trace["record_id"] == record.record_id
        assert trace["actor_id"] == "doc-1"
        assert trace["reason"] == "owner_permission: 'draft' -> 'doctor_review'"

    def test_rejection_trace_logged_as_warning(
        self, orchestrator, create_record, doctor, captured_logs,
    ):
        record = create_record(chief_complaint=None)
        with pytest.raises(BusinessRuleFailedError):
            orchestrator.transition_medical_record(record.record_id, "doctor_review", doctor)

        (log,) = [r for r in captured_logs() if r["message"] == "workflow_transition"]
        assert log["level"] == "WARNING"
        assert log["outcome"] == "business_rule_failed"

    def test_audit_events(self, orchestrator, create_record, doctor, admin, audit_sink):
        record = create_record()
        orchestrator.transition_medical_record(record.record_id, "doctor_review", admin)

        assert audit_sink.actions() == ["record_workflow_initialized", "record_transitioned"]
        event = audit_sink.events[-1]
        assert event.actor == admin
        assert event.from_step == "draft"
        assert event.to_step == "doctor_review"
        assert event.payload["access_basis"] == "admin_override"
        assert event.payload["workflow_action"] == "advance"

    def test_failed_transition_not_audited(self, orchestrator, create_record, nurse, audit_sink):
        record = create_record()
        with pytest.raises(NotAssignedError):
            orchestrator.transition_medical_record(record.record_id, "doctor_review", nurse)
        assert audit_sink.actions() == ["record_workflow_initialized"]
