"""
Record operations besides transitions: blockers, electronic signatures,
manual assignment, and caller cancellation of any mutating call.
"""

from datetime import timedelta

import pytest

from clinical_engines.business_rules import default_business_rule_validator
from clinical_engines.transitions import signature_hash
from clinical_kernel.domain.cancellation import CancellationToken
from clinical_kernel.domain.roles import Role
from clinical_kernel.exceptions import (
    BlockerNotFoundError,
    NotAssignedError,
    OperationCancelledError,
    PermissionDeniedError,
)
from clinical_services.workflow_orchestrator import WorkflowOrchestrator


class TestBlockers:
    def test_add_and_resolve(self, orchestrator, create_record, doctor, deterministic_clock, audit_sink):
        record = create_record()
        blocked = orchestrator.add_blocker(record.record_id, "lab_pending", "CBC outstanding", doctor)

        (blocker,) = blocked.workflow_status.active_blockers
        assert blocker.type == "lab_pending"
        assert blocker.blocked_by == "doc-1"
        assert blocked.current_step == "draft"

        deterministic_clock.advance_hours(3)
        resolved = orchestrator.resolve_blocker(record.record_id, blocker.blocker_id, doctor)
        assert resolved.workflow_status.active_blockers == ()
        assert resolved.workflow_status.blockers[0].resolved_at == deterministic_clock.now()
        assert audit_sink.actions()[-2:] == ["blocker_added", "blocker_resolved"]
        assert audit_sink.events[-2].payload["reason"] == "CBC outstanding"

    def test_resolving_twice_keeps_first_resolution(
        self, orchestrator, create_record, doctor, admin, deterministic_clock,
    ):
        record = create_record()
        blocked = orchestrator.add_blocker(record.record_id, "consent", "Unsigned", doctor)
        blocker_id = blocked.workflow_status.blockers[0].blocker_id
        orchestrator.resolve_blocker(record.record_id, blocker_id, doctor)
        deterministic_clock.advance(10)

        again = orchestrator.resolve_blocker(record.record_id, blocker_id, admin)
        assert again.workflow_status.blockers[0].resolved_by == "doc-1"

    def test_unknown_blocker(self, orchestrator, create_record, doctor):
        record = create_record()
        with pytest.raises(BlockerNotFoundError):
            orchestrator.resolve_blocker(record.record_id, "nope", doctor)

    def test_stranger_cannot_block(self, orchestrator, create_record, other_doctor):
        record = create_record()
        with pytest.raises(NotAssignedError):
            orchestrator.add_blocker(record.record_id, "hold", "x", other_doctor)


class TestSigning:
    def test_doctor_signs(self, orchestrator, create_record, doctor, deterministic_clock, audit_sink):
        record = create_record()
        signed = orchestrator.sign_record(record.record_id, doctor)

        signature = signed.content.electronic_signature
        assert signature.signed_by == "doc-1"
        assert signature.signed_at == deterministic_clock.now()
        assert signature.signature_hash == signature_hash(
            record.record_id, "doc-1", deterministic_clock.now(),
        )
        assert signed.current_step == "draft"
        assert signed.history_length == record.history_length
        assert audit_sink.events[-1].payload == {"signature_hash": signature.signature_hash}

    def test_nurse_cannot_sign(self, orchestrator, create_record, doctor, nurse):
        record = create_record()
        orchestrator.assign_user(record.record_id, nurse.id, Role.NURSE, doctor)
        with pytest.raises(PermissionDeniedError) as exc_info:
            orchestrator.sign_record(record.record_id, nurse)
        assert exc_info.value.action == "sign"

    def test_standing_checked_first(self, orchestrator, create_record, other_doctor):
        record = create_record()
        with pytest.raises(NotAssignedError):
            orchestrator.sign_record(record.record_id, other_doctor)


class TestAssignment:
    def test_owner_assigns(self, orchestrator, create_record, doctor, deterministic_clock, audit_sink):
        record = create_record()
        deadline = deterministic_clock.now() + timedelta(hours=8)

        updated = orchestrator.assign_user(
            record.record_id, "nurse-1", Role.NURSE, doctor, deadline=deadline,
        )

        nurse_assignment = updated.access_control.assigned_to[-1]
        assert nurse_assignment.user == "nurse-1"
        assert nurse_assignment.role is Role.NURSE
        assert nurse_assignment.deadline == deadline
        assert audit_sink.actions()[-1] == "record_assigned"
        assert audit_sink.events[-1].payload == {"user_id": "nurse-1", "role": "nurse"}

    def test_role_spelling_normalized(self, orchestrator, create_record, admin):
        record = create_record()
        updated = orchestrator.assign_user(record.record_id, "billing-1", "Billing Staff", admin)
        assert updated.access_control.assigned_to[-1].role is Role.BILLING_STAFF

    def test_reassignment_is_not_duplicated(self, orchestrator, create_record, doctor):
        record = create_record()
        orchestrator.assign_user(record.record_id, "nurse-1", Role.NURSE, doctor)
        updated = orchestrator.assign_user(record.record_id, "nurse-1", Role.NURSE, doctor)
        assert [a.user for a in updated.access_control.assigned_to].count("nurse-1") == 1

    def test_assignee_cannot_assign(self, orchestrator, create_record, doctor, nurse):
        record = create_record()
        orchestrator.assign_user(record.record_id, nurse.id, Role.NURSE, doctor)
        with pytest.raises(PermissionDeniedError) as exc_info:
            orchestrator.assign_user(record.record_id, "nurse-2", Role.NURSE, nurse)
        assert exc_info.value.action == "assign"

    def test_stranger_cannot_assign(self, orchestrator, create_record, other_doctor):
        record = create_record()
        with pytest.raises(NotAssignedError):
            orchestrator.assign_user(record.record_id, "doc-2", Role.DOCTOR, other_doctor)

    def test_unknown_role(self, orchestrator, create_record, doctor):
        record = create_record()
        with pytest.raises(PermissionDeniedError) as exc_info:
            orchestrator.assign_user(record.record_id, "x-1", "surgeon", doctor)
        assert exc_info.value.role == "surgeon"

    def test_assignment_logged(self, orchestrator, create_record, doctor, captured_logs):
        record = create_record()
        orchestrator.assign_user(record.record_id, "nurse-1", Role.NURSE, doctor)
        (log,) = [r for r in captured_logs() if r["message"] == "record_assigned"]
        assert log["assignee_id"] == "nurse-1"
        assert log["record_id"] == record.record_id


class TestCancellation:
    def test_cancelled_before_load(self, orchestrator, create_record, record_repo, doctor, trace_records):
        record = create_record()
        token = CancellationToken()
        token.cancel("client disconnected")

        with pytest.raises(OperationCancelledError) as exc_info:
            orchestrator.transition_medical_record(
                record.record_id, "doctor_review", doctor, cancel_token=token,
            )

        assert exc_info.value.http_status == 499
        assert record_repo.find_by_id(record.record_id) == record
        assert trace_records[-1]["outcome"] == "cancelled"

    def test_cancelled_after_checks_writes_nothing(
        self, registry, record_repo, instance_store, deterministic_clock, audit_sink,
        make_record, doctor,
    ):
        token = CancellationToken()
        rules = default_business_rule_validator()

        def _cancel_while_validating(content):
            token.cancel("deadline exceeded")
            return True

        rules.register("doctor_review", _cancel_while_validating, "unused")
        orchestrator = WorkflowOrchestrator(
            registry, record_repo, instance_store,
            clock=deterministic_clock, audit_sink=audit_sink, rule_validator=rules,
        )
        record = orchestrator.initialize_medical_record_workflow(make_record(), doctor)

        with pytest.raises(OperationCancelledError):
            orchestrator.transition_medical_record(
                record.record_id, "doctor_review", doctor, cancel_token=token,
            )

        stored = record_repo.find_by_id(record.record_id)
        assert stored.current_step == "draft"
        assert stored.version == record.version
        assert audit_sink.actions() == ["record_workflow_initialized"]

    def test_cancelled_initialization_persists_nothing(
        self, orchestrator, make_record, record_repo, doctor,
    ):
        token = CancellationToken()
        token.cancel()
        record = make_record()

        with pytest.raises(OperationCancelledError):
            orchestrator.initialize_medical_record_workflow(record, doctor, cancel_token=token)
        assert record_repo.find_by_id(record.record_id) is None

    def test_cancelled_instance_action(self, orchestrator, doctor):
        instance = orchestrator.initialize_workflow("medical_record_approval", {"id": "MR-1"}, doctor)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            orchestrator.execute_action(instance.instance_id, "submit", doctor, cancel_token=token)
        assert orchestrator.get_workflow_instance(instance.instance_id).current_step == "draft"

    def test_cancelled_blocker(self, orchestrator, create_record, record_repo, doctor):
        record = create_record()
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            orchestrator.add_blocker(record.record_id, "hold", "x", doctor, cancel_token=token)
        assert record_repo.find_by_id(record.record_id).workflow_status.blockers == ()
