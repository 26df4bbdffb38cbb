"""
Pytest fixtures for the clinical workflow test suite.

Provides:
- Structured logging configured once per session, plus log capture
- A database engine with tables created once and per-test savepoint sessions
- The packaged workflow registry
- Actor, record and orchestrator factories

Environment Variables:
- CLINICAL_TEST_DATABASE_URL: database URL for the suite.
  If not set, an in-memory SQLite database is used.
"""

import json
import logging
import os
from io import StringIO
from dataclasses import replace
from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import Session

from clinical_config import get_workflow_registry
from clinical_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from clinical_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from clinical_kernel.domain.clock import DeterministicClock
from clinical_kernel.domain.record import ClinicalContent, MedicalRecord, TreatmentPlan
from clinical_kernel.domain.roles import Actor, Role
from clinical_kernel.domain.workflow import WorkflowType
from clinical_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from clinical_kernel.services.instance_store import InMemoryInstanceStore
from clinical_kernel.services.record_repository import SqlMedicalRecordRepository
from clinical_services.audit import AuditRecord
from clinical_services.workflow_orchestrator import WorkflowOrchestrator

DEFAULT_TEST_DATABASE_URL = "sqlite:///:memory:"

FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture clinical_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.transition_medical_record(...)
            logs = captured_logs()
            assert any(r["message"] == "workflow_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("clinical_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


def get_test_database_url() -> str:
    return os.environ.get("CLINICAL_TEST_DATABASE_URL", DEFAULT_TEST_DATABASE_URL)


@pytest.fixture(scope="session")
def db_engine():
    engine = init_engine_from_url(get_test_database_url())
    yield engine
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, with immutability listeners on."""
    drop_tables(db_engine)
    create_tables(db_engine)
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables(db_engine)


@pytest.fixture
def db_connection(db_engine, db_tables):
    """One connection per test inside an outer transaction that is rolled back."""
    connection = db_engine.connect()
    transaction = connection.begin()
    yield connection
    transaction.rollback()
    connection.close()


@pytest.fixture
def session(db_connection) -> Session:
    """
    Session whose commits only release a SAVEPOINT.

    Code under test may call ``commit()`` and ``rollback()`` freely; all of
    it is discarded when the outer transaction rolls back.
    """
    sess = Session(
        bind=db_connection,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
    )
    yield sess
    sess.close()


@pytest.fixture
def session_factory(db_connection):
    """Factory of extra sessions on the test connection (audit sinks, second writers)."""

    def _factory() -> Session:
        return Session(
            bind=db_connection,
            join_transaction_mode="create_savepoint",
            expire_on_commit=False,
        )

    return _factory


# =============================================================================
# Time and configuration
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture(scope="session")
def registry():
    """The packaged workflow set, validated once per session."""
    return get_workflow_registry()


@pytest.fixture
def record_workflow(registry):
    return registry.get_workflow("medical_record")


# =============================================================================
# Actors
# =============================================================================


@pytest.fixture
def doctor() -> Actor:
    return Actor(id="doc-1", role=Role.DOCTOR, name="Dr. Grey")


@pytest.fixture
def other_doctor() -> Actor:
    return Actor(id="doc-2", role=Role.DOCTOR, name="Dr. Shepherd")


@pytest.fixture
def nurse() -> Actor:
    return Actor(id="nurse-1", role=Role.NURSE, name="Nurse Joy")


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role=Role.ADMIN, name="Admin")


@pytest.fixture
def billing_clerk() -> Actor:
    return Actor(id="billing-1", role=Role.BILLING_STAFF, name="Billing")


@pytest.fixture
def insurance_agent() -> Actor:
    return Actor(id="ins-1", role=Role.INSURANCE_STAFF, name="Insurance")


@pytest.fixture
def receptionist() -> Actor:
    return Actor(id="rec-1", role=Role.RECEPTIONIST, name="Front Desk")


# =============================================================================
# Records
# =============================================================================


@pytest.fixture
def make_record(deterministic_clock):
    """Build a never-persisted record (version 0) with a chief complaint."""
    counter = iter(range(1, 10_000))

    def _make(
        record_id: str | None = None,
        patient_id: str = "patient-1",
        doctor_id: str | None = "doc-1",
        **content,
    ) -> MedicalRecord:
        content.setdefault("chief_complaint", "Chest pain")
        return MedicalRecord(
            record_id=record_id or f"MR-{next(counter):04d}",
            patient_id=patient_id,
            doctor_id=doctor_id,
            created_at=deterministic_clock.now(),
            content=ClinicalContent(**content),
        )

    return _make


@pytest.fixture
def record_repo(session) -> SqlMedicalRecordRepository:
    return SqlMedicalRecordRepository(session)


@pytest.fixture
def update_content(record_repo):
    """Overwrite clinical content fields of a stored record and commit."""

    def _update(record_id: str, **fields) -> MedicalRecord:
        record = record_repo.find_by_id(record_id)
        saved = record_repo.save(replace(record, content=replace(record.content, **fields)))
        record_repo.commit()
        return saved

    return _update


@pytest.fixture
def complete_content():
    """Content satisfying every built-in business rule except the signature."""
    return {
        "clinical_impression": "Stable angina",
        "treatment_plan": TreatmentPlan(medications=("aspirin",)),
        "icd10_codes": ("I20.9",),
    }


# =============================================================================
# Orchestrator
# =============================================================================


class RecordingAuditSink:
    """Audit sink that keeps every record in memory."""

    def __init__(self):
        self.events: list[AuditRecord] = []

    def record(self, event: AuditRecord) -> None:
        self.events.append(event)

    def actions(self) -> list[str]:
        return [e.action.value for e in self.events]


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def trace_records() -> list[dict]:
    return []


@pytest.fixture
def instance_store(deterministic_clock) -> InMemoryInstanceStore:
    return InMemoryInstanceStore(clock=deterministic_clock)


@pytest.fixture
def orchestrator(
    registry,
    record_repo,
    instance_store,
    deterministic_clock,
    audit_sink,
    trace_records,
) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(
        registry,
        record_repo,
        instance_store,
        clock=deterministic_clock,
        audit_sink=audit_sink,
        outcome_sink=trace_records.append,
    )


@pytest.fixture
def create_record(orchestrator, make_record, doctor):
    """Persist a record and start it on the record workflow."""

    def _create(
        actor: Actor | None = None,
        workflow_type: WorkflowType = WorkflowType.STANDARD,
        **kwargs,
    ) -> MedicalRecord:
        return orchestrator.initialize_medical_record_workflow(
            make_record(**kwargs), actor or doctor, workflow_type,
        )

    return _create
