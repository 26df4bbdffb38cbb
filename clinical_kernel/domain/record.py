"""
Medical record workflow state (``clinical_kernel.domain.record``).

Responsibility
--------------
Immutable value objects for a workflowable medical record: its clinical
content, its ``WorkflowStatus`` (current step, next steps, append-only step
history, blockers, completion bookkeeping) and its ``AccessControl`` block
(owner, assignments, per-capability role sets).

All state changes are expressed as pure functions in
``clinical_engines.transitions`` that return a new ``MedicalRecord``; nothing
here mutates.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``step_history`` is a tuple; new entries are only ever appended by
  building a longer tuple.
* A blocker is active iff ``resolved_at`` is unset.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from clinical_kernel.domain.roles import RecordPermission, Role
from clinical_kernel.domain.workflow import Priority, WorkflowStep, WorkflowType


class RecordStatus(str, Enum):
    DRAFT = "Draft"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    REVIEWED = "Reviewed"
    FINALIZED = "Finalized"
    AMENDED = "Amended"
    CANCELLED = "Cancelled"


# ---------------------------------------------------------------------------
# Clinical content
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TreatmentPlan:
    medications: tuple[str, ...] = ()
    procedures: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.medications and not self.procedures


@dataclass(frozen=True)
class ElectronicSignature:
    signed_by: str | None = None
    signed_at: datetime | None = None
    signature_hash: str | None = None


@dataclass(frozen=True)
class ClinicalContent:
    """The parts of a record's clinical content the workflow gates on."""

    chief_complaint: str | None = None
    clinical_impression: str | None = None
    treatment_plan: TreatmentPlan = field(default_factory=TreatmentPlan)
    icd10_codes: tuple[str, ...] = ()
    electronic_signature: ElectronicSignature | None = None

    def to_dict(self) -> dict[str, Any]:
        sig = self.electronic_signature
        return {
            "chief_complaint": self.chief_complaint,
            "clinical_impression": self.clinical_impression,
            "treatment_plan": {
                "medications": list(self.treatment_plan.medications),
                "procedures": list(self.treatment_plan.procedures),
            },
            "icd10_codes": list(self.icd10_codes),
            "electronic_signature": None if sig is None else {
                "signed_by": sig.signed_by,
                "signed_at": sig.signed_at.isoformat() if sig.signed_at else None,
                "signature_hash": sig.signature_hash,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ClinicalContent":
        data = data or {}
        plan = data.get("treatment_plan") or {}
        sig = data.get("electronic_signature")
        signature = None
        if sig:
            signed_at = sig.get("signed_at")
            if isinstance(signed_at, str):
                signed_at = datetime.fromisoformat(signed_at)
            signature = ElectronicSignature(
                signed_by=sig.get("signed_by"),
                signed_at=signed_at,
                signature_hash=sig.get("signature_hash"),
            )
        return cls(
            chief_complaint=data.get("chief_complaint"),
            clinical_impression=data.get("clinical_impression"),
            treatment_plan=TreatmentPlan(
                medications=tuple(plan.get("medications") or ()),
                procedures=tuple(plan.get("procedures") or ()),
            ),
            icd10_codes=tuple(data.get("icd10_codes") or ()),
            electronic_signature=signature,
        )


# ---------------------------------------------------------------------------
# Workflow status
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StepHistoryEntry:
    """One appended transition.  Immutable once appended."""

    step: str
    previous_step: str | None
    performed_by: str
    performed_at: datetime
    action: str
    comments: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Blocker:
    blocker_id: str
    type: str
    reason: str
    blocked_by: str
    blocked_at: datetime
    resolved_by: str | None = None
    resolved_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None


@dataclass(frozen=True)
class NextStep:
    """A step reachable from the current step and who may move there."""

    step: str
    allowed_roles: frozenset[Role]
    action: str = "advance"


@dataclass(frozen=True)
class WorkflowStatus:
    current_step: str = WorkflowStep.DRAFT.value
    workflow_type: WorkflowType = WorkflowType.STANDARD
    priority: Priority = Priority.MEDIUM
    next_steps: tuple[NextStep, ...] = ()
    step_history: tuple[StepHistoryEntry, ...] = ()
    blockers: tuple[Blocker, ...] = ()
    estimated_completion_time: datetime | None = None
    actual_completion_time: datetime | None = None

    @property
    def active_blockers(self) -> tuple[Blocker, ...]:
        return tuple(b for b in self.blockers if b.is_active)

    def next_steps_for(self, role: Role) -> tuple[NextStep, ...]:
        return tuple(n for n in self.next_steps if role in n.allowed_roles)


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Assignment:
    user: str
    role: Role
    assigned_at: datetime
    deadline: datetime | None = None


@dataclass(frozen=True)
class AccessControl:
    current_owner: str | None = None
    assigned_to: tuple[Assignment, ...] = ()
    permissions: dict[RecordPermission, frozenset[Role]] = field(
        default_factory=dict
    )

    def is_assigned(self, user_id: str) -> bool:
        return any(a.user == user_id for a in self.assigned_to)

    def roles_with(self, permission: RecordPermission) -> frozenset[Role]:
        return self.permissions.get(permission, frozenset())


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MedicalRecord:
    """A medical record together with its workflow and access state.

    ``version`` is the optimistic concurrency token: 0 for a record that has
    never been persisted, otherwise the stored row version it was loaded at.
    """

    record_id: str
    patient_id: str
    doctor_id: str | None
    created_at: datetime
    content: ClinicalContent = field(default_factory=ClinicalContent)
    record_status: RecordStatus = RecordStatus.DRAFT
    workflow_status: WorkflowStatus = field(default_factory=WorkflowStatus)
    access_control: AccessControl = field(default_factory=AccessControl)
    version: int = 0

    @property
    def current_step(self) -> str:
        return self.workflow_status.current_step

    @property
    def history_length(self) -> int:
        return len(self.workflow_status.step_history)
