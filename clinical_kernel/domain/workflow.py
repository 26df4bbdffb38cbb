"""
Canonical workflow types (``clinical_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for workflow state machines: the closed action and step
vocabularies, per-step specifications, and the immutable
``WorkflowDefinition`` graph that the registry serves.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* ``initial_step`` is a member of ``steps`` (checked at config load time).
* Transition targets reference only steps in ``steps``.
* Steps in ``terminal_steps`` have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from clinical_kernel.domain.roles import Role


class WorkflowAction(str, Enum):
    SUBMIT = "submit"
    REVIEW = "review"
    APPROVE = "approve"
    REJECT = "reject"
    REVISE = "revise"
    FINALIZE = "finalize"
    ARCHIVE = "archive"
    CANCEL = "cancel"
    # Record workflow: move to whichever next step the caller names.
    ADVANCE = "advance"

    def __str__(self) -> str:
        return self.value


class WorkflowStep(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUIRED = "revision_required"
    FINALIZED = "finalized"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"
    DOCTOR_REVIEW = "doctor_review"
    NURSE_VERIFY = "nurse_verify"
    BILLING_REVIEW = "billing_review"
    INSURANCE_PROCESS = "insurance_process"

    def __str__(self) -> str:
        return self.value


WORKFLOW_ACTIONS: frozenset[str] = frozenset(a.value for a in WorkflowAction)
WORKFLOW_STEPS: frozenset[str] = frozenset(s.value for s in WorkflowStep)

# Registry name of the medical record workflow.
RECORD_WORKFLOW_NAME = "medical_record"

# Synthetic history actions; never valid as a requested action.
CREATE_ACTION = "create"
INITIALIZE_ACTION = "initialize"

ACTION_DISPLAY_NAMES: dict[str, str] = {
    WorkflowAction.SUBMIT: "Submit",
    WorkflowAction.REVIEW: "Review",
    WorkflowAction.APPROVE: "Approve",
    WorkflowAction.REJECT: "Reject",
    WorkflowAction.REVISE: "Revise",
    WorkflowAction.FINALIZE: "Finalize",
    WorkflowAction.ARCHIVE: "Archive",
    WorkflowAction.CANCEL: "Cancel",
    WorkflowAction.ADVANCE: "Advance",
}

ACTION_DESCRIPTIONS: dict[str, str] = {
    WorkflowAction.SUBMIT: "Submit for review or processing",
    WorkflowAction.REVIEW: "Begin review process",
    WorkflowAction.APPROVE: "Approve and move forward",
    WorkflowAction.REJECT: "Reject and require changes",
    WorkflowAction.REVISE: "Make revisions or corrections",
    WorkflowAction.FINALIZE: "Complete and finalize",
    WorkflowAction.ARCHIVE: "Archive for long-term storage",
    WorkflowAction.CANCEL: "Cancel and abandon",
    WorkflowAction.ADVANCE: "Advance to the next workflow step",
}


def action_display_name(action: str) -> str:
    return ACTION_DISPLAY_NAMES.get(action, action)


def action_description(action: str) -> str:
    return ACTION_DESCRIPTIONS.get(action, "Perform action")


class WorkflowType(str, Enum):
    STANDARD = "standard"
    EMERGENCY = "emergency"
    INSURANCE_REQUIRED = "insurance_required"
    COMPLEX_CASE = "complex_case"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.URGENT: 3,
}


@dataclass(frozen=True)
class StepSpec:
    """What may happen from one step.

    Contract: frozen.  ``allowed_roles`` and ``transitions`` are keyed by
    action; every action in ``allowed_actions`` should have an entry in both
    (the config validator enforces this).
    """

    name: str
    allowed_actions: frozenset[str] = frozenset()
    allowed_roles: dict[str, frozenset[Role]] = field(default_factory=dict)
    transitions: dict[str, tuple[str, ...]] = field(default_factory=dict)
    display_name: str = ""
    description: str = ""

    def targets(self, action: str) -> tuple[str, ...]:
        return self.transitions.get(action, ())

    def roles_for(self, action: str) -> frozenset[Role]:
        return self.allowed_roles.get(action, frozenset())

    @property
    def has_outgoing(self) -> bool:
        return any(self.transitions.values())


@dataclass(frozen=True)
class WorkflowDefinition:
    """A named, immutable workflow graph.

    Contract: frozen; loaded once at startup by ``clinical_config``.
    """

    name: str
    module: str
    initial_step: str
    steps: dict[str, StepSpec]
    terminal_steps: frozenset[str] = frozenset()
    description: str = ""

    def has_step(self, step: str | None) -> bool:
        return step is not None and step in self.steps

    def step(self, step: str) -> StepSpec | None:
        return self.steps.get(step)

    def is_terminal(self, step: str) -> bool:
        return step in self.terminal_steps

    def next_steps(self, step: str, action: str) -> tuple[str, ...]:
        spec = self.steps.get(step)
        if spec is None or action not in spec.allowed_actions:
            return ()
        return spec.targets(action)

    def edges(self):
        """Yield every ``(from_step, action, to_step)`` edge."""
        for step_name, spec in self.steps.items():
            for action, targets in spec.transitions.items():
                for target in targets:
                    yield step_name, action, target
