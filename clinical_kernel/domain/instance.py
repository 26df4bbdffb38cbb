"""
Generic workflow instances (``clinical_kernel.domain.instance``).

A ``WorkflowInstance`` tracks a non-record entity (lab report, invoice, ...)
through one of the registry's generic workflows.  Instances are immutable;
the orchestrator replaces the stored instance on every action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class InstanceStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class InstanceHistoryEntry:
    step: str
    action: str
    performed_by: str
    performed_at: datetime
    previous_step: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowInstance:
    instance_id: str
    workflow_name: str
    entity_type: str
    entity_id: str
    current_step: str
    created_by: str
    created_at: datetime
    status: InstanceStatus = InstanceStatus.ACTIVE
    history: tuple[InstanceHistoryEntry, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    version: int = 0

    @property
    def is_completed(self) -> bool:
        return self.status is InstanceStatus.COMPLETED
