"""
clinical_services.outcomes -- Structured results for the boundary layer.

Responsibility:
    Result value objects returned by the guard and the orchestrator, and
    ``error_response`` which maps any exception raised by this core to an
    ``(http_status, body)`` pair for the (out-of-scope) HTTP layer.

Invariants enforced:
    - Only ``ClinicalWorkflowError`` subclasses expose their message and
      structured attributes.  Anything else becomes a generic 500 that
      never leaks internal detail; the exception itself is logged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from clinical_engines.permissions import AccessBasis
from clinical_kernel.domain.record import MedicalRecord, NextStep
from clinical_kernel.domain.roles import Role
from clinical_kernel.exceptions import ClinicalWorkflowError, WorkflowValidationError
from clinical_kernel.logging_config import get_logger

logger = get_logger("services.outcomes")

WARNING_OVERDUE = "overdue"


@dataclass(frozen=True)
class WorkflowWarning:
    """Non-blocking condition attached to a successful response."""

    type: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message, **_jsonable(self.details)}


@dataclass(frozen=True)
class WorkflowContext:
    """What a request-level guard established about the request."""

    workflow: str
    module: str
    current_step: str | None = None
    action: str | None = None
    new_step: str | None = None
    role: Role | None = None


@dataclass(frozen=True)
class TransitionAuthorization:
    """The guard's verdict for a record transition that passed every check."""

    basis: AccessBasis
    next_step: NextStep
    action: str
    warnings: tuple[WorkflowWarning, ...] = ()


@dataclass(frozen=True)
class TransitionOutcome:
    """A committed record transition."""

    record: MedicalRecord
    from_step: str
    to_step: str
    action: str
    warnings: tuple[WorkflowWarning, ...] = ()


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


def error_details(exc: ClinicalWorkflowError) -> dict[str, Any]:
    """Public structured attributes of a workflow error."""
    return {
        k: _jsonable(v)
        for k, v in vars(exc).items()
        if not k.startswith("_") and v is not None
    }


def error_response(exc: BaseException) -> tuple[int, dict[str, Any]]:
    """Map an exception to ``(http_status, body)``."""
    if isinstance(exc, ClinicalWorkflowError):
        return exc.http_status, {
            "ok": False,
            "error": {
                "code": exc.code,
                "category": exc.category,
                "message": str(exc),
                "details": error_details(exc),
            },
        }

    logger.error(
        "unexpected_workflow_error",
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    return 500, {
        "ok": False,
        "error": {
            "code": WorkflowValidationError.code,
            "category": "internal",
            "message": "Workflow validation error",
            "details": {},
        },
    }


def success_response(
    data: Any,
    warnings: tuple[WorkflowWarning, ...] = (),
) -> tuple[int, dict[str, Any]]:
    body: dict[str, Any] = {"ok": True, "data": data}
    if warnings:
        body["warnings"] = [w.to_dict() for w in warnings]
    return 200, body
