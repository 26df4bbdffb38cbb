"""
clinical_services -- Stateful coordination of the clinical workflow engine.

Architecture position:
    Services layer.  May import clinical_kernel, clinical_engines and
    clinical_config.  Nothing below this layer imports from it.
"""

from clinical_services.access_guard import AccessGuard
from clinical_services.audit import (
    AuditRecord,
    AuditSink,
    LoggingAuditSink,
    SqlAuditSink,
)
from clinical_services.outcomes import (
    TransitionAuthorization,
    TransitionOutcome,
    WorkflowContext,
    WorkflowWarning,
    error_response,
    success_response,
)
from clinical_services.workflow_orchestrator import (
    WorkflowOrchestrator,
    build_workflow_orchestrator,
)

__all__ = [
    "AccessGuard",
    "AuditRecord",
    "AuditSink",
    "LoggingAuditSink",
    "SqlAuditSink",
    "TransitionAuthorization",
    "TransitionOutcome",
    "WorkflowContext",
    "WorkflowWarning",
    "error_response",
    "success_response",
    "WorkflowOrchestrator",
    "build_workflow_orchestrator",
]
