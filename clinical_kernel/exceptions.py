"""
Typed Exception Hierarchy for the Clinical Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The boundary layer (HTTP handlers, CLI, batch jobs) must turn every
failure into a precise outcome: 401, 403, 400, 404, 423 or a generic
500.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has a CATEGORY and a suggested HTTP_STATUS
  4. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        orchestrator.transition_medical_record(record_id, "nurse_verify", actor)
    except BusinessRuleFailedError as e:
        return {"error": e.code, "message": e.rule_message}
    except WorkflowLockedError as e:
        return {"error": e.code, "blockers": e.blockers}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ClinicalWorkflowError (base)
    |
    +-- AuthenticationError
    |   +-- UnauthorizedError
    |
    +-- AuthorizationError
    |   +-- PermissionDeniedError
    |   +-- NotAssignedError
    |
    +-- WorkflowValidationError
    |   +-- MissingWorkflowStepError
    |   +-- MissingWorkflowActionError
    |   +-- InvalidTransitionError
    |   +-- BusinessRuleFailedError
    |
    +-- ResourceError
    |   +-- WorkflowNotFoundError
    |   +-- RecordNotFoundError
    |   +-- WorkflowInstanceNotFoundError
    |   +-- BlockerNotFoundError
    |
    +-- LockError
    |   +-- WorkflowLockedError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- CancellationError
    |   +-- OperationCancelledError
    |
    +-- ConfigurationError
        +-- WorkflowConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                         | HTTP | When Raised
----------------|------------------------------|------|------------------------------------
Authentication  | UNAUTHORIZED                 | 401  | No authenticated actor
----------------|------------------------------|------|------------------------------------
Authorization   | WORKFLOW_PERMISSION_DENIED   | 403  | Role lacks authority for action/step
                | NOT_ASSIGNED                 | 403  | Actor not owner/admin/assignee
----------------|------------------------------|------|------------------------------------
Validation      | MISSING_WORKFLOW_STEP        | 400  | Target/current step absent
                | MISSING_WORKFLOW_ACTION      | 400  | Action absent
                | INVALID_WORKFLOW_TRANSITION  | 400  | Target step not a legal edge
                | BUSINESS_RULE_FAILED         | 400  | Content precondition unmet
----------------|------------------------------|------|------------------------------------
Resource        | WORKFLOW_NOT_FOUND           | 404  | Unregistered workflow name
                | RECORD_NOT_FOUND             | 404  | Unknown medical record
                | WORKFLOW_INSTANCE_NOT_FOUND  | 404  | Unknown (or evicted) instance
                | BLOCKER_NOT_FOUND            | 404  | Unknown blocker on a record
----------------|------------------------------|------|------------------------------------
Lock            | WORKFLOW_LOCKED              | 423  | Unresolved blocker, non-admin actor
----------------|------------------------------|------|------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT     | 409  | Record changed since it was loaded
----------------|------------------------------|------|------------------------------------
Immutability    | IMMUTABILITY_VIOLATION       | 500  | Update/delete of history or audit row
----------------|------------------------------|------|------------------------------------
Cancellation    | OPERATION_CANCELLED          | 499  | Caller cancelled before commit
----------------|------------------------------|------|------------------------------------
Configuration   | WORKFLOW_CONFIG_INVALID      | 500  | Workflow definition set is invalid

===============================================================================
RECOVERY SEMANTICS
===============================================================================

Authentication  -- always fatal to the request.
Authorization   -- recoverable by a different actor, never by retry.
Validation      -- recoverable once the caller fixes input or record content.
Resource        -- fatal, caller error.
Lock            -- recoverable once the blocker is resolved.
Concurrency     -- recoverable by reloading and retrying.
Internal        -- logged; a generic failure is surfaced without detail.
"""


class ErrorCategory:
    """Category names used for routing errors at the boundary."""

    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    RESOURCE = "resource"
    LOCK = "lock"
    CONCURRENCY = "concurrency"
    INTERNAL = "internal"


class ClinicalWorkflowError(Exception):
    """
    Base exception for all clinical workflow errors.

    All subclasses must set a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CLINICAL_WORKFLOW_ERROR"
    category: str = ErrorCategory.INTERNAL
    http_status: int = 500


# Authentication


class AuthenticationError(ClinicalWorkflowError):
    """Base exception for identity errors."""

    code: str = "AUTHENTICATION_ERROR"
    category: str = ErrorCategory.AUTHENTICATION
    http_status: int = 401


class UnauthorizedError(AuthenticationError):
    """No authenticated actor was supplied."""

    code: str = "UNAUTHORIZED"

    def __init__(self, operation: str = "workflow action"):
        self.operation = operation
        super().__init__(f"Authentication required for {operation}")


# Authorization


class AuthorizationError(ClinicalWorkflowError):
    """Base exception for role/assignment errors."""

    code: str = "AUTHORIZATION_ERROR"
    category: str = ErrorCategory.AUTHORIZATION
    http_status: int = 403


class PermissionDeniedError(AuthorizationError):
    """Role lacks authority for the action at this step."""

    code: str = "WORKFLOW_PERMISSION_DENIED"

    def __init__(
        self,
        role: str,
        action: str,
        step: str,
        workflow: str | None = None,
        target_step: str | None = None,
    ):
        self.role = role
        self.action = action
        self.step = step
        self.workflow = workflow
        self.target_step = target_step
        target = f" to '{target_step}'" if target_step else ""
        super().__init__(
            f"Workflow permission denied: {role} cannot perform "
            f"'{action}'{target} in step '{step}'"
        )


class NotAssignedError(AuthorizationError):
    """Actor is neither admin, owner, nor an assignee of the record."""

    code: str = "NOT_ASSIGNED"

    def __init__(self, actor_id: str, record_id: str):
        self.actor_id = actor_id
        self.record_id = record_id
        super().__init__("You are not assigned to this record")


# Validation


class WorkflowValidationError(ClinicalWorkflowError):
    """Base exception for caller-correctable validation errors."""

    code: str = "WORKFLOW_VALIDATION_ERROR"
    category: str = ErrorCategory.VALIDATION
    http_status: int = 400


class MissingWorkflowStepError(WorkflowValidationError):
    """A required step field was not supplied."""

    code: str = "MISSING_WORKFLOW_STEP"

    def __init__(self, field_name: str = "step"):
        self.field_name = field_name
        super().__init__(f"Workflow step required ({field_name})")


class MissingWorkflowActionError(WorkflowValidationError):
    """A required action field was not supplied."""

    code: str = "MISSING_WORKFLOW_ACTION"

    def __init__(self):
        super().__init__("Workflow action required")


class InvalidTransitionError(WorkflowValidationError):
    """Target step is not a legal edge from the current step."""

    code: str = "INVALID_WORKFLOW_TRANSITION"

    def __init__(
        self,
        workflow: str,
        from_step: str,
        to_step: str | None,
        action: str,
        reason: str | None = None,
    ):
        self.workflow = workflow
        self.from_step = from_step
        self.to_step = to_step
        self.action = action
        self.reason = reason
        message = (
            f"Invalid workflow transition in '{workflow}': "
            f"'{from_step}' --[{action}]--> '{to_step}'"
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class BusinessRuleFailedError(WorkflowValidationError):
    """A content precondition for the target step is not satisfied."""

    code: str = "BUSINESS_RULE_FAILED"

    def __init__(self, target_step: str, rule_message: str):
        self.target_step = target_step
        self.rule_message = rule_message
        super().__init__(rule_message)


# Resource


class ResourceError(ClinicalWorkflowError):
    """Base exception for unknown workflows, records and instances."""

    code: str = "RESOURCE_ERROR"
    category: str = ErrorCategory.RESOURCE
    http_status: int = 404


class WorkflowNotFoundError(ResourceError):
    """Workflow name is not registered."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, workflow_name: str):
        self.workflow_name = workflow_name
        super().__init__(f"Workflow '{workflow_name}' not found")


class RecordNotFoundError(ResourceError):
    """Medical record does not exist."""

    code: str = "RECORD_NOT_FOUND"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Medical record not found: {record_id}")


class WorkflowInstanceNotFoundError(ResourceError):
    """Workflow instance does not exist or has been evicted."""

    code: str = "WORKFLOW_INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance '{instance_id}' not found")


class BlockerNotFoundError(ResourceError):
    """Blocker id is not attached to the record."""

    code: str = "BLOCKER_NOT_FOUND"

    def __init__(self, record_id: str, blocker_id: str):
        self.record_id = record_id
        self.blocker_id = blocker_id
        super().__init__(f"Blocker {blocker_id} not found on record {record_id}")


# Lock


class LockError(ClinicalWorkflowError):
    """Base exception for blocked workflows."""

    code: str = "LOCK_ERROR"
    category: str = ErrorCategory.LOCK
    http_status: int = 423


class WorkflowLockedError(LockError):
    """Record has unresolved blockers and the actor is not an admin."""

    code: str = "WORKFLOW_LOCKED"

    def __init__(self, record_id: str, blockers: list[str]):
        self.record_id = record_id
        self.blockers = blockers
        super().__init__(f"Workflow is blocked: {', '.join(blockers)}")


# Concurrency


class ConcurrencyError(ClinicalWorkflowError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    category: str = ErrorCategory.CONCURRENCY
    http_status: int = 409


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability


class ImmutabilityError(ClinicalWorkflowError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Cancellation


class CancellationError(ClinicalWorkflowError):
    """Base exception for caller-initiated aborts."""

    code: str = "CANCELLATION_ERROR"
    http_status: int = 499


class OperationCancelledError(CancellationError):
    """The caller cancelled the operation before anything was committed."""

    code: str = "OPERATION_CANCELLED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Operation cancelled before commit: {operation}")


# Configuration


class ConfigurationError(ClinicalWorkflowError):
    """Base exception for configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class WorkflowConfigError(ConfigurationError):
    """The workflow definition set failed validation."""

    code: str = "WORKFLOW_CONFIG_INVALID"

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            "Workflow configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )
