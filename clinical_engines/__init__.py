"""
Module: clinical_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    workflow engines.  This is the canonical import surface for
    clinical_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import clinical_kernel (domain, exceptions, logging).
    MUST NOT import clinical_config or clinical_services.

Invariants enforced:
    - Purity: engines never read a clock; the current time is passed in.
    - Determinism: identical inputs always produce identical outputs.
"""

from clinical_engines.business_rules import (
    BusinessRuleResult,
    BusinessRuleValidator,
    default_business_rule_validator,
    validate_business_rules,
)
from clinical_engines.permissions import (
    AccessBasis,
    access_basis,
    can_perform_workflow_action,
    can_user_perform_action,
    can_user_transition_step,
    default_record_permissions,
    find_next_step,
    is_valid_workflow_transition,
    role_steps,
)
from clinical_engines.scheduling import (
    COMPLETED_STEPS,
    STEP_DURATION_HOURS,
    calculate_estimated_completion,
    is_overdue,
    priority_for_workflow_type,
    sort_by_priority,
    workflow_progress,
)
from clinical_engines.transitions import (
    CANONICAL_ACTION_TARGETS,
    STEP_REQUIRED_ROLES,
    add_blocker,
    apply_instance_action,
    apply_record_transition,
    assign_user,
    compute_next_steps,
    determine_next_step,
    initialize_record_workflow,
    new_workflow_instance,
    record_status_for_step,
    resolve_blocker,
    sign_record,
    update_assignments,
)

__all__ = [
    # Business rules
    "BusinessRuleResult",
    "BusinessRuleValidator",
    "default_business_rule_validator",
    "validate_business_rules",
    # Permissions
    "AccessBasis",
    "access_basis",
    "can_perform_workflow_action",
    "can_user_perform_action",
    "can_user_transition_step",
    "default_record_permissions",
    "find_next_step",
    "is_valid_workflow_transition",
    "role_steps",
    # Scheduling
    "COMPLETED_STEPS",
    "STEP_DURATION_HOURS",
    "calculate_estimated_completion",
    "is_overdue",
    "priority_for_workflow_type",
    "sort_by_priority",
    "workflow_progress",
    # Transitions
    "CANONICAL_ACTION_TARGETS",
    "STEP_REQUIRED_ROLES",
    "add_blocker",
    "apply_instance_action",
    "apply_record_transition",
    "assign_user",
    "compute_next_steps",
    "determine_next_step",
    "initialize_record_workflow",
    "new_workflow_instance",
    "record_status_for_step",
    "resolve_blocker",
    "sign_record",
    "update_assignments",
]
