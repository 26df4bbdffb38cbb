"""
Workflow Configuration Validator (``clinical_config.validator``).

Responsibility
--------------
Validates a loaded ``WorkflowConfigSet`` before a registry is built from
it, ensuring every workflow graph is structurally sound.

Architecture position
---------------------
**Config layer** -- load-time validation.  Called by
``clinical_config.get_workflow_registry`` and ``scripts/workflow_cli.py``.

Invariants enforced
-------------------
* ``initial_step`` is a declared step.
* Every transition target is a declared step.
* Terminal steps are declared and have no outgoing transitions.
* Every allowed action has a non-empty role set and at least one target.
* Actions belong to the closed ``WORKFLOW_ACTIONS`` vocabulary.
* Ambiguous ``(step, action)`` pairs (more than one target) are warnings,
  or errors in strict mode.

Failure modes
-------------
* Errors (``ConfigValidationResult.errors``)  -> the registry MUST NOT be
  built.
* Warnings (``ConfigValidationResult.warnings``)  -> the registry may be
  built but the configuration should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from clinical_config.loader import WorkflowConfigSet
from clinical_kernel.domain.workflow import WORKFLOW_ACTIONS, WorkflowDefinition


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(
    config: WorkflowConfigSet,
    strict: bool = False,
) -> ConfigValidationResult:
    """Validate every workflow in a configuration set.

    Args:
        strict: Treat ambiguous ``(step, action)`` pairs as errors.
    """
    result = ConfigValidationResult()
    if not config.workflows:
        result.add_error("Configuration defines no workflows")
    for workflow in config.workflows:
        validate_workflow(workflow, result, strict=strict)
    return result


def validate_workflow(
    workflow: WorkflowDefinition,
    result: ConfigValidationResult,
    strict: bool = False,
) -> None:
    _validate_initial_step(workflow, result)
    _validate_terminal_steps(workflow, result)
    _validate_actions(workflow, result)
    _validate_targets(workflow, result)
    _validate_ambiguity(workflow, result, strict)


def _validate_initial_step(workflow: WorkflowDefinition, result: ConfigValidationResult) -> None:
    if not workflow.has_step(workflow.initial_step):
        result.add_error(
            f"Workflow '{workflow.name}': initial step '{workflow.initial_step}' "
            f"is not a declared step"
        )


def _validate_terminal_steps(workflow: WorkflowDefinition, result: ConfigValidationResult) -> None:
    for step in sorted(workflow.terminal_steps):
        spec = workflow.step(step)
        if spec is None:
            result.add_error(
                f"Workflow '{workflow.name}': terminal step '{step}' is not a declared step"
            )
        elif spec.has_outgoing:
            result.add_error(
                f"Workflow '{workflow.name}': terminal step '{step}' has outgoing transitions"
            )
    if not workflow.terminal_steps:
        result.add_warning(f"Workflow '{workflow.name}' declares no terminal steps")


def _validate_actions(workflow: WorkflowDefinition, result: ConfigValidationResult) -> None:
    for step_name, spec in workflow.steps.items():
        for action in sorted(spec.allowed_actions):
            where = f"Workflow '{workflow.name}' step '{step_name}' action '{action}'"
            if action not in WORKFLOW_ACTIONS:
                result.add_error(f"{where}: unknown action")
            if not spec.roles_for(action):
                result.add_error(f"{where}: no roles allowed")
            if not spec.targets(action):
                result.add_error(f"{where}: no transition target")


def _validate_targets(workflow: WorkflowDefinition, result: ConfigValidationResult) -> None:
    for from_step, action, to_step in workflow.edges():
        if not workflow.has_step(to_step):
            result.add_error(
                f"Workflow '{workflow.name}': transition {from_step} --{action}--> "
                f"'{to_step}' targets an undeclared step"
            )


def _validate_ambiguity(
    workflow: WorkflowDefinition,
    result: ConfigValidationResult,
    strict: bool,
) -> None:
    for step_name, spec in workflow.steps.items():
        for action, targets in sorted(spec.transitions.items()):
            if len(targets) <= 1:
                continue
            msg = (
                f"Workflow '{workflow.name}' step '{step_name}' action '{action}' "
                f"has {len(targets)} targets {list(targets)}"
            )
            if strict:
                result.add_error(msg)
            else:
                result.add_warning(msg)
