"""
Workflow Definition Registry (``clinical_config.registry``).

Responsibility
--------------
Read-only catalog of named ``WorkflowDefinition`` graphs, built once at
process start from a validated configuration set.  Answers the lookup
questions the guard and orchestrator ask: initial step, terminal steps,
candidate next steps, role authority and edge legality.

Invariants enforced
-------------------
* No runtime mutation API; the backing mapping is a read-only proxy.
* Unknown workflow names raise ``WorkflowNotFoundError`` from
  ``get_workflow``; the boolean queries fail closed instead.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from types import MappingProxyType

from clinical_engines.permissions import (
    can_perform_workflow_action,
    is_valid_workflow_transition,
)
from clinical_kernel.domain.roles import Role
from clinical_kernel.domain.workflow import WorkflowDefinition
from clinical_kernel.exceptions import WorkflowNotFoundError


class WorkflowRegistry:
    """Immutable lookup of workflow definitions by name."""

    def __init__(
        self,
        workflows: Iterable[WorkflowDefinition],
        config_id: str = "",
        checksum: str = "",
    ) -> None:
        self._workflows = MappingProxyType({wf.name: wf for wf in workflows})
        self.config_id = config_id
        self.checksum = checksum

    def __contains__(self, name: object) -> bool:
        return name in self._workflows

    def __iter__(self) -> Iterator[WorkflowDefinition]:
        return iter(self._workflows.values())

    def __len__(self) -> int:
        return len(self._workflows)

    def names(self) -> list[str]:
        return sorted(self._workflows)

    def find(self, name: str | None) -> WorkflowDefinition | None:
        if name is None:
            return None
        return self._workflows.get(name)

    def get_workflow(self, name: str) -> WorkflowDefinition:
        """
        Raises:
            WorkflowNotFoundError: ``name`` is not registered.
        """
        workflow = self.find(name)
        if workflow is None:
            raise WorkflowNotFoundError(name)
        return workflow

    def get_workflow_initial_step(self, name: str) -> str:
        return self.get_workflow(name).initial_step

    def is_terminal_step(self, name: str, step: str) -> bool:
        workflow = self.find(name)
        return workflow is not None and workflow.is_terminal(step)

    def get_next_workflow_steps(self, name: str, step: str, action: str) -> list[str]:
        """Candidate targets for ``(step, action)``; may hold more than one."""
        workflow = self.find(name)
        if workflow is None:
            return []
        return list(workflow.next_steps(step, action))

    def can_perform_workflow_action(
        self,
        role: Role | str | None,
        name: str,
        step: str,
        action: str,
    ) -> bool:
        if isinstance(role, str) and not isinstance(role, Role):
            role = Role.try_parse(role)
        return can_perform_workflow_action(self.find(name), role, step, action)

    def is_valid_workflow_transition(
        self,
        name: str,
        from_step: str,
        to_step: str | None,
        action: str,
    ) -> bool:
        return is_valid_workflow_transition(self.find(name), from_step, to_step, action)
