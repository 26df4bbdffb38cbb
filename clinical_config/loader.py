"""
Workflow Definition Loader (``clinical_config.loader``).

Responsibility
--------------
Loads YAML workflow fragments and parses them into the frozen
``WorkflowDefinition`` / ``StepSpec`` value objects of
``clinical_kernel.domain.workflow``.  This is build/test tooling; runtime
callers obtain definitions through ``clinical_config.get_workflow_registry``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Consumed by
``clinical_config.get_workflow_registry`` and the operator CLI.

Invariants enforced
-------------------
* Role spellings are normalized through ``Role.parse``; an unknown role
  is a parse error, never silently dropped.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  parsed source so a running process can be tied to the exact YAML it
  loaded.

Failure modes
-------------
* Missing directory or no ``*.yaml`` files  -> ``FileNotFoundError``.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys, unknown roles, duplicate workflow names
  -> ``ValueError`` with a message naming the workflow and step.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from clinical_kernel.domain.roles import Role
from clinical_kernel.domain.workflow import StepSpec, WorkflowDefinition


@dataclass(frozen=True)
class WorkflowConfigSet:
    """All workflow definitions loaded from one configuration set."""

    config_id: str
    version: int
    workflows: tuple[WorkflowDefinition, ...]
    checksum: str
    source_files: tuple[str, ...] = ()


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML document must be a mapping")
    return data


def _as_targets(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def parse_step(workflow_name: str, step_name: str, data: dict[str, Any] | None) -> StepSpec:
    data = data or {}
    actions = data.get("actions") or {}
    if not isinstance(actions, dict):
        raise ValueError(
            f"Workflow '{workflow_name}' step '{step_name}': 'actions' must be a mapping"
        )

    allowed_roles: dict[str, frozenset[Role]] = {}
    transitions: dict[str, tuple[str, ...]] = {}
    for action, spec in actions.items():
        spec = spec or {}
        roles = []
        for raw in spec.get("roles") or ():
            try:
                roles.append(Role.parse(raw))
            except ValueError:
                raise ValueError(
                    f"Workflow '{workflow_name}' step '{step_name}' action "
                    f"'{action}': unknown role {raw!r}"
                ) from None
        allowed_roles[str(action)] = frozenset(roles)
        transitions[str(action)] = _as_targets(spec.get("to"))

    return StepSpec(
        name=step_name,
        allowed_actions=frozenset(allowed_roles),
        allowed_roles=allowed_roles,
        transitions=transitions,
        display_name=data.get("display_name") or step_name.replace("_", " ").title(),
        description=data.get("description", ""),
    )


def parse_workflow(name: str, data: dict[str, Any]) -> WorkflowDefinition:
    """Parse one workflow mapping.

    Raises:
        ValueError: ``initial_step`` or ``steps`` is missing.
    """
    if not data.get("initial_step"):
        raise ValueError(f"Workflow '{name}': 'initial_step' is required")
    steps_data = data.get("steps")
    if not steps_data or not isinstance(steps_data, dict):
        raise ValueError(f"Workflow '{name}': 'steps' must be a non-empty mapping")

    steps = {
        str(step_name): parse_step(name, str(step_name), step_data)
        for step_name, step_data in steps_data.items()
    }
    return WorkflowDefinition(
        name=name,
        module=data.get("module", name),
        initial_step=str(data["initial_step"]),
        steps=steps,
        terminal_steps=frozenset(str(s) for s in data.get("terminal_steps") or ()),
        description=data.get("description", ""),
    )


def parse_workflow_set(
    documents: list[dict[str, Any]],
    source_files: tuple[str, ...] = (),
) -> WorkflowConfigSet:
    """Merge the ``workflows`` mappings of several documents into one set.

    Raises:
        ValueError: the same workflow name appears twice.
    """
    config_id = "default"
    version = 1
    merged: dict[str, dict[str, Any]] = {}
    for doc in documents:
        if "config_id" in doc:
            config_id = str(doc["config_id"])
        if "version" in doc:
            version = int(doc["version"])
        for name, wf in (doc.get("workflows") or {}).items():
            if name in merged:
                raise ValueError(f"Duplicate workflow definition: '{name}'")
            merged[str(name)] = wf or {}

    workflows = tuple(parse_workflow(name, merged[name]) for name in sorted(merged))
    return WorkflowConfigSet(
        config_id=config_id,
        version=version,
        workflows=workflows,
        checksum=compute_checksum({"config_id": config_id, "version": version, "workflows": merged}),
        source_files=source_files,
    )


def load_workflow_set(directory: Path) -> WorkflowConfigSet:
    """Load every ``*.yaml`` file in ``directory`` as one configuration set."""
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Workflow configuration directory not found: {directory}")
    files = sorted(directory.glob("*.yaml"))
    if not files:
        raise FileNotFoundError(f"No workflow YAML files in {directory}")
    documents = [load_yaml_file(path) for path in files]
    return parse_workflow_set(documents, tuple(str(p) for p in files))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
