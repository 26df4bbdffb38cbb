"""
clinical_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain workflow definitions at runtime through
    ``get_workflow_registry()``.  YAML loading and validation are internal
    tooling.

Architecture position:
    Configuration -- YAML-driven workflow definitions, load-time
    validation.  Sits above ``clinical_kernel`` and ``clinical_engines``
    and below ``clinical_services``.  The kernel and the engines MUST NEVER
    import from ``clinical_config``.

Invariants enforced:
    - Load-time validation: a registry is only built from a configuration
      set that passed ``validate_configuration``.
    - Deterministic loading: the same YAML always produces the same
      checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration directory is missing.
    - ``WorkflowConfigError`` -- parse or validation failures.

Audit relevance:
    Every successful ``get_workflow_registry()`` call emits a
    ``WORKFLOW_CONFIG_TRACE`` log entry with the config id, version,
    checksum and workflow count.  The checksum ties every recorded
    transition back to the exact workflow graph that allowed it.
"""

from __future__ import annotations

from pathlib import Path

from clinical_config.loader import load_workflow_set
from clinical_config.registry import WorkflowRegistry
from clinical_config.validator import validate_configuration
from clinical_kernel.exceptions import WorkflowConfigError
from clinical_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets" / "default"


def get_workflow_registry(
    config_dir: Path | None = None,
    strict: bool = False,
) -> WorkflowRegistry:
    """Load, validate and return the workflow registry.

    Args:
        config_dir: Directory holding ``*.yaml`` workflow fragments.
            Defaults to the packaged ``sets/default``.
        strict: Reject ambiguous ``(step, action)`` pairs.

    Raises:
        FileNotFoundError: The directory does not exist or holds no YAML.
        WorkflowConfigError: Parsing or validation failed.
    """
    directory = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR

    try:
        config_set = load_workflow_set(directory)
    except ValueError as exc:
        raise WorkflowConfigError([str(exc)]) from exc

    validation = validate_configuration(config_set, strict=strict)
    if not validation.is_valid:
        raise WorkflowConfigError(validation.errors)
    for warning in validation.warnings:
        _logger.warning("workflow_config_warning", extra={"detail": warning})

    registry = WorkflowRegistry(
        config_set.workflows,
        config_id=config_set.config_id,
        checksum=config_set.checksum,
    )

    _logger.info(
        "WORKFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "config_set_id": config_set.config_id,
            "config_set_version": config_set.version,
            "checksum": config_set.checksum,
            "workflow_count": len(registry),
            "workflows": registry.names(),
            "strict": strict,
            "warning_count": len(validation.warnings),
        },
    )
    return registry


__all__ = ["WorkflowRegistry", "get_workflow_registry"]
