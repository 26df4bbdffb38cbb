"""
Process settings (``clinical_config.settings``).

Environment variables read here are the only environment the workflow
engine consults.  Everything else is passed in by constructor.

    variable                        | default
    --------------------------------|------------------------------
    CLINICAL_DATABASE_URL           | sqlite:///:memory:
    CLINICAL_INSTANCE_TTL_SECONDS   | 86400
    CLINICAL_INSTANCE_MAX_ENTRIES   | 10000
    CLINICAL_STRICT_TRANSITIONS     | false
    CLINICAL_LOG_LEVEL              | INFO
    CLINICAL_WORKFLOW_CONFIG_DIR    | (packaged default set)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from clinical_kernel.services.instance_store import (
    DEFAULT_MAX_ENTRIES,
    DEFAULT_TTL_SECONDS,
)

DEFAULT_DATABASE_URL = "sqlite:///:memory:"

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    instance_ttl_seconds: int = DEFAULT_TTL_SECONDS
    instance_max_entries: int = DEFAULT_MAX_ENTRIES
    strict_transitions: bool = False
    log_level: str = "INFO"
    workflow_config_dir: Path | None = None


def _int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def _bool(environ: Mapping[str, str], key: str, default: bool) -> bool:
    raw = environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"{key} must be a boolean, got {raw!r}")


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build ``Settings`` from ``environ`` (defaults to ``os.environ``).

    Raises:
        ValueError: A variable is set to a value of the wrong type.
    """
    env = os.environ if environ is None else environ
    config_dir = env.get("CLINICAL_WORKFLOW_CONFIG_DIR")
    return Settings(
        database_url=env.get("CLINICAL_DATABASE_URL") or DEFAULT_DATABASE_URL,
        instance_ttl_seconds=_int(env, "CLINICAL_INSTANCE_TTL_SECONDS", DEFAULT_TTL_SECONDS),
        instance_max_entries=_int(env, "CLINICAL_INSTANCE_MAX_ENTRIES", DEFAULT_MAX_ENTRIES),
        strict_transitions=_bool(env, "CLINICAL_STRICT_TRANSITIONS", False),
        log_level=(env.get("CLINICAL_LOG_LEVEL") or "INFO").upper(),
        workflow_config_dir=Path(config_dir) if config_dir else None,
    )
