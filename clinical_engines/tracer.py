"""
clinical_engines.tracer -- Engine invocation tracer emitting CLINICAL_ENGINE_TRACE.

Responsibility:
    Provide a lightweight decorator (``@traced_engine``) that wraps pure
    engine invocations with structured trace logging: engine name, engine
    version, a deterministic input fingerprint and duration.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only; does not introduce I/O into engines.

Usage:
    from clinical_engines.tracer import traced_engine

    @traced_engine("business_rules", "1.0", fingerprint_fields=("target_step",))
    def validate(self, record, target_step, action=None):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from clinical_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (int, float, str)):
        return str(value)
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """SHA-256 prefix (16 hex chars) over the named arguments.

    Missing fields are recorded as "null".
    """
    parts = [f"{f}={_canonicalize(arguments.get(f))}" for f in fingerprint_fields]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits CLINICAL_ENGINE_TRACE for pure engine invocations."""

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fp = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.debug(
                "CLINICAL_ENGINE_TRACE",
                extra={
                    "trace_type": "CLINICAL_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                },
            )
            return result

        return wrapper

    return decorator
