"""Tests for the structured logging system (clinical_kernel/logging_config.py)."""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest

from clinical_kernel.domain.roles import Role
from clinical_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "clinical_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "workflow_transition",
            extra={"from_step": "draft", "to_step": "doctor_review"},
        )

        record = _parse_log(stream)
        assert record["from_step"] == "draft"
        assert record["to_step"] == "doctor_review"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", record_id="MR-0001")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["record_id"] == "MR-0001"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_workflow_exception_fields_extracted(self):
        """Workflow exceptions carry a code and structured attributes."""
        from clinical_kernel.exceptions import PermissionDeniedError

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise PermissionDeniedError("nurse", "advance", "draft", target_step="billing_review")
        except PermissionDeniedError:
            get_logger("test").error("transition_rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "WORKFLOW_PERMISSION_DENIED"
        assert record["exc_type"] == "PermissionDeniedError"
        assert record["exc_role"] == "nurse"
        assert record["exc_step"] == "draft"
        assert record["exc_target_step"] == "billing_review"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "record_id" not in record

    def test_non_json_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        when = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        get_logger("test").info(
            "with_values",
            extra={"event_id": uid, "at": when, "role": Role.NURSE, "roles": {"b", "a"}},
        )

        record = _parse_log(stream)
        assert record["event_id"] == str(uid)
        assert record["at"] == "2024-01-01T12:00:00+00:00"
        assert record["role"] == "nurse"
        assert record["roles"] == ["a", "b"]

    def test_unknown_objects_fall_back_to_str(self):
        class Opaque:
            def __str__(self):
                return "opaque"

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("with_object", extra={"thing": Opaque()})

        assert _parse_log(stream)["thing"] == "opaque"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # default level is INFO
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", actor_id="doc-1")
        assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "doc-1"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.set(patient_name="Jane")

    def test_bind_context_manager(self):
        LogContext.set(record_id="outer")
        with LogContext.bind(record_id="inner"):
            assert LogContext.get_all()["record_id"] == "inner"
        assert LogContext.get_all()["record_id"] == "outer"

    def test_bind_restores_none(self):
        assert "instance_id" not in LogContext.get_all()
        with LogContext.bind(instance_id="temp"):
            assert LogContext.get_all()["instance_id"] == "temp"
        assert "instance_id" not in LogContext.get_all()

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            record_id="r",
            instance_id="i",
            actor_id="a",
            workflow="w",
            trace_id="t",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 6
        assert ctx["workflow"] == "w"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        # pytest may attach its own capture handlers; only ours matter here
        handlers = logging.getLogger("clinical_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers

    def test_level_by_name(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level="debug")
        get_logger("test").debug("visible")
        assert _parse_log(stream)["message"] == "visible"

    def test_get_logger_returns_child(self):
        assert get_logger("services.orchestrator").name == "clinical_kernel.services.orchestrator"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "clinical_kernel.deep.nested.module"
