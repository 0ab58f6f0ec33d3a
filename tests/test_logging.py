"""Tests for the structured logging system (approval_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from approval_kernel.domain.workflow import ExecutionStatus
from approval_kernel.logging_config import (
    CONTEXT_FIELDS,
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
        assert record["logger"] == "approval_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("decision_recorded", extra={"step_order": 2, "status": "pending"})

        record = _parse_log(stream)
        assert record["step_order"] == 2
        assert record["status"] == "pending"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", execution_id="exe-456")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["execution_id"] == "exe-456"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_workflow_exception_code_extracted(self):
        """Workflow exceptions carry a .code attribute and structured fields."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from approval_kernel.exceptions import StaleStepError

        try:
            raise StaleStepError("exe-1", 1, 2)
        except StaleStepError:
            logger.warning("stale_decision", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "STALE_STEP"
        assert record["exc_type"] == "StaleStepError"
        assert record["exc_execution_id"] == "exe-1"
        assert record["exc_current_step"] == 2

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "execution_id" not in record

    def test_special_types_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "typed",
            extra={"execution_ref": uid, "amount": Decimal("10.50"), "state": ExecutionStatus.APPROVED},
        )

        record = _parse_log(stream)
        assert record["execution_ref"] == str(uid)
        assert record["amount"] == "10.50"
        assert record["state"] == "approved"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # Default level is INFO
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", invoice_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "invoice_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner"):
            assert LogContext.get_all()["actor_id"] == "inner"
        assert LogContext.get_all()["actor_id"] == "outer"

    def test_bind_restores_none(self):
        assert "execution_id" not in LogContext.get_all()
        with LogContext.bind(execution_id="temp"):
            assert LogContext.get_all()["execution_id"] == "temp"
        assert "execution_id" not in LogContext.get_all()

    def test_bind_stringifies_uuid(self):
        uid = uuid4()
        with LogContext.bind(tenant_id=uid):
            assert LogContext.get_all()["tenant_id"] == str(uid)

    def test_all_fields(self):
        LogContext.set(**{name: name[0] for name in CONTEXT_FIELDS})
        ctx = LogContext.get_all()
        assert set(ctx) == set(CONTEXT_FIELDS)
        assert ctx["definition_id"] == "d"

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(request_path="/x")
        with pytest.raises(TypeError):
            with LogContext.bind(request_path="/x"):
                pass

    def test_nested_bind_restores_in_order(self):
        with LogContext.bind(execution_id="outer", actor_id="a1"):
            with LogContext.bind(execution_id="inner"):
                assert LogContext.get_all()["execution_id"] == "inner"
                assert LogContext.get_all()["actor_id"] == "a1"
            assert LogContext.get_all()["execution_id"] == "outer"
        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # no-op
        assert len(logging.getLogger("approval_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("services.workflow_engine").name == "approval_kernel.services.workflow_engine"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "approval_kernel.deep.nested.module"
