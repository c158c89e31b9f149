"""Tests for the structured logging system (procurement_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from procurement_engines.approval_state import derive_status
from procurement_kernel.domain.requisition import ApprovalStepRecord
from procurement_kernel.exceptions import NotYourTurnError
from procurement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests; leave the suite configuration behind."""
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


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


# ---------------------------------------------------------------------------
# StructuredFormatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "procurement_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("receipt_recorded", extra={"cumulative": 12, "reception_status": "partial"})

        record = _parse_log(stream)
        assert record["cumulative"] == 12
        assert record["reception_status"] == "partial"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(correlation_id="abc-123", requisition_code="RR-000001"):
            get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["requisition_code"] == "RR-000001"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")
        assert "correlation_id" not in _parse_log(stream)

    def test_uuid_and_decimal_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("values", extra={"line_item_id": uid, "quantity": Decimal("1.50")})

        record = _parse_log(stream)
        assert record["line_item_id"] == str(uid)
        assert record["quantity"] == "1.50"

    def test_kernel_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise NotYourTurnError("RR-000001", "b.okafor", "a.alvarez")
        except NotYourTurnError:
            get_logger("test").error("decision_refused", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "NOT_YOUR_TURN"
        assert record["exc_type"] == "NotYourTurnError"
        assert record["exc_actionable_approver_id"] == "a.alvarez"
        assert "traceback" in record

    def test_foreign_exception_has_no_kernel_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise RuntimeError("disk I/O error")
        except RuntimeError:
            get_logger("test").error("store_failure", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "RuntimeError"
        assert "exc_code" not in record

    def test_debug_filtered_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.debug("second")
        assert [r["message"] for r in _parse_all_logs(stream)] == ["first"]


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_bind_and_exit(self):
        with LogContext.bind(correlation_id="x", actor_id="y"):
            assert LogContext.get_all() == {"correlation_id": "x", "actor_id": "y"}
        assert LogContext.get_all() == {}

    def test_clear_inside_block(self):
        with LogContext.bind(actor_id="y"):
            LogContext.clear()
            assert LogContext.get_all() == {}

    def test_bind_restores_on_error(self):
        with pytest.raises(ValueError):
            with LogContext.bind(requisition_code="RR-000001"):
                raise ValueError("boom")
        assert LogContext.get_all() == {}

    def test_bind_unknown_field(self):
        with pytest.raises(KeyError):
            with LogContext.bind(trace_id="t-1"):
                pass

    def test_bind_restores_previous(self):
        with LogContext.bind(correlation_id="outer"):
            with LogContext.bind(correlation_id="inner", requisition_code="RR-000001"):
                assert LogContext.get_all() == {
                    "correlation_id": "inner",
                    "requisition_code": "RR-000001",
                }
            assert LogContext.get_all() == {"correlation_id": "outer"}

    def test_bind_ignores_none(self):
        with LogContext.bind(actor_id="kept"):
            with LogContext.bind(actor_id=None):
                assert LogContext.get_all()["actor_id"] == "kept"


# ---------------------------------------------------------------------------
# Engine tracer
# ---------------------------------------------------------------------------


class TestEngineTrace:

    def test_trace_emitted_at_debug(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.DEBUG, handler=handler)
        derive_status([ApprovalStepRecord(order=1, approver_id="a")], in_review=True)

        traces = [r for r in _parse_all_logs(stream) if r["message"] == "PROCUREMENT_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "approval_state"
        assert len(traces[0]["input_fingerprint"]) == 16

    def test_fingerprint_deterministic(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.DEBUG, handler=handler)
        derive_status([], in_review=False)
        derive_status([], in_review=False)
        derive_status([], in_review=True)

        prints = [r["input_fingerprint"] for r in _parse_all_logs(stream)]
        assert prints[0] == prints[1] != prints[2]
