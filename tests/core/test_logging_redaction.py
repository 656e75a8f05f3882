"""Tests for ``pnp_ingest.core.logging``: context binding and payload redaction."""

from __future__ import annotations

import structlog

from pnp_ingest.core.logging import (
    REDACTED,
    LogContext,
    bind_context,
    clear_context,
    redact_attributes,
)


class TestRedactAttributes:
    def test_free_text_redacted(self):
        attrs = {"number": "INC1", "description": "customer X is down", "u_current_status": "looking"}
        assert redact_attributes(attrs) == {
            "number": "INC1",
            "description": REDACTED,
            "u_current_status": REDACTED,
        }

    def test_nested_envelope_redacted(self):
        attrs = {"result_from_sn": [{"number": "CHG1", "long_description": "secret"}, "odd"]}
        assert redact_attributes(attrs) == {"result_from_sn": [{"number": "CHG1", "long_description": REDACTED}, "odd"]}

    def test_input_untouched(self):
        attrs = {"description": "text"}
        redact_attributes(attrs)
        assert attrs == {"description": "text"}


class TestLogContext:
    def test_binds_and_unbinds(self):
        clear_context()
        with LogContext(source_id="INC1"):
            assert structlog.contextvars.get_contextvars()["source_id"] == "INC1"
        assert "source_id" not in structlog.contextvars.get_contextvars()

    def test_leaves_other_keys(self):
        clear_context()
        bind_context(span_id="abc")
        with LogContext(record_id="r1"):
            pass
        assert structlog.contextvars.get_contextvars() == {"span_id": "abc"}
        clear_context()
