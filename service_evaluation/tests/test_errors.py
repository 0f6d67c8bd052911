"""
Unit tests for error responses and log trace context.
"""

import pytest
from opentelemetry.sdk.trace import TracerProvider

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import FlagNotFoundError
from shared.logging import add_trace_context


class TestTraceContext:
    """Trace ids attached to error responses and log events."""

    @pytest.fixture
    def tracer(self):
        return TracerProvider().get_tracer("evaluation.tests")

    def test_error_response_without_span(self):
        response = FlagNotFoundError("new-checkout", "acme").to_response()

        assert response.trace_id is None
        assert response.code == "FLAG_NOT_FOUND"

    def test_error_response_carries_trace_id(self, tracer):
        with tracer.start_as_current_span("evaluate") as span:
            response = FlagNotFoundError("new-checkout", "acme").to_response()

        assert response.trace_id == f"{span.get_span_context().trace_id:032x}"

    def test_log_event_carries_trace_and_span_ids(self, tracer):
        with tracer.start_as_current_span("evaluate") as span:
            event = add_trace_context(None, "info", {"event": "Flag evaluated"})

        context = span.get_span_context()
        assert event["trace_id"] == f"{context.trace_id:032x}"
        assert event["span_id"] == f"{context.span_id:016x}"

    def test_log_event_without_span(self):
        event = add_trace_context(None, "info", {"event": "Flag evaluated"})

        assert "trace_id" not in event
