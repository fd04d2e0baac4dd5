"""
Unit tests for the Langfuse tracing wrapper.
"""

from unittest.mock import MagicMock, patch

import pytest

from journey_warden.config import LangfuseConfig
from journey_warden.tracing import LEVEL_WARNING, TracingClient


class TestTracingClient:
    """Test cases for TracingClient."""

    def test_disabled_is_a_no_op(self):
        client = TracingClient()

        assert client.active is False
        with client.trace("healing-session") as trace:
            assert trace is None
        client.span(trace_id=None, name="attempt-1")
        client.update(None, output={"status": "healed"})
        client.flush()

    def test_enabled_records_trace_and_spans(self):
        config = LangfuseConfig(enabled=True, public_key="pk", secret_key="sk", host="http://lf")
        with patch("journey_warden.tracing.Langfuse") as langfuse_cls:
            client = TracingClient(config)
            langfuse = langfuse_cls.return_value

            with client.trace("healing-session", metadata={"journey_id": "JRN-0001"}) as trace:
                client.span(trace_id=trace.id, name="attempt-1", level=LEVEL_WARNING)
                client.update(trace, output={"status": "exhausted"})

        langfuse_cls.assert_called_once_with(public_key="pk", secret_key="sk", host="http://lf")
        langfuse.trace.assert_called_once_with(name="healing-session", metadata={"journey_id": "JRN-0001"})
        assert langfuse.span.call_args.kwargs["level"] == "WARNING"
        trace.update.assert_called_once_with(output={"status": "exhausted"}, metadata={})
        langfuse.flush.assert_called_once()

    def test_error_is_attached_to_trace(self):
        with patch("journey_warden.tracing.Langfuse") as langfuse_cls:
            client = TracingClient(LangfuseConfig(enabled=True))
            session = MagicMock()
            langfuse_cls.return_value.trace.return_value = session

            with pytest.raises(OSError):
                with client.trace("healing-session"):
                    raise OSError("disk full")

        session.update.assert_called_once_with(output={"error": "OSError: disk full"})
        langfuse_cls.return_value.flush.assert_called_once()
