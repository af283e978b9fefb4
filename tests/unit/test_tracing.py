"""
Unit tests for bootstrap step spans.

Note: OpenTelemetry has global state that can only be set once per process.
Spans are captured through a module-scoped tracer provider.
"""

import asyncio

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import SpanKind, StatusCode

from k3s_envtest.observability.tracing import get_tracer, step_span, traced_step


@pytest.fixture(scope="module")
def module_in_memory_exporter():
    """Module-scoped in-memory span exporter for testing."""
    return InMemorySpanExporter()


@pytest.fixture(scope="module")
def module_tracer_provider(module_in_memory_exporter):
    """Module-scoped tracer provider - set once for all tests in this module."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(module_in_memory_exporter))
    trace.set_tracer_provider(provider)
    return provider


@pytest.fixture
def spans(module_tracer_provider, module_in_memory_exporter):
    """Clear spans before and after each test."""
    module_in_memory_exporter.clear()
    yield module_in_memory_exporter
    module_in_memory_exporter.clear()


class TestStepSpan:
    """Test the step_span context manager."""

    def test_success(self, spans):
        """Test that a successful block ends with OK status and attributes."""
        with step_span("install", kind=SpanKind.CLIENT, crd="widgets.example.com"):
            pass

        (span,) = spans.get_finished_spans()
        assert span.name == "install"
        assert span.kind == SpanKind.CLIENT
        assert span.attributes["k3senv.crd"] == "widgets.example.com"
        assert span.status.status_code == StatusCode.OK

    def test_exception_recorded(self, spans):
        """Test that an exception marks the span and is re-raised."""
        with pytest.raises(ValueError, match="bad manifest"):
            with step_span("patch"):
                raise ValueError("bad manifest")

        (span,) = spans.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.status.description == "bad manifest"
        assert [event.name for event in span.events] == ["exception"]

    def test_cancellation_not_recorded_as_exception(self, spans):
        """Test that cancellation sets an error status without an event."""
        with pytest.raises(asyncio.CancelledError):
            with step_span("wait"):
                raise asyncio.CancelledError()

        (span,) = spans.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.status.description == "cancelled"
        assert span.events == ()

    def test_get_tracer(self, module_tracer_provider):
        """Test that tracers come from the configured provider."""
        assert get_tracer("k3s_envtest.test") is not None


class TestTracedStep:
    """Test the traced_step decorator."""

    @pytest.mark.asyncio
    async def test_wraps_async_function(self, spans):
        """Test that the decorated coroutine runs inside a named span."""

        @traced_step("install_crds")
        async def install_crds(count: int) -> int:
            return count * 2

        assert await install_crds(3) == 6
        assert install_crds.__name__ == "install_crds"

        (span,) = spans.get_finished_spans()
        assert span.name == "install_crds"
        assert span.attributes["k3senv.step"] == "install_crds"
        assert span.status.status_code == StatusCode.OK

    @pytest.mark.asyncio
    async def test_failure_propagates(self, spans):
        """Test that errors from the step propagate and mark the span."""

        @traced_step("install_webhooks")
        async def install_webhooks() -> None:
            raise RuntimeError("webhook create failed")

        with pytest.raises(RuntimeError):
            await install_webhooks()

        (span,) = spans.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
