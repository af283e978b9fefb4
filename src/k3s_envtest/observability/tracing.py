"""
OpenTelemetry spans for bootstrap steps and readiness probes.

Only the OpenTelemetry API is used here. Without an SDK configured by the
test process every tracer is a no-op, so spans cost nothing. A test suite
that wants traces installs a ``TracerProvider`` itself.

Usage:
    from k3s_envtest.observability.tracing import traced_step

    @traced_step("install_crds")
    async def install_crds(self):
        ...
"""

import contextlib
import functools
import logging
from collections.abc import Awaitable, Callable, Iterator
from typing import ParamSpec, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, Tracer

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def get_tracer(name: str = __name__) -> Tracer:
    """
    Get a tracer instance for creating spans.

    Args:
        name: Name of the tracer (typically __name__ of the module)

    Returns:
        Tracer instance (no-op if no SDK is configured)
    """
    return trace.get_tracer(name)


@contextlib.contextmanager
def step_span(
    operation_name: str,
    tracer_name: str = __name__,
    kind: SpanKind = SpanKind.INTERNAL,
    **attributes: str | int | float | bool,
) -> Iterator[Span]:
    """
    Run a block inside a span, recording its outcome.

    Exceptions are recorded on the span and re-raised. Cancellation is
    recorded as an error status without an exception event.
    """
    tracer = get_tracer(tracer_name)
    with tracer.start_as_current_span(
        operation_name,
        kind=kind,
        attributes={f"k3senv.{key}": value for key, value in attributes.items()},
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
        except BaseException:
            span.set_status(Status(StatusCode.ERROR, "cancelled"))
            raise
        else:
            span.set_status(Status(StatusCode.OK))


def traced_step(
    operation_name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """
    Decorator wrapping an async bootstrap step in a span.

    Example:
        @traced_step("install_webhooks")
        async def install_webhooks(self) -> None:
            ...
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with step_span(
                operation_name,
                tracer_name=func.__module__ or __name__,
                step=getattr(func, "__name__", "unknown"),
            ):
                return await func(*args, **kwargs)

        return wrapper

    return decorator
