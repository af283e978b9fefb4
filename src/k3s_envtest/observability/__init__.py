"""
Observability helpers: structured logging, correlation IDs and tracing.
"""

from .logging import (
    CorrelationIDFilter,
    EnvLogger,
    StructuredFormatter,
    get_correlation_id,
    set_correlation_id,
    setup_structured_logging,
)
from .tracing import get_tracer, step_span, traced_step

__all__ = [
    "CorrelationIDFilter",
    "EnvLogger",
    "StructuredFormatter",
    "get_correlation_id",
    "get_tracer",
    "set_correlation_id",
    "setup_structured_logging",
    "step_span",
    "traced_step",
]
