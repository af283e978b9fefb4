"""
Structured logging utilities for the test environment bootstrapper.

This module provides correlation ID tracking, structured log formatting and
an injectable logger used by the bootstrap orchestrator, so one bootstrap run
can be followed through certificate issuance, patching and readiness waits.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variable for tracking correlation IDs across async operations
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

STRUCTURED_FIELDS = (
    "resource_kind",
    "resource_name",
    "operation",
    "duration",
    "error_type",
    "endpoint",
    "attempt",
    "http_status",
    "phase",
)


class CorrelationIDFilter(logging.Filter):
    """Logging filter that adds correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        current_correlation_id = correlation_id.get()
        if not current_correlation_id:
            current_correlation_id = generate_correlation_id()
            correlation_id.set(current_correlation_id)

        record.correlation_id = current_correlation_id
        return True


class StructuredFormatter(logging.Formatter):
    """
    Structured JSON formatter for logs with correlation ID support.

    Formats log records as one JSON document per line for CI log parsing.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields are set as attributes on the record
        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def generate_correlation_id() -> str:
    """
    Generate a new correlation ID.

    Returns:
        Unique correlation ID string
    """
    return str(uuid.uuid4())[:8]


def set_correlation_id(corr_id: str) -> str:
    """Set the correlation ID for the current context."""
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str:
    """Get the current correlation ID, or empty string if none set."""
    return correlation_id.get("")


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = False,
    correlation_id_enabled: bool = True,
) -> None:
    """
    Set up logging for a test run.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_json_formatting: Whether to use JSON formatting
        correlation_id_enabled: Whether to enable correlation ID tracking
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if enable_json_formatting:
        formatter = StructuredFormatter()
    elif correlation_id_enabled:
        formatter = logging.Formatter(
            "%(asctime)s - %(correlation_id)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)

    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Third-party libraries are noisy at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class EnvLogger:
    """
    Logger for bootstrap steps with structured logging support.

    An instance is passed to the orchestrator at construction so tests can
    capture or redirect its output without touching global logging state.
    """

    def __init__(self, name: str = "k3s_envtest", logger: logging.Logger | None = None):
        """
        Initialize bootstrap logger.

        Args:
            name: Logger name used when no logger is supplied
            logger: Existing logger to wrap
        """
        self.logger = logger or logging.getLogger(name)

    def log_step_start(
        self, operation: str, resource_kind: str, resource_name: str
    ) -> None:
        self.logger.info(
            f"Starting {operation} for {resource_kind} {resource_name}",
            extra={
                "resource_kind": resource_kind,
                "resource_name": resource_name,
                "operation": operation,
            },
        )

    def log_step_success(
        self,
        operation: str,
        resource_kind: str,
        resource_name: str,
        duration: float,
    ) -> None:
        self.logger.info(
            f"Completed {operation} for {resource_kind} {resource_name}",
            extra={
                "resource_kind": resource_kind,
                "resource_name": resource_name,
                "operation": operation,
                "duration": duration,
            },
        )

    def log_step_error(
        self,
        operation: str,
        resource_kind: str,
        resource_name: str,
        error: BaseException,
        duration: float,
    ) -> None:
        """
        Log a failed bootstrap step.

        Args:
            operation: Step being performed (patch, create, wait, update)
            resource_kind: Kind of the resource
            resource_name: Name of the resource
            error: The error that aborted the step
            duration: Time spent in the step in seconds
        """
        self.logger.error(
            f"{operation} failed for {resource_kind} {resource_name}: {error}",
            extra={
                "resource_kind": resource_kind,
                "resource_name": resource_name,
                "operation": operation,
                "error_type": type(error).__name__,
                "duration": duration,
            },
        )

    def log_probe_attempt(
        self,
        endpoint: str,
        attempt: int,
        error: BaseException | None = None,
        http_status: int | None = None,
    ) -> None:
        """Log one readiness probe attempt at DEBUG level."""
        if error is None:
            message = f"Webhook endpoint {endpoint} answered attempt {attempt}"
        else:
            message = f"Webhook endpoint {endpoint} attempt {attempt} failed: {error}"
        extra: dict[str, object] = {"endpoint": endpoint, "attempt": attempt}
        if http_status is not None:
            extra["http_status"] = http_status
        self.logger.debug(message, extra=extra)

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message with extra data."""
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message with extra data."""
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message with extra data."""
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs) -> None:
        """Log error message with extra data."""
        self.logger.error(message, exc_info=exc_info, extra=kwargs)
