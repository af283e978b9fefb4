"""Centralized environment settings using pydantic-settings.

This module provides a single source of truth for bootstrap configuration
loaded from ``K3SENV_``-prefixed environment variables. Uses pydantic for
automatic validation, type coercion, and documentation. Instances are
created explicitly; nothing is read from the environment at import time.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from k3s_envtest.constants import (
    DEFAULT_CERT_VALIDITY_HOURS,
    DEFAULT_CRD_POLL_INTERVAL,
    DEFAULT_CRD_READY_TIMEOUT,
    DEFAULT_WEBHOOK_HEALTH_CHECK_TIMEOUT,
    DEFAULT_WEBHOOK_POLL_INTERVAL,
    DEFAULT_WEBHOOK_PORT,
    DEFAULT_WEBHOOK_READY_TIMEOUT,
    MIN_POLL_INTERVAL,
)
from k3s_envtest.models.webhook import PollPolicy
from k3s_envtest.observability.logging import setup_structured_logging


class Settings(BaseSettings):
    """Test environment configuration loaded from environment variables.

    All settings have defaults suitable for a local test run. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Webhook server
    webhook_port: int = Field(
        default=DEFAULT_WEBHOOK_PORT,
        validation_alias="K3SENV_WEBHOOK_PORT",
        description="Host port the webhook server listens on",
    )
    webhook_auto_install: bool = Field(
        default=False,
        validation_alias="K3SENV_WEBHOOK_AUTO_INSTALL",
        description="Install webhook configurations as part of environment start",
    )
    webhook_check_readiness: bool = Field(
        default=False,
        validation_alias="K3SENV_WEBHOOK_CHECK_READINESS",
        description="Probe every webhook endpoint after installing its configuration",
    )
    webhook_ready_timeout: float = Field(
        default=DEFAULT_WEBHOOK_READY_TIMEOUT,
        validation_alias="K3SENV_WEBHOOK_READY_TIMEOUT",
        description="Seconds to wait for each webhook endpoint to become ready",
    )
    webhook_health_check_timeout: float = Field(
        default=DEFAULT_WEBHOOK_HEALTH_CHECK_TIMEOUT,
        validation_alias="K3SENV_WEBHOOK_HEALTH_CHECK_TIMEOUT",
        description="Seconds a single health check request may take",
    )
    webhook_poll_interval: float = Field(
        default=DEFAULT_WEBHOOK_POLL_INTERVAL,
        validation_alias="K3SENV_WEBHOOK_POLL_INTERVAL",
        description="Seconds between webhook health check attempts",
    )

    # CRDs
    crd_ready_timeout: float = Field(
        default=DEFAULT_CRD_READY_TIMEOUT,
        validation_alias="K3SENV_CRD_READY_TIMEOUT",
        description="Seconds to wait for each CRD to become Established",
    )
    crd_poll_interval: float = Field(
        default=DEFAULT_CRD_POLL_INTERVAL,
        validation_alias="K3SENV_CRD_POLL_INTERVAL",
        description="Seconds between CRD status checks",
    )

    # Certificates
    cert_path: str = Field(
        default="",
        validation_alias="K3SENV_CERTIFICATE_PATH",
        description="Directory for certificate files (empty = fresh temp directory)",
    )
    cert_validity_hours: float = Field(
        default=DEFAULT_CERT_VALIDITY_HOURS,
        validation_alias="K3SENV_CERTIFICATE_VALIDITY_HOURS",
        description="Validity of the issued CA and leaf certificates in hours",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="K3SENV_LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=False,
        validation_alias="K3SENV_JSON_LOGS",
        description="Enable JSON formatted logging",
    )

    @field_validator("webhook_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if v < 1 or v > 65535:
            raise ValueError(
                f"webhook port must be 1-65535, got {v} "
                "(use find_available_port() for parallel tests)"
            )
        return v

    @field_validator(
        "webhook_ready_timeout",
        "webhook_health_check_timeout",
        "crd_ready_timeout",
        "cert_validity_hours",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    @field_validator("webhook_poll_interval", "crd_poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: float) -> float:
        if v < MIN_POLL_INTERVAL:
            raise ValueError(
                f"poll interval too small: {v}s (minimum: {MIN_POLL_INTERVAL}s)"
            )
        return v

    def webhook_policy(self) -> PollPolicy:
        """Poll policy for webhook endpoint readiness checks."""
        return PollPolicy(
            interval=self.webhook_poll_interval,
            timeout=self.webhook_ready_timeout,
            call_timeout=self.webhook_health_check_timeout,
        )

    def crd_policy(self) -> PollPolicy:
        """Poll policy for CRD establishment."""
        return PollPolicy(
            interval=self.crd_poll_interval,
            timeout=self.crd_ready_timeout,
            call_timeout=self.crd_ready_timeout,
        )

    def configure_logging(self) -> None:
        """Install root logging handlers from ``log_level`` and ``json_logs``."""
        setup_structured_logging(
            log_level=self.log_level.upper(),
            enable_json_formatting=self.json_logs,
        )
