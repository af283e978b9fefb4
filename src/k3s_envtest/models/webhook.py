"""
Models describing webhook endpoints, CRD progress and poll policies.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator

from k3s_envtest.constants import MIN_POLL_INTERVAL
from k3s_envtest.models.gvk import (
    MUTATING_WEBHOOK_CONFIGURATION,
    VALIDATING_WEBHOOK_CONFIGURATION,
    GroupVersionKind,
)


class WebhookKind(Enum):
    """Kind of admission webhook configuration."""

    MUTATING = "mutating"
    VALIDATING = "validating"

    @classmethod
    def from_gvk(cls, gvk: GroupVersionKind) -> WebhookKind | None:
        """Map an object type to a webhook kind, or None for any other type."""
        match gvk:
            case GroupVersionKind(
                group=MUTATING_WEBHOOK_CONFIGURATION.group,
                kind=MUTATING_WEBHOOK_CONFIGURATION.kind,
            ):
                return cls.MUTATING
            case GroupVersionKind(
                group=VALIDATING_WEBHOOK_CONFIGURATION.group,
                kind=VALIDATING_WEBHOOK_CONFIGURATION.kind,
            ):
                return cls.VALIDATING
            case _:
                return None

    @property
    def gvk(self) -> GroupVersionKind:
        match self:
            case WebhookKind.MUTATING:
                return MUTATING_WEBHOOK_CONFIGURATION
            case WebhookKind.VALIDATING:
                return VALIDATING_WEBHOOK_CONFIGURATION


class CRDPhase(Enum):
    """Progress of a CRD through installation."""

    SUBMITTED = "Submitted"
    ESTABLISHED = "Established"
    CONVERSION_PATCHED = "ConversionPatched"


class WebhookEndpointRef(BaseModel):
    """Endpoints declared by one webhook configuration after patching."""

    model_config = {"frozen": True}

    name: str = Field(..., description="Name of the owning webhook configuration")
    kind: WebhookKind = Field(..., description="Mutating or validating")
    urls: tuple[str, ...] = Field(
        default=(), description="Client-config URLs, one per webhook entry"
    )

    def __str__(self) -> str:
        return f"{self.kind.value} webhook configuration {self.name}"


class PollPolicy(BaseModel):
    """
    Bounds for a readiness wait.

    ``timeout`` applies to each endpoint or resource separately, not to the
    whole batch. ``call_timeout`` bounds a single attempt.
    """

    model_config = {"frozen": True}

    interval: float = Field(..., description="Seconds between attempts")
    timeout: float = Field(..., description="Seconds to wait per endpoint/resource")
    call_timeout: float = Field(
        default=5.0, description="Seconds a single attempt may take"
    )

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"poll interval must be positive, got {v}")
        if v < MIN_POLL_INTERVAL:
            raise ValueError(
                f"poll interval too small: {v}s (minimum: {MIN_POLL_INTERVAL}s)"
            )
        return v

    @field_validator("timeout", "call_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout must be positive, got {v}")
        return v
