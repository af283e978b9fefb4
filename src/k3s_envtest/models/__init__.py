"""
Data models for the test environment bootstrapper.
"""

from .gvk import (
    CUSTOM_RESOURCE_DEFINITION,
    MUTATING_WEBHOOK_CONFIGURATION,
    VALIDATING_WEBHOOK_CONFIGURATION,
    GroupKind,
    GroupVersionKind,
    format_object_reference,
    object_name,
)
from .webhook import CRDPhase, PollPolicy, WebhookEndpointRef, WebhookKind

__all__ = [
    "GroupKind",
    "GroupVersionKind",
    "CUSTOM_RESOURCE_DEFINITION",
    "MUTATING_WEBHOOK_CONFIGURATION",
    "VALIDATING_WEBHOOK_CONFIGURATION",
    "format_object_reference",
    "object_name",
    "CRDPhase",
    "PollPolicy",
    "WebhookEndpointRef",
    "WebhookKind",
]
