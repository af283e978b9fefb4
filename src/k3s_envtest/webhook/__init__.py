"""
Readiness probing of the host-side webhook server.
"""

from .client import WebhookClient, new_health_check_review

__all__ = ["WebhookClient", "new_health_check_review"]
