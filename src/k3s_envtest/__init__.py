"""
k3s-envtest - Webhook wiring for ephemeral Kubernetes test clusters.

Rewrites admission webhook and CRD conversion client-configs so a cluster
started for integration tests calls a webhook server running on the host:
- Self-signed CA and serving certificate per environment
- Client-config patching through a small tree query language
- Readiness probing of the host webhook server
- CRD installation and conversion webhook wiring
"""

__version__ = "0.1.0"
