"""
Error hierarchy for the test environment bootstrapper.

This module defines the error types raised while issuing certificates,
transforming manifests, patching client-configs, probing webhook endpoints
and installing resources into the ephemeral cluster. Every error carries the
identity of the resource it concerns so a failed bootstrap points straight at
the offending manifest or endpoint.

Cancellation is not an error type here: waits let the task's own
``asyncio.CancelledError`` propagate, with a note naming the resource, so
enclosing ``asyncio.timeout`` scopes still turn their expiry into
``TimeoutError``.
"""


class EnvtestError(Exception):
    """
    Base error class for all bootstrap-related exceptions.

    Provides categorization, the owning resource identity and user guidance
    for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        resource: str | None = None,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize bootstrap error.

        Args:
            message: Human-readable error description
            category: Error category (configuration, issuance, transform, network, ...)
            resource: Identity of the resource the error concerns
            user_action: What the user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.category = category
        self.resource = resource
        self.user_action = user_action
        self.cause = cause

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = self.args[0] if self.args else ""
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ConfigurationError(EnvtestError):
    """Malformed manifest fields or invalid settings."""

    def __init__(
        self,
        message: str,
        resource: str | None = None,
        field: str | None = None,
        user_action: str | None = None,
    ):
        if field:
            message = f"{message} (field: {field})"
        super().__init__(
            message=message,
            category="configuration",
            resource=resource,
            user_action=user_action or "Review and correct the manifest or settings",
        )
        self.field = field


class IssuanceError(EnvtestError):
    """Certificate generation or certificate file IO failed."""

    def __init__(
        self,
        message: str,
        stage: str,
        path: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category="issuance",
            resource=path,
            user_action="Check that the certificate directory is writable",
            cause=cause,
        )
        self.stage = stage


class TransformError(EnvtestError):
    """Bad expression syntax or a runtime type mismatch in a tree query."""

    def __init__(self, message: str, expression: str | None = None):
        super().__init__(message=message, category="transform", resource=expression)
        self.expression = expression


class NetworkError(EnvtestError):
    """Transport failure or server error while calling a webhook endpoint."""

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        if status_code:
            message = f"HTTP {status_code}: {message}"
        super().__init__(
            message=message,
            category="network",
            resource=url,
            user_action="Check that the webhook server is running on the host",
            cause=cause,
        )
        self.url = url
        self.status_code = status_code

    @property
    def is_server_error(self) -> bool:
        return self.status_code is not None and self.status_code >= 500


class EndpointTimeoutError(EnvtestError, TimeoutError):
    """A webhook endpoint did not become healthy within the poll policy timeout."""

    def __init__(
        self,
        endpoint: str,
        timeout: float,
        attempts: int,
        last_error: Exception | None = None,
        owner: str | None = None,
    ):
        """
        Initialize endpoint timeout error.

        Args:
            endpoint: Path of the endpoint that never became healthy
            timeout: Per-endpoint timeout in seconds
            attempts: Number of probe attempts made
            last_error: Failure of the last attempt
            owner: Webhook configuration declaring the endpoint
        """
        target = f"webhook endpoint {endpoint}"
        if owner:
            target = f"{owner} endpoint {endpoint}"
        message = f"{target} not ready after {timeout:g}s ({attempts} attempts)"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(
            message=message,
            category="timeout",
            resource=owner or endpoint,
            user_action="Ensure the webhook server is started before installing webhooks",
            cause=last_error,
        )
        self.endpoint = endpoint
        self.timeout = timeout
        self.attempts = attempts
        self.owner = owner


class CRDTimeoutError(EnvtestError, TimeoutError):
    """A CRD was not Established within its ready timeout."""

    def __init__(self, crd_name: str, timeout: float):
        super().__init__(
            message=f"CRD {crd_name} not established after {timeout:g}s",
            category="timeout",
            resource=crd_name,
            user_action="Check the CRD schema and the API server logs",
        )
        self.crd_name = crd_name
        self.timeout = timeout


class ConflictError(EnvtestError):
    """An update raced with another writer (HTTP 409)."""

    def __init__(self, message: str, resource: str | None = None):
        super().__init__(
            message=message,
            category="conflict",
            resource=resource,
            user_action="Make sure the resource is Established before updating it",
        )


class KubernetesAPIError(EnvtestError):
    """Error communicating with the Kubernetes API."""

    def __init__(
        self,
        message: str,
        resource: str | None = None,
        status: int | None = None,
        reason: str | None = None,
        cause: Exception | None = None,
    ):
        if reason:
            message = f"{message} (reason: {reason})"
        super().__init__(
            message=message,
            category="kubernetes",
            resource=resource,
            user_action="Check RBAC permissions and cluster connectivity",
            cause=cause,
        )
        self.status = status
        self.reason = reason
