"""
Kubernetes API access for the bootstrapper.

The bootstrapper only needs to create, read and update CRDs and webhook
configurations. ``ClusterAPI`` describes that surface; ``KubernetesClusterAPI``
implements it on top of the official ``kubernetes`` client. Objects cross
this boundary as plain dicts in their wire (camelCase) form.

All methods are blocking; async callers run them via ``asyncio.to_thread``.
"""

import logging
from typing import Any, Protocol

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from k3s_envtest.errors import ConfigurationError, ConflictError, KubernetesAPIError
from k3s_envtest.models.gvk import (
    CUSTOM_RESOURCE_DEFINITION,
    MUTATING_WEBHOOK_CONFIGURATION,
    VALIDATING_WEBHOOK_CONFIGURATION,
    GroupKind,
    GroupVersionKind,
    format_object_reference,
    object_name,
)

logger = logging.getLogger(__name__)


def get_kubernetes_client(kubeconfig: str | None = None) -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Args:
        kubeconfig: Path to a kubeconfig file, e.g. the one exported by the
            test cluster. Without it, in-cluster configuration is tried
            first, then the default local kubeconfig.

    Returns:
        Configured Kubernetes API client
    """
    if kubeconfig:
        logger.debug(f"Loading kubeconfig from {kubeconfig}")
        return config.new_client_from_config(config_file=kubeconfig)

    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()


class ClusterAPI(Protocol):
    """Cluster operations the bootstrapper depends on."""

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Create ``obj`` and return the stored object."""
        ...

    def get(self, gvk: GroupVersionKind, name: str) -> dict[str, Any] | None:
        """Return the named object, or None if it does not exist."""
        ...

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace ``obj`` and return the stored object."""
        ...


def is_already_exists(error: KubernetesAPIError) -> bool:
    return error.status == 409


class KubernetesClusterAPI:
    """``ClusterAPI`` backed by the official Kubernetes client."""

    def __init__(self, api_client: client.ApiClient | None = None):
        self.api_client = api_client or get_kubernetes_client()
        self.extensions_api = client.ApiextensionsV1Api(self.api_client)
        self.admission_api = client.AdmissionregistrationV1Api(self.api_client)

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        return self.api_client.sanitize_for_serialization(obj)

    def _operations(self, gvk: GroupVersionKind) -> tuple[Any, Any, Any]:
        group_kind = gvk.group_kind
        if group_kind == CUSTOM_RESOURCE_DEFINITION.group_kind:
            api = self.extensions_api
            return (
                api.create_custom_resource_definition,
                api.read_custom_resource_definition,
                api.replace_custom_resource_definition,
            )
        if group_kind == MUTATING_WEBHOOK_CONFIGURATION.group_kind:
            api = self.admission_api
            return (
                api.create_mutating_webhook_configuration,
                api.read_mutating_webhook_configuration,
                api.replace_mutating_webhook_configuration,
            )
        if group_kind == VALIDATING_WEBHOOK_CONFIGURATION.group_kind:
            api = self.admission_api
            return (
                api.create_validating_webhook_configuration,
                api.read_validating_webhook_configuration,
                api.replace_validating_webhook_configuration,
            )
        raise ConfigurationError(
            f"unsupported object type {gvk}",
            resource=str(GroupKind(gvk.group, gvk.kind)),
            field="kind",
        )

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        create, _, _ = self._operations(GroupVersionKind.of(obj))
        reference = format_object_reference(obj)
        try:
            created = create(body=obj)
        except ApiException as e:
            raise _api_error(e, f"failed to create {reference}", reference) from e
        logger.debug(f"Created {reference}")
        return self._to_dict(created)

    def get(self, gvk: GroupVersionKind, name: str) -> dict[str, Any] | None:
        _, read, _ = self._operations(gvk)
        try:
            found = read(name=name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise _api_error(e, f"failed to get {gvk} {name}", name) from e
        return self._to_dict(found)

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        _, _, replace = self._operations(GroupVersionKind.of(obj))
        name = object_name(obj)
        reference = format_object_reference(obj)
        try:
            updated = replace(name=name, body=obj)
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(
                    f"conflict updating {reference}: {e.reason}", resource=name
                ) from e
            raise _api_error(e, f"failed to update {reference}", reference) from e
        logger.debug(f"Updated {reference}")
        return self._to_dict(updated)


def _api_error(e: ApiException, message: str, resource: str) -> KubernetesAPIError:
    return KubernetesAPIError(
        message, resource=resource, status=e.status, reason=e.reason, cause=e
    )
