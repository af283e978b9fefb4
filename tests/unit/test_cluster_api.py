"""Unit tests for the Kubernetes-backed cluster API."""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from k3s_envtest.errors import ConfigurationError, ConflictError, KubernetesAPIError
from k3s_envtest.models.gvk import CUSTOM_RESOURCE_DEFINITION, GroupVersionKind
from k3s_envtest.utils.kubernetes import (
    KubernetesClusterAPI,
    get_kubernetes_client,
    is_already_exists,
)

CRD = {
    "apiVersion": "apiextensions.k8s.io/v1",
    "kind": "CustomResourceDefinition",
    "metadata": {"name": "widgets.example.com"},
}
VALIDATING = {
    "apiVersion": "admissionregistration.k8s.io/v1",
    "kind": "ValidatingWebhookConfiguration",
    "metadata": {"name": "validator"},
    "webhooks": [],
}


@pytest.fixture
def apis():
    """Cluster API with mocked typed clients."""
    api_client = MagicMock()
    api_client.sanitize_for_serialization.side_effect = lambda obj: obj
    extensions_api = MagicMock()
    admission_api = MagicMock()
    with (
        patch("kubernetes.client.ApiextensionsV1Api", return_value=extensions_api),
        patch("kubernetes.client.AdmissionregistrationV1Api", return_value=admission_api),
    ):
        cluster = KubernetesClusterAPI(api_client)
    return cluster, extensions_api, admission_api


def test_create_dispatches_by_kind(apis):
    """Test that objects go to the API matching their type."""
    cluster, extensions_api, admission_api = apis
    extensions_api.create_custom_resource_definition.return_value = CRD
    admission_api.create_validating_webhook_configuration.return_value = VALIDATING

    assert cluster.create(CRD) == CRD
    assert cluster.create(VALIDATING) == VALIDATING

    extensions_api.create_custom_resource_definition.assert_called_once_with(body=CRD)
    admission_api.create_validating_webhook_configuration.assert_called_once_with(
        body=VALIDATING
    )


def test_create_already_exists(apis):
    """Test that a 409 on create keeps its status for the caller."""
    cluster, extensions_api, _ = apis
    extensions_api.create_custom_resource_definition.side_effect = ApiException(
        status=409, reason="AlreadyExists"
    )

    with pytest.raises(KubernetesAPIError) as exc_info:
        cluster.create(CRD)

    assert is_already_exists(exc_info.value)
    assert exc_info.value.reason == "AlreadyExists"


def test_get_missing_returns_none(apis):
    cluster, extensions_api, _ = apis
    extensions_api.read_custom_resource_definition.side_effect = ApiException(status=404)

    assert cluster.get(CUSTOM_RESOURCE_DEFINITION, "widgets.example.com") is None
    extensions_api.read_custom_resource_definition.assert_called_once_with(
        name="widgets.example.com"
    )


def test_get_other_error(apis):
    cluster, extensions_api, _ = apis
    extensions_api.read_custom_resource_definition.side_effect = ApiException(
        status=403, reason="Forbidden"
    )

    with pytest.raises(KubernetesAPIError) as exc_info:
        cluster.get(CUSTOM_RESOURCE_DEFINITION, "widgets.example.com")

    assert exc_info.value.status == 403
    assert not is_already_exists(exc_info.value)


def test_update_conflict(apis):
    """Test that a 409 on update is a conflict."""
    cluster, extensions_api, _ = apis
    extensions_api.replace_custom_resource_definition.side_effect = ApiException(
        status=409, reason="Conflict"
    )

    with pytest.raises(ConflictError) as exc_info:
        cluster.update(CRD)

    assert exc_info.value.resource == "widgets.example.com"


def test_update_replaces_by_name(apis):
    cluster, extensions_api, _ = apis
    extensions_api.replace_custom_resource_definition.return_value = CRD

    cluster.update(CRD)

    extensions_api.replace_custom_resource_definition.assert_called_once_with(
        name="widgets.example.com", body=CRD
    )


def test_unsupported_type(apis):
    cluster, _, _ = apis

    with pytest.raises(ConfigurationError, match="unsupported object type"):
        cluster.get(GroupVersionKind("", "v1", "ConfigMap"), "settings")


@patch("k3s_envtest.utils.kubernetes.config")
def test_get_kubernetes_client_from_kubeconfig(mock_config):
    """Test that an explicit kubeconfig builds a dedicated client."""
    sentinel = MagicMock()
    mock_config.new_client_from_config.return_value = sentinel

    assert get_kubernetes_client("/tmp/kubeconfig") is sentinel
    mock_config.new_client_from_config.assert_called_once_with(
        config_file="/tmp/kubeconfig"
    )
    mock_config.load_incluster_config.assert_not_called()
