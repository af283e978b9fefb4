"""
Unit tests for client-config patching and endpoint extraction.
"""

import copy

import pytest

from k3s_envtest.errors import ConfigurationError
from k3s_envtest.models.webhook import WebhookKind
from k3s_envtest.resources.patch import (
    extract_endpoint_urls,
    is_crd_established,
    patch_crd_conversion,
    patch_webhook_config,
)

BASE_URL = "https://host:9443"
CA_BUNDLE = "Y2FCdW5kbGU="


def webhook_config(kind: str, *client_configs: dict, name: str = "test-webhooks") -> dict:
    return {
        "apiVersion": "admissionregistration.k8s.io/v1",
        "kind": kind,
        "metadata": {"name": name},
        "webhooks": [
            {"name": f"hook-{i}.example.com", "clientConfig": client_config}
            for i, client_config in enumerate(client_configs)
        ],
    }


def service(path: str | None = None) -> dict:
    ref = {"name": "webhook-service", "namespace": "system"}
    if path is not None:
        ref["path"] = path
    return {"service": ref}


@pytest.fixture
def crd():
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": "widgets.example.com"},
        "spec": {
            "group": "example.com",
            "names": {"kind": "Widget"},
            "conversion": {"strategy": "None"},
        },
    }


class TestPatchWebhookConfig:
    """Test rewriting webhook client-configs."""

    def test_service_path_becomes_url(self):
        """Test the documented end-to-end example."""
        obj = webhook_config("ValidatingWebhookConfiguration", service("/validate"))

        patch_webhook_config(obj, BASE_URL, CA_BUNDLE)

        assert obj["webhooks"][0]["clientConfig"] == {
            "url": "https://host:9443/validate",
            "caBundle": "Y2FCdW5kbGU=",
        }

    def test_missing_path_defaults_to_root(self):
        """Test that a service without path and no URL maps to '/'."""
        obj = webhook_config("MutatingWebhookConfiguration", service())

        patch_webhook_config(obj, BASE_URL, CA_BUNDLE)

        assert obj["webhooks"][0]["clientConfig"]["url"] == f"{BASE_URL}/"

    def test_existing_url_path_is_kept(self):
        """Test that the path of a previous URL is reused."""
        obj = webhook_config(
            "MutatingWebhookConfiguration", {"url": "https://old-host:443/mutate-v1"}
        )

        patch_webhook_config(obj, BASE_URL, CA_BUNDLE)

        assert obj["webhooks"][0]["clientConfig"]["url"] == f"{BASE_URL}/mutate-v1"

    def test_missing_client_config(self):
        """Test that an entry without clientConfig gets one."""
        obj = webhook_config("MutatingWebhookConfiguration")
        obj["webhooks"] = [{"name": "bare.example.com"}]

        patch_webhook_config(obj, BASE_URL, CA_BUNDLE)

        assert obj["webhooks"][0]["clientConfig"] == {
            "url": f"{BASE_URL}/",
            "caBundle": CA_BUNDLE,
        }

    def test_every_entry_patched(self):
        """Test that each webhook has exactly one of url and service."""
        obj = webhook_config(
            "ValidatingWebhookConfiguration",
            service("/validate-a"),
            service("/validate-b"),
            service(),
        )

        patch_webhook_config(obj, BASE_URL, CA_BUNDLE)

        urls = []
        for entry in obj["webhooks"]:
            client_config = entry["clientConfig"]
            assert "service" not in client_config
            assert client_config["caBundle"] == CA_BUNDLE
            urls.append(client_config["url"])
        assert urls == [
            f"{BASE_URL}/validate-a",
            f"{BASE_URL}/validate-b",
            f"{BASE_URL}/",
        ]

    def test_other_fields_preserved(self):
        """Test that fields outside clientConfig are untouched."""
        obj = webhook_config("ValidatingWebhookConfiguration", service("/validate"))
        obj["webhooks"][0]["sideEffects"] = "None"
        obj["webhooks"][0]["rules"] = [{"operations": ["CREATE"]}]

        patch_webhook_config(obj, BASE_URL, CA_BUNDLE)

        assert obj["webhooks"][0]["sideEffects"] == "None"
        assert obj["webhooks"][0]["rules"] == [{"operations": ["CREATE"]}]
        assert obj["metadata"] == {"name": "test-webhooks"}

    def test_idempotent(self):
        """Test that patching twice with the same arguments is a fixed point."""
        obj = webhook_config(
            "MutatingWebhookConfiguration", service("/mutate"), service()
        )

        patch_webhook_config(obj, BASE_URL, CA_BUNDLE)
        once = copy.deepcopy(obj)
        patch_webhook_config(obj, BASE_URL, CA_BUNDLE)

        assert obj == once

    def test_trailing_slash_in_base_url(self):
        """Test that the base URL is joined without a double slash."""
        obj = webhook_config("ValidatingWebhookConfiguration", service("/validate"))

        patch_webhook_config(obj, f"{BASE_URL}/", CA_BUNDLE)

        assert obj["webhooks"][0]["clientConfig"]["url"] == f"{BASE_URL}/validate"

    def test_no_webhooks(self):
        """Test that a configuration without webhooks is left alone."""
        obj = {
            "apiVersion": "admissionregistration.k8s.io/v1",
            "kind": "ValidatingWebhookConfiguration",
            "metadata": {"name": "empty"},
        }
        before = copy.deepcopy(obj)

        patch_webhook_config(obj, BASE_URL, CA_BUNDLE)

        assert obj == before

    def test_malformed_webhooks(self):
        """Test that webhooks must be a list of objects."""
        obj = webhook_config("ValidatingWebhookConfiguration")
        obj["webhooks"] = ["not-an-object"]

        with pytest.raises(ConfigurationError) as exc_info:
            patch_webhook_config(obj, BASE_URL, CA_BUNDLE)

        assert exc_info.value.resource == "test-webhooks"
        assert exc_info.value.field == "webhooks"


class TestPatchCRDConversion:
    """Test rewriting CRD conversion blocks."""

    def test_conversion_overwritten(self, crd):
        """Test that the conversion block is fully replaced."""
        crd["spec"]["conversion"]["webhook"] = {"clientConfig": {"service": {"name": "x"}}}

        patch_crd_conversion(crd, BASE_URL, CA_BUNDLE)

        assert crd["spec"]["conversion"] == {
            "strategy": "Webhook",
            "webhook": {
                "conversionReviewVersions": ["v1", "v1beta1"],
                "clientConfig": {
                    "url": "https://host:9443/convert",
                    "caBundle": CA_BUNDLE,
                },
            },
        }

    def test_conversion_added_when_missing(self, crd):
        """Test patching a CRD without conversion block."""
        del crd["spec"]["conversion"]

        patch_crd_conversion(crd, BASE_URL, CA_BUNDLE)

        assert crd["spec"]["conversion"]["strategy"] == "Webhook"
        assert crd["spec"]["group"] == "example.com"

    def test_idempotent(self, crd):
        """Test that patching twice is a fixed point."""
        patch_crd_conversion(crd, BASE_URL, CA_BUNDLE)
        once = copy.deepcopy(crd)
        patch_crd_conversion(crd, BASE_URL, CA_BUNDLE)

        assert crd == once


class TestExtractEndpointURLs:
    """Test endpoint extraction after patching."""

    def test_mutating(self):
        """Test extraction from a mutating configuration."""
        obj = webhook_config(
            "MutatingWebhookConfiguration",
            {"url": "https://host:9443/mutate-a"},
            {"url": "https://host:9443/mutate-b"},
            name="mutators",
        )

        ref = extract_endpoint_urls(obj)

        assert ref.name == "mutators"
        assert ref.kind is WebhookKind.MUTATING
        assert ref.urls == ("https://host:9443/mutate-a", "https://host:9443/mutate-b")
        assert str(ref) == "mutating webhook configuration mutators"

    def test_validating(self):
        """Test extraction from a validating configuration."""
        obj = webhook_config(
            "ValidatingWebhookConfiguration", {"url": "https://host:9443/validate"}
        )

        ref = extract_endpoint_urls(obj)

        assert ref.kind is WebhookKind.VALIDATING
        assert ref.urls == ("https://host:9443/validate",)

    def test_entries_without_url_skipped(self):
        """Test that missing and empty URLs are ignored."""
        obj = webhook_config(
            "ValidatingWebhookConfiguration",
            service("/validate"),
            {"url": ""},
            {"url": "https://host:9443/validate"},
        )

        assert extract_endpoint_urls(obj).urls == ("https://host:9443/validate",)

    def test_no_webhooks(self):
        """Test a configuration without webhooks."""
        obj = webhook_config("ValidatingWebhookConfiguration")
        del obj["webhooks"]

        assert extract_endpoint_urls(obj).urls == ()

    @pytest.mark.parametrize(
        ("kind", "label"),
        [
            ("MutatingWebhookConfiguration", "mutating"),
            ("ValidatingWebhookConfiguration", "validating"),
        ],
    )
    @pytest.mark.parametrize("url", ["http://[::1", "not a url", "://missing-scheme"])
    def test_invalid_url_names_owner_and_kind(self, kind, label, url):
        """Test that a malformed URL is reported with its configuration."""
        obj = webhook_config(kind, {"url": url}, name="broken-hooks")

        with pytest.raises(ConfigurationError) as exc_info:
            extract_endpoint_urls(obj)

        assert f"invalid URL in {label} webhook broken-hooks" in str(exc_info.value)
        assert exc_info.value.resource == "broken-hooks"

    def test_not_a_webhook_configuration(self):
        """Test that other kinds are rejected."""
        obj = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "cm"}}

        with pytest.raises(ConfigurationError, match="not a webhook configuration"):
            extract_endpoint_urls(obj)

    def test_extract_after_patch(self):
        """Test extracting from a freshly patched configuration."""
        obj = webhook_config(
            "ValidatingWebhookConfiguration", service("/validate"), service()
        )
        patch_webhook_config(obj, BASE_URL, CA_BUNDLE)

        assert extract_endpoint_urls(obj).urls == (
            f"{BASE_URL}/validate",
            f"{BASE_URL}/",
        )


class TestIsCRDEstablished:
    """Test the Established condition check."""

    def test_established(self, crd):
        crd["status"] = {
            "conditions": [
                {"type": "NamesAccepted", "status": "True"},
                {"type": "Established", "status": "True"},
            ]
        }

        assert is_crd_established(crd) is True

    def test_not_established(self, crd):
        crd["status"] = {"conditions": [{"type": "Established", "status": "False"}]}

        assert is_crd_established(crd) is False

    def test_no_status(self, crd):
        assert is_crd_established(crd) is False
