"""
Point webhook and CRD conversion client-configs at the host webhook server.

Manifests are written against in-cluster services. Inside the test cluster
the webhook implementation runs on the host instead, so every client-config
is rewritten to a direct URL plus the environment's CA bundle. All patches
are idempotent: applying them twice with the same arguments changes nothing.
"""

import logging
from typing import Any
from urllib.parse import urlsplit

from k3s_envtest.constants import (
    CONDITION_ESTABLISHED,
    CONDITION_TRUE,
    CONVERSION_REVIEW_VERSIONS,
    WEBHOOK_CONVERT_PATH,
    WEBHOOK_DEFAULT_PATH,
)
from k3s_envtest.errors import ConfigurationError, TransformError
from k3s_envtest.models.gvk import GroupVersionKind, object_name
from k3s_envtest.models.webhook import WebhookEndpointRef, WebhookKind
from k3s_envtest.query import query, query_slice, transform

logger = logging.getLogger(__name__)

# Rewrites one webhook entry: $1 index, $2 base URL, $3 path fallback, $4 CA bundle
WEBHOOK_CLIENT_CONFIG_PATCH = """
.webhooks[$1].clientConfig |= (
    .url = $2 + (.service.path // $3)
    | .caBundle = $4
    | del(.service)
)
"""

CRD_CONVERSION_PATCH = """
.spec.conversion = {
    strategy: "Webhook",
    webhook: {
        conversionReviewVersions: $1,
        clientConfig: {url: $2, caBundle: $3}
    }
}
"""


def _url_path(url: str | None) -> str:
    """Path of an existing client-config URL, or the default path."""
    if not url:
        return WEBHOOK_DEFAULT_PATH
    try:
        path = urlsplit(url).path
    except ValueError:
        return WEBHOOK_DEFAULT_PATH
    return path or WEBHOOK_DEFAULT_PATH


def patch_webhook_config(obj: dict[str, Any], base_url: str, ca_bundle: str) -> None:
    """
    Rewrite every ``webhooks[].clientConfig`` of a webhook configuration.

    The effective path of each entry is its service path, else the path of
    its existing URL, else ``/``. The entry ends up with ``url`` set to
    ``base_url`` plus that path, ``caBundle`` set, and no ``service``.

    Args:
        obj: Mutating or validating webhook configuration, patched in place
        base_url: Scheme, host and port of the host webhook server
        ca_bundle: Base64 encoded CA certificate

    Raises:
        ConfigurationError: If ``webhooks`` is not a list of objects
    """
    name = object_name(obj)
    try:
        entries = query_slice(obj, ".webhooks", expected=dict)
    except TransformError as e:
        raise ConfigurationError(
            f"webhook configuration {name} has malformed webhooks: {e}",
            resource=name,
            field="webhooks",
        ) from e

    if not entries:
        logger.debug(f"Webhook configuration {name} has no webhooks to patch")
        return

    base_url = base_url.rstrip("/")
    for i in range(len(entries)):
        try:
            existing_url = query(obj, ".webhooks[$1].clientConfig.url?", i, expected=str)
            transform(
                obj,
                WEBHOOK_CLIENT_CONFIG_PATCH,
                i,
                base_url,
                _url_path(existing_url),
                ca_bundle,
            )
        except TransformError as e:
            raise ConfigurationError(
                f"failed to patch webhook {i} of {name}: {e}",
                resource=name,
                field=f"webhooks[{i}].clientConfig",
            ) from e

    logger.debug(f"Patched {len(entries)} webhooks of {name} to {base_url}")


def patch_crd_conversion(crd: dict[str, Any], base_url: str, ca_bundle: str) -> None:
    """
    Replace ``spec.conversion`` of a CRD with a webhook strategy.

    The previous conversion block is overwritten, not merged.
    """
    name = object_name(crd)
    url = base_url.rstrip("/") + WEBHOOK_CONVERT_PATH
    try:
        transform(
            crd, CRD_CONVERSION_PATCH, list(CONVERSION_REVIEW_VERSIONS), url, ca_bundle
        )
    except TransformError as e:
        raise ConfigurationError(
            f"failed to patch conversion of CRD {name}: {e}",
            resource=name,
            field="spec.conversion",
        ) from e
    logger.debug(f"Patched conversion webhook of CRD {name} to {url}")


def extract_endpoint_urls(obj: dict[str, Any]) -> WebhookEndpointRef:
    """
    Collect the client-config URLs of a patched webhook configuration.

    Entries without a URL are skipped.

    Raises:
        ConfigurationError: If the object is not a webhook configuration or
            one of its URLs is malformed
    """
    name = object_name(obj)
    gvk = GroupVersionKind.of(obj)

    kind = WebhookKind.from_gvk(gvk)
    if kind is None:
        raise ConfigurationError(
            f"{gvk} {name} is not a webhook configuration",
            resource=name,
            field="kind",
        )

    try:
        urls = query_slice(obj, "[.webhooks[]?.clientConfig.url?]", expected=object)
    except TransformError as e:
        raise ConfigurationError(
            f"{kind.value} webhook configuration {name} has malformed webhooks: {e}",
            resource=name,
            field="webhooks",
        ) from e

    valid: list[str] = []
    for i, url in enumerate(urls or []):
        if url is None or url == "":
            continue
        if not isinstance(url, str) or not _is_valid_url(url):
            raise ConfigurationError(
                f"invalid URL in {kind.value} webhook {name}: {url!r}",
                resource=name,
                field=f"webhooks[{i}].clientConfig.url",
            )
        valid.append(url)

    return WebhookEndpointRef(name=name, kind=kind, urls=tuple(valid))


def _is_valid_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
        # Accessing port validates it
        parts.port  # noqa: B018
    except ValueError:
        return False
    return bool(parts.scheme) and bool(parts.hostname)


def is_crd_established(crd: dict[str, Any]) -> bool:
    """Whether a CRD reports the ``Established=True`` condition."""
    conditions = query_slice(crd, ".status.conditions?", expected=dict) or []
    return any(
        c.get("type") == CONDITION_ESTABLISHED and c.get("status") == CONDITION_TRUE
        for c in conditions
    )
