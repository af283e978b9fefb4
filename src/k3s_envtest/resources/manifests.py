"""
Decoding and categorization of Kubernetes manifests.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import yaml

from k3s_envtest.errors import ConfigurationError
from k3s_envtest.models.gvk import (
    CUSTOM_RESOURCE_DEFINITION,
    GroupVersionKind,
    format_object_reference,
)
from k3s_envtest.models.webhook import WebhookKind

logger = logging.getLogger(__name__)


@dataclass
class ManifestCategories:
    """Manifests the bootstrapper acts on, grouped by type."""

    crds: list[dict[str, Any]] = field(default_factory=list)
    mutating: list[dict[str, Any]] = field(default_factory=list)
    validating: list[dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.crds) + len(self.mutating) + len(self.validating)


def decode_manifests(text: str | bytes, source: str | None = None) -> list[dict[str, Any]]:
    """
    Decode a multi-document YAML stream into objects.

    Empty documents and documents without a ``kind`` are skipped.

    Args:
        text: YAML content
        source: Where the content came from, for error messages

    Raises:
        ConfigurationError: If the content is not valid YAML or a document
            is not a mapping
    """
    objects: list[dict[str, Any]] = []
    try:
        documents = list(yaml.safe_load_all(text))
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"failed to decode manifests: {e}", resource=source
        ) from e

    for index, document in enumerate(documents):
        if document is None:
            continue
        if not isinstance(document, dict):
            raise ConfigurationError(
                f"document {index} is a {type(document).__name__}, expected a mapping",
                resource=source,
            )
        if not document.get("kind"):
            logger.debug(f"Skipping document {index} without kind")
            continue
        objects.append(document)
    return objects


def categorize_manifests(objects: list[dict[str, Any]]) -> ManifestCategories:
    """Split objects into CRDs and mutating and validating webhook configurations."""
    categories = ManifestCategories()
    for obj in objects:
        gvk = GroupVersionKind.of(obj)
        if gvk.group_kind == CUSTOM_RESOURCE_DEFINITION.group_kind:
            categories.crds.append(obj)
            continue
        match WebhookKind.from_gvk(gvk):
            case WebhookKind.MUTATING:
                categories.mutating.append(obj)
            case WebhookKind.VALIDATING:
                categories.validating.append(obj)
            case None:
                logger.debug(f"Ignoring {format_object_reference(obj)}")
    return categories
