"""
Group/version/kind identifiers for Kubernetes objects.

Objects handled by the bootstrapper are plain nested dicts, so their type is
recovered from ``apiVersion`` and ``kind``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class GroupKind:
    """API group plus kind, independent of version."""

    group: str
    kind: str

    def __str__(self) -> str:
        if not self.group:
            return self.kind
        return f"{self.kind}.{self.group}"


@dataclass(frozen=True)
class GroupVersionKind:
    """Fully qualified object type."""

    group: str
    version: str
    kind: str

    @property
    def group_kind(self) -> GroupKind:
        return GroupKind(group=self.group, kind=self.kind)

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> GroupVersionKind:
        """Split an ``apiVersion`` string ("group/version" or "version")."""
        group, _, version = api_version.rpartition("/")
        return cls(group=group, version=version, kind=kind)

    @classmethod
    def of(cls, obj: dict[str, Any]) -> GroupVersionKind:
        """Read the type of an object from its ``apiVersion`` and ``kind``."""
        return cls.from_api_version(obj.get("apiVersion") or "", obj.get("kind") or "")

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


CUSTOM_RESOURCE_DEFINITION = GroupVersionKind(
    group="apiextensions.k8s.io", version="v1", kind="CustomResourceDefinition"
)
MUTATING_WEBHOOK_CONFIGURATION = GroupVersionKind(
    group="admissionregistration.k8s.io",
    version="v1",
    kind="MutatingWebhookConfiguration",
)
VALIDATING_WEBHOOK_CONFIGURATION = GroupVersionKind(
    group="admissionregistration.k8s.io",
    version="v1",
    kind="ValidatingWebhookConfiguration",
)


def object_name(obj: dict[str, Any]) -> str:
    """Return ``metadata.name`` of an object, or an empty string."""
    return (obj.get("metadata") or {}).get("name") or ""


def format_object_reference(obj: dict[str, Any]) -> str:
    """
    Render an object reference for log and error messages.

    Example:
        >>> format_object_reference({"apiVersion": "v1", "kind": "ConfigMap",
        ...     "metadata": {"name": "cm", "namespace": "ns"}})
        'v1, Kind=ConfigMap ns/cm'
    """
    metadata = obj.get("metadata") or {}
    name = metadata.get("name") or ""
    namespace = metadata.get("namespace") or ""
    gvk = GroupVersionKind.of(obj)
    if namespace:
        return f"{gvk} {namespace}/{name}"
    return f"{gvk} {name}"
