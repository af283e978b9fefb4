"""
Unit tests for the type registry and convertibility resolution.
"""

import logging

import pytest

from k3s_envtest.errors import ConfigurationError
from k3s_envtest.models.gvk import GroupKind, GroupVersionKind
from k3s_envtest.registry import (
    Convertible,
    Hub,
    TypeRegistry,
    filter_convertible_crds,
    filter_crds,
    resolve_convertible,
)

GROUP = "example.com"


class WidgetV1(Hub):
    pass


class WidgetV1alpha1(Convertible):
    def convert_to(self, hub):
        pass

    def convert_from(self, hub):
        pass


class GadgetV1:
    pass


class GizmoV1(Hub):
    pass


class GizmoV2:
    pass


def gvk(kind: str, version: str) -> GroupVersionKind:
    return GroupVersionKind(group=GROUP, version=version, kind=kind)


def crd(name: str, group: str | None = GROUP, kind: str | None = "Widget") -> dict:
    spec: dict = {"names": {}}
    if group is not None:
        spec["group"] = group
    if kind is not None:
        spec["names"]["kind"] = kind
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": name},
        "spec": spec,
    }


@pytest.fixture
def registry():
    registry = TypeRegistry()
    registry.register(gvk("Widget", "v1"), WidgetV1)
    registry.register(gvk("Widget", "v1alpha1"), WidgetV1alpha1)
    registry.register(gvk("Gadget", "v1"), GadgetV1)
    return registry


class TestTypeRegistry:
    """Test type registration."""

    def test_new_instantiates_registered_type(self, registry):
        """Test that instances are created from the factory."""
        assert isinstance(registry.new(gvk("Widget", "v1")), WidgetV1)

    def test_duplicate_registration_is_error(self, registry):
        """Test that a type cannot be registered twice."""
        with pytest.raises(ConfigurationError, match="already registered"):
            registry.register(gvk("Widget", "v1"), WidgetV1)

    def test_unknown_type_is_error(self, registry):
        """Test instantiating an unregistered type."""
        with pytest.raises(ConfigurationError, match="no type registered"):
            registry.new(gvk("Unknown", "v1"))

    def test_known_types(self, registry):
        """Test listing and membership."""
        assert len(registry) == 3
        assert gvk("Gadget", "v1") in registry
        assert set(registry.known_types()) == set(registry)


class TestResolveConvertible:
    """Test convertibility resolution."""

    def test_hub_and_spoke_is_convertible(self, registry):
        """Test that one hub plus convertible spokes is selected."""
        result = resolve_convertible(registry)

        assert GroupKind(GROUP, "Widget") in result

    def test_kind_without_markers_is_not_convertible(self, registry):
        """Test that plain types are not selected."""
        result = resolve_convertible(registry)

        assert GroupKind(GROUP, "Gadget") not in result

    def test_partial_implementation_is_skipped_and_logged(self, registry, caplog):
        """Test a hub whose other version is not convertible."""
        registry.register(gvk("Gizmo", "v1"), GizmoV1)
        registry.register(gvk("Gizmo", "v2"), GizmoV2)

        with caplog.at_level(logging.WARNING):
            result = resolve_convertible(registry)

        assert GroupKind(GROUP, "Gizmo") not in result
        assert "Gizmo" in caplog.text

    def test_spokes_without_hub_are_skipped(self):
        """Test that convertible versions need a hub."""
        registry = TypeRegistry()
        registry.register(gvk("Widget", "v1alpha1"), WidgetV1alpha1)

        assert resolve_convertible(registry) == frozenset()

    def test_instantiation_failure_is_fatal(self, registry):
        """Test that a failing factory aborts resolution."""

        def broken():
            raise RuntimeError("boom")

        registry.register(gvk("Broken", "v1"), broken)

        with pytest.raises(ConfigurationError, match="failed to instantiate"):
            resolve_convertible(registry)

    def test_empty_registry(self):
        """Test that an empty registry yields an empty set."""
        assert resolve_convertible(TypeRegistry()) == frozenset()


class TestFilterCRDs:
    """Test CRD selection."""

    def test_selects_matching_group_kind(self):
        """Test that a CRD is selected iff its group kind is in the set."""
        crds = [
            crd("widgets.example.com"),
            crd("gadgets.example.com", kind="Gadget"),
            crd("widgets.other.io", group="other.io"),
        ]

        result = filter_crds(crds, {GroupKind(GROUP, "Widget")})

        assert [c["metadata"]["name"] for c in result] == ["widgets.example.com"]

    def test_missing_group_is_field_error(self):
        """Test that a CRD without group is reported, not skipped."""
        with pytest.raises(ConfigurationError) as exc_info:
            filter_crds([crd("broken", group=None)], {GroupKind(GROUP, "Widget")})

        assert exc_info.value.field == "spec.group"
        assert exc_info.value.resource == "broken"

    def test_missing_kind_is_field_error(self):
        """Test that a CRD without kind is reported, not skipped."""
        with pytest.raises(ConfigurationError) as exc_info:
            filter_crds([crd("broken", kind=None)], {GroupKind(GROUP, "Widget")})

        assert exc_info.value.field == "spec.names.kind"

    def test_missing_field_fails_even_with_empty_set(self):
        """Test that validation does not depend on the set contents."""
        with pytest.raises(ConfigurationError):
            filter_crds([crd("broken", group=None)], set())

    def test_filter_convertible_crds(self, registry):
        """Test resolution and filtering combined."""
        crds = [crd("widgets.example.com"), crd("gadgets.example.com", kind="Gadget")]

        result = filter_convertible_crds(registry, crds)

        assert [c["metadata"]["name"] for c in result] == ["widgets.example.com"]

    def test_filter_convertible_crds_without_crds(self, registry):
        """Test that no CRDs means nothing to resolve."""
        assert filter_convertible_crds(registry, []) == []
