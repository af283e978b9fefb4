"""
Resolve which group kinds support version conversion.

A kind is convertible when exactly one of its registered versions is a
``Hub`` and every other version is ``Convertible``. Only the CRDs of such
kinds get their conversion block pointed at the host webhook server.
"""

import logging
from collections import defaultdict
from typing import Any

from k3s_envtest.errors import ConfigurationError
from k3s_envtest.models.gvk import GroupKind, object_name
from k3s_envtest.registry.scheme import Convertible, Hub, TypeRegistry

logger = logging.getLogger(__name__)


def _is_convertible(group_kind: GroupKind, instances: dict[str, Any]) -> bool:
    hubs = [v for v, obj in instances.items() if isinstance(obj, Hub)]
    spokes = [
        v
        for v, obj in instances.items()
        if isinstance(obj, Convertible) and not isinstance(obj, Hub)
    ]
    others = sorted(set(instances) - set(hubs) - set(spokes))

    if not hubs and not spokes:
        return False

    if len(hubs) == 1 and not others:
        return True

    if len(hubs) > 1:
        logger.warning(
            f"{group_kind} has multiple hub versions {sorted(hubs)}, "
            "skipping conversion webhook"
        )
    elif not hubs:
        logger.warning(
            f"{group_kind} has convertible versions {sorted(spokes)} but no hub, "
            "skipping conversion webhook"
        )
    else:
        logger.warning(
            f"{group_kind} versions {others} implement neither Hub nor Convertible, "
            "skipping conversion webhook"
        )
    return False


def resolve_convertible(registry: TypeRegistry) -> frozenset[GroupKind]:
    """
    Return the group kinds whose registered versions support conversion.

    Raises:
        ConfigurationError: If a registered type cannot be instantiated
    """
    by_group_kind: dict[GroupKind, dict[str, Any]] = defaultdict(dict)
    for gvk in registry.known_types():
        by_group_kind[gvk.group_kind][gvk.version] = registry.new(gvk)

    convertible = frozenset(
        group_kind
        for group_kind, instances in by_group_kind.items()
        if _is_convertible(group_kind, instances)
    )
    logger.debug(
        f"Resolved {len(convertible)} convertible kinds out of {len(by_group_kind)}"
    )
    return convertible


def filter_crds(
    crds: list[dict[str, Any]], convertibles: frozenset[GroupKind] | set[GroupKind]
) -> list[dict[str, Any]]:
    """
    Select the CRDs whose group and kind are in ``convertibles``.

    Raises:
        ConfigurationError: If a CRD lacks ``spec.group`` or ``spec.names.kind``
    """
    selected = []
    for crd in crds:
        name = object_name(crd) or "<unnamed>"
        spec = crd.get("spec") or {}

        group = spec.get("group")
        if not group:
            raise ConfigurationError(
                f"CRD {name} has no group", resource=name, field="spec.group"
            )
        kind = (spec.get("names") or {}).get("kind")
        if not kind:
            raise ConfigurationError(
                f"CRD {name} has no kind", resource=name, field="spec.names.kind"
            )

        if GroupKind(group=group, kind=kind) in convertibles:
            selected.append(crd)
    return selected


def filter_convertible_crds(
    registry: TypeRegistry, crds: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Select the CRDs of every convertible kind known to ``registry``."""
    if not crds:
        return []
    return filter_crds(crds, resolve_convertible(registry))
