"""
Registry of typed API objects and their conversion capabilities.

Types declare what they can do by inheriting an explicit marker:
``Hub`` for the storage version every other version converts through, and
``Convertible`` for spoke versions that convert to and from the hub.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from typing import Any

from k3s_envtest.errors import ConfigurationError
from k3s_envtest.models.gvk import GroupVersionKind

logger = logging.getLogger(__name__)


class Hub(ABC):  # noqa: B024
    """Marker for the hub version of a kind; conversions go through it."""


class Convertible(ABC):
    """A spoke version that converts to and from the hub version."""

    @abstractmethod
    def convert_to(self, hub: Hub) -> None:
        """Fill ``hub`` from this object."""

    @abstractmethod
    def convert_from(self, hub: Hub) -> None:
        """Fill this object from ``hub``."""


Factory = Callable[[], Any]


class TypeRegistry:
    """
    Maps group/version/kinds to factories producing instances of their type.

    Factories are usually the classes themselves.
    """

    def __init__(self) -> None:
        self._types: dict[GroupVersionKind, Factory] = {}

    def register(self, gvk: GroupVersionKind, factory: Factory) -> None:
        if gvk in self._types:
            raise ConfigurationError(
                f"type {gvk} is already registered",
                resource=str(gvk),
            )
        self._types[gvk] = factory
        logger.debug(f"Registered type {gvk}")

    def known_types(self) -> list[GroupVersionKind]:
        return list(self._types)

    def new(self, gvk: GroupVersionKind) -> Any:
        """
        Instantiate the type registered for ``gvk``.

        Raises:
            ConfigurationError: If the type is unknown or its factory fails
        """
        factory = self._types.get(gvk)
        if factory is None:
            raise ConfigurationError(
                f"no type registered for {gvk}", resource=str(gvk)
            )
        try:
            return factory()
        except Exception as e:
            raise ConfigurationError(
                f"failed to instantiate {gvk}: {e}",
                resource=str(gvk),
                user_action="Registered types must be constructible without arguments",
            ) from e

    def __contains__(self, gvk: object) -> bool:
        return gvk in self._types

    def __iter__(self) -> Iterator[GroupVersionKind]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)
