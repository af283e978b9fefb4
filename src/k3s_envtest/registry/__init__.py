"""
Typed object registry and conversion capability resolution.
"""

from .conversion import filter_convertible_crds, filter_crds, resolve_convertible
from .scheme import Convertible, Hub, TypeRegistry

__all__ = [
    "Convertible",
    "Hub",
    "TypeRegistry",
    "filter_convertible_crds",
    "filter_crds",
    "resolve_convertible",
]
