"""
Query and transform expressions over untyped object trees.
"""

from .engine import query, query_map, query_slice, transform
from .parser import parse

__all__ = [
    "parse",
    "query",
    "query_map",
    "query_slice",
    "transform",
]
