"""
Typed query and in-place transform over untyped object trees.

Manifests are handled as plain nested dicts (as returned by ``yaml.safe_load``
or ``ApiClient.sanitize_for_serialization``). These helpers run a query
expression against such a tree and either rewrite the tree or return a value
checked against an expected Python type. Extra positional arguments are bound
to ``$1``, ``$2``, ... inside the expression.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from k3s_envtest.errors import TransformError
from k3s_envtest.query.evaluator import evaluate, type_name
from k3s_envtest.query.parser import parse

logger = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K")
V = TypeVar("V")

_NO_RESULT = object()


def _bind(args: tuple[Any, ...]) -> dict[str, Any]:
    return {str(i): arg for i, arg in enumerate(args, start=1)}


def _first(tree: Any, expr: str, args: tuple[Any, ...]) -> Any:
    node = parse(expr)
    try:
        return next(evaluate(node, tree, _bind(args)), _NO_RESULT)
    except TransformError as e:
        if e.expression is None:
            raise TransformError(f"{e.args[0]} in {expr!r}", expr) from e
        raise


def _matches(value: Any, expected: type) -> bool:
    if expected is object:
        return True
    # bool is an int subclass but never stands in for a number
    if isinstance(value, bool) and expected is not bool:
        return False
    if expected is float:
        return isinstance(value, float)
    return isinstance(value, expected)


def _check(value: Any, expected: type, where: str, expr: str) -> None:
    if not _matches(value, expected):
        raise TransformError(
            f"{where}: expected {expected.__name__}, got {type_name(value)} "
            f"({type(value).__name__})",
            expr,
        )


def transform(tree: dict[str, Any], expr: str, *args: Any) -> None:
    """
    Rewrite ``tree`` in place with the first result of ``expr``.

    Args:
        tree: Object to rewrite; its contents are replaced, its identity kept
        expr: Query expression, e.g. ``.spec.replicas = $1``
        *args: Values bound to ``$1..$n``

    Raises:
        TransformError: If the expression is invalid, fails to evaluate, or
            produces something other than an object
    """
    result = _first(tree, expr, args)
    if result is _NO_RESULT or result is None:
        logger.debug(f"Expression {expr!r} produced no result, tree unchanged")
        return
    if not isinstance(result, dict):
        raise TransformError(
            f"transform result must be an object, got {type_name(result)}", expr
        )

    # The result may share nested containers with the input, so take a
    # shallow copy before clearing
    result = dict(result)
    tree.clear()
    tree.update(result)


def query(tree: Any, expr: str, *args: Any, expected: type[T] = object) -> T | None:
    """
    Return the first result of ``expr``, checked against ``expected``.

    An absent or null result returns None without error. Any other result
    that is not an instance of ``expected`` raises TransformError; values are
    never coerced and ``bool`` is never accepted where a number is expected.

    Example:
        >>> query({"spec": {"replicas": 3}}, ".spec.replicas", expected=int)
        3
    """
    result = _first(tree, expr, args)
    if result is _NO_RESULT or result is None:
        return None
    _check(result, expected, "result", expr)
    return result


def query_slice(
    tree: Any, expr: str, *args: Any, expected: type[T] = object
) -> list[T] | None:
    """Query an array and check every element, failing on the first bad index."""
    result = query(tree, expr, *args, expected=list)
    if result is None:
        return None
    for i, item in enumerate(result):
        _check(item, expected, f"element {i}", expr)
    return result


def query_map(
    tree: Any,
    expr: str,
    *args: Any,
    key_type: type[K] = str,
    expected: type[V] = object,
) -> dict[K, V] | None:
    """Query an object and check every value, failing on the first bad key."""
    result = query(tree, expr, *args, expected=dict)
    if result is None:
        return None
    for key, value in result.items():
        _check(key, key_type, f"key {key!r}", expr)
        _check(value, expected, f"value at key {key!r}", expr)
    return result
