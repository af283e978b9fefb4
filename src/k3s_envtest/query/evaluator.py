"""
Evaluator for parsed tree query expressions.

Every expression is a generator from one input value to zero or more output
values. Assignment, update and deletion work on *paths*: the evaluator first
collects the paths an expression addresses, then rebuilds the tree along
those paths. Containers are copied on write, so the input tree is never
mutated.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

from k3s_envtest.errors import TransformError
from k3s_envtest.query.parser import (
    Alternative,
    ArrayCons,
    Assign,
    BinaryOp,
    Call,
    Comma,
    Identity,
    Index,
    Iterate,
    Literal,
    Negate,
    Node,
    ObjectCons,
    Optional,
    Pipe,
    Update,
    Var,
)

Path = tuple[str | int, ...]
Env = dict[str, Any]

_MISSING = object()


def type_name(value: Any) -> str:
    """Name of a tree value's type, as used in error messages."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def is_truthy(value: Any) -> bool:
    return value is not None and value is not False


def values_equal(a: Any, b: Any) -> bool:
    """JSON equality: booleans never compare equal to numbers."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(values_equal(a[k], b[k]) for k in a)
    return type_name(a) == type_name(b) and a == b


# ---------------------------------------------------------------------------
# Path primitives
# ---------------------------------------------------------------------------


def index_value(value: Any, key: Any) -> Any:
    """Look up ``key`` in ``value``; absent keys and null containers give null."""
    if value is None:
        if isinstance(key, str | int) and not isinstance(key, bool):
            return None
    elif isinstance(value, dict) and isinstance(key, str):
        return value.get(key)
    elif isinstance(value, list) and isinstance(key, int) and not isinstance(key, bool):
        if -len(value) <= key < len(value):
            return value[key]
        return None
    raise TransformError(f"cannot index {type_name(value)} with {key!r}")


def get_path(value: Any, path: Path) -> Any:
    for key in path:
        value = index_value(value, key)
    return value


def set_path(value: Any, path: Path, new: Any) -> Any:
    """Return a copy of ``value`` with ``new`` stored at ``path``."""
    if not path:
        return new

    key, rest = path[0], path[1:]

    if isinstance(key, str):
        if value is None:
            value = {}
        if not isinstance(value, dict):
            raise TransformError(f"cannot index {type_name(value)} with {key!r}")
        updated = dict(value)
        updated[key] = set_path(value.get(key), rest, new)
        return updated

    if value is None:
        value = []
    if not isinstance(value, list):
        raise TransformError(f"cannot index {type_name(value)} with {key}")
    updated = list(value)
    if key < 0:
        key += len(updated)
        if key < 0:
            raise TransformError("out of bounds negative array index")
    if key >= len(updated):
        updated.extend([None] * (key + 1 - len(updated)))
    updated[key] = set_path(updated[key], rest, new)
    return updated


def delete_path(value: Any, path: Path) -> Any:
    """Return a copy of ``value`` without the entry at ``path``."""
    if not path:
        return None
    if value is None:
        return None

    key, rest = path[0], path[1:]

    if isinstance(value, dict) and isinstance(key, str):
        if key not in value:
            return value
        updated = dict(value)
        if rest:
            updated[key] = delete_path(value[key], rest)
        else:
            del updated[key]
        return updated

    if isinstance(value, list) and isinstance(key, int):
        if not -len(value) <= key < len(value):
            return value
        updated = list(value)
        if rest:
            updated[key] = delete_path(value[key], rest)
        else:
            del updated[key]
        return updated

    raise TransformError(f"cannot delete field at {key!r} of {type_name(value)}")


def _path_sort_key(path: Path) -> list[tuple[int, int, str]]:
    return [
        (1, 0, key) if isinstance(key, str) else (0, key, "") for key in path
    ]


def delete_paths(value: Any, paths: list[Path]) -> Any:
    # Deepest and highest indices first so earlier deletions do not shift
    # the positions of later ones
    for path in sorted(paths, key=_path_sort_key, reverse=True):
        value = delete_path(value, path)
    return value


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def evaluate(node: Node, value: Any, env: Env) -> Iterator[Any]:
    """Yield every output of ``node`` applied to ``value``."""
    match node:
        case Identity():
            yield value

        case Literal(value=literal):
            yield literal

        case Var(name=name):
            if name not in env:
                raise TransformError(f"${name} is not defined")
            yield env[name]

        case Index(base=base, key=key_node):
            for container in evaluate(base, value, env):
                for key in evaluate(key_node, value, env):
                    yield index_value(container, key)

        case Iterate(base=base):
            for container in evaluate(base, value, env):
                yield from _iterate(container)

        case Optional(base=base):
            try:
                yield from evaluate(base, value, env)
            except TransformError:
                return

        case Pipe(lhs=lhs, rhs=rhs):
            for intermediate in evaluate(lhs, value, env):
                yield from evaluate(rhs, intermediate, env)

        case Comma(lhs=lhs, rhs=rhs):
            yield from evaluate(lhs, value, env)
            yield from evaluate(rhs, value, env)

        case Alternative(lhs=lhs, rhs=rhs):
            found = False
            try:
                for result in evaluate(lhs, value, env):
                    if is_truthy(result):
                        found = True
                        yield result
            except TransformError:
                pass
            if not found:
                yield from evaluate(rhs, value, env)

        case Assign(lhs=lhs, rhs=rhs):
            targets = [path for path, _ in paths(lhs, value, env)]
            for new in evaluate(rhs, value, env):
                result = value
                for path in targets:
                    result = set_path(result, path, new)
                yield result

        case Update(lhs=lhs, rhs=rhs):
            yield _update(lhs, rhs, value, env)

        case BinaryOp(op=op, lhs=lhs, rhs=rhs):
            yield from _binary(op, lhs, rhs, value, env)

        case Negate(operand=operand):
            for result in evaluate(operand, value, env):
                if not isinstance(result, int | float) or isinstance(result, bool):
                    raise TransformError(f"{type_name(result)} cannot be negated")
                yield -result

        case ArrayCons(body=body):
            yield [] if body is None else list(evaluate(body, value, env))

        case ObjectCons(entries=entries):
            yield from _construct_object(entries, value, env)

        case Call(name=name, args=args):
            builtin = BUILTINS.get((name, len(args)))
            if builtin is None:
                raise TransformError(f"{name}/{len(args)} is not defined")
            yield from builtin(args, value, env)

        case _:
            raise TransformError(f"cannot evaluate {type(node).__name__}")


def _iterate(container: Any) -> Iterator[Any]:
    if isinstance(container, list):
        yield from container
    elif isinstance(container, dict):
        yield from container.values()
    else:
        raise TransformError(f"cannot iterate over {type_name(container)}")


def _update(lhs: Node, rhs: Node, value: Any, env: Env) -> Any:
    result = value
    removed: list[Path] = []
    for path, _ in paths(lhs, value, env):
        current = get_path(result, path)
        new = next(evaluate(rhs, current, env), _MISSING)
        if new is _MISSING:
            removed.append(path)
        else:
            result = set_path(result, path, new)
    if removed:
        result = delete_paths(result, removed)
    return result


def _construct_object(
    entries: tuple[tuple[Node, Node], ...], value: Any, env: Env
) -> Iterator[dict[str, Any]]:
    partials: list[dict[str, Any]] = [{}]
    for key_node, value_node in entries:
        expanded: list[dict[str, Any]] = []
        for partial in partials:
            for key in evaluate(key_node, value, env):
                if not isinstance(key, str):
                    raise TransformError(
                        f"object keys must be strings, got {type_name(key)}"
                    )
                for entry in evaluate(value_node, value, env):
                    expanded.append({**partial, key: entry})
        partials = expanded
    yield from partials


def add_values(a: Any, b: Any) -> Any:
    if a is None:
        return b
    if b is None:
        return a
    if _is_number(a) and _is_number(b):
        return a + b
    if isinstance(a, str) and isinstance(b, str):
        return a + b
    if isinstance(a, list) and isinstance(b, list):
        return a + b
    if isinstance(a, dict) and isinstance(b, dict):
        return {**a, **b}
    raise TransformError(
        f"{type_name(a)} and {type_name(b)} cannot be added"
    )


def _subtract(a: Any, b: Any) -> Any:
    if _is_number(a) and _is_number(b):
        return a - b
    if isinstance(a, list) and isinstance(b, list):
        return [x for x in a if not any(values_equal(x, y) for y in b)]
    raise TransformError(
        f"{type_name(a)} and {type_name(b)} cannot be subtracted"
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _compare(op: str, a: Any, b: Any) -> bool:
    if op == "==":
        return values_equal(a, b)
    if op == "!=":
        return not values_equal(a, b)
    if not (
        (_is_number(a) and _is_number(b))
        or (isinstance(a, str) and isinstance(b, str))
    ):
        raise TransformError(
            f"{type_name(a)} and {type_name(b)} cannot be compared"
        )
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _binary(op: str, lhs: Node, rhs: Node, value: Any, env: Env) -> Iterator[Any]:
    if op in ("and", "or"):
        for left in evaluate(lhs, value, env):
            if op == "and" and not is_truthy(left):
                yield False
                continue
            if op == "or" and is_truthy(left):
                yield True
                continue
            for right in evaluate(rhs, value, env):
                yield is_truthy(right)
        return

    for right in evaluate(rhs, value, env):
        for left in evaluate(lhs, value, env):
            if op == "+":
                yield add_values(left, right)
            elif op == "-":
                yield _subtract(left, right)
            else:
                yield _compare(op, left, right)


# ---------------------------------------------------------------------------
# Path expressions
# ---------------------------------------------------------------------------


def paths(node: Node, value: Any, env: Env, prefix: Path = ()) -> Iterator[tuple[Path, Any]]:
    """Yield ``(path, value)`` for every location ``node`` addresses."""
    match node:
        case Identity():
            yield prefix, value

        case Index(base=base, key=key_node):
            for path, container in paths(base, value, env, prefix):
                for key in evaluate(key_node, value, env):
                    yield path + (key,), index_value(container, key)

        case Iterate(base=base):
            for path, container in paths(base, value, env, prefix):
                if isinstance(container, list):
                    for i, item in enumerate(container):
                        yield path + (i,), item
                elif isinstance(container, dict):
                    for key, item in container.items():
                        yield path + (key,), item
                else:
                    raise TransformError(
                        f"cannot iterate over {type_name(container)}"
                    )

        case Optional(base=base):
            try:
                yield from paths(base, value, env, prefix)
            except TransformError:
                return

        case Pipe(lhs=lhs, rhs=rhs):
            for path, intermediate in paths(lhs, value, env, prefix):
                yield from paths(rhs, intermediate, env, path)

        case Comma(lhs=lhs, rhs=rhs):
            yield from paths(lhs, value, env, prefix)
            yield from paths(rhs, value, env, prefix)

        case Alternative(lhs=lhs, rhs=rhs):
            found = False
            try:
                for path, result in paths(lhs, value, env, prefix):
                    if is_truthy(result):
                        found = True
                        yield path, result
            except TransformError:
                pass
            if not found:
                yield from paths(rhs, value, env, prefix)

        case Call(name="select", args=(condition,)):
            for result in evaluate(condition, value, env):
                if is_truthy(result):
                    yield prefix, value

        case Call(name="empty", args=()):
            return

        case _:
            raise TransformError(f"invalid path expression: {type(node).__name__}")


# ---------------------------------------------------------------------------
# Builtins
# ---------------------------------------------------------------------------

Builtin = Callable[[tuple[Node, ...], Any, Env], Iterator[Any]]


def _map(args: tuple[Node, ...], value: Any, env: Env) -> Iterator[Any]:
    (body,) = args
    yield [result for item in _iterate(value) for result in evaluate(body, item, env)]


def _select(args: tuple[Node, ...], value: Any, env: Env) -> Iterator[Any]:
    (condition,) = args
    for result in evaluate(condition, value, env):
        if is_truthy(result):
            yield value


def _del(args: tuple[Node, ...], value: Any, env: Env) -> Iterator[Any]:
    (target,) = args
    yield delete_paths(value, [path for path, _ in paths(target, value, env)])


def _has(args: tuple[Node, ...], value: Any, env: Env) -> Iterator[Any]:
    (key_node,) = args
    for key in evaluate(key_node, value, env):
        if isinstance(value, dict) and isinstance(key, str):
            yield key in value
        elif isinstance(value, list) and _is_number(key):
            yield 0 <= key < len(value)
        else:
            raise TransformError(
                f"cannot check whether {type_name(value)} has a {type_name(key)} key"
            )


def _length(args: tuple[Node, ...], value: Any, env: Env) -> Iterator[Any]:
    if value is None:
        yield 0
    elif isinstance(value, bool):
        raise TransformError("boolean has no length")
    elif _is_number(value):
        yield abs(value)
    elif isinstance(value, str | list | dict):
        yield len(value)
    else:
        raise TransformError(f"{type_name(value)} has no length")


def _keys(args: tuple[Node, ...], value: Any, env: Env) -> Iterator[Any]:
    if isinstance(value, dict):
        yield sorted(value)
    elif isinstance(value, list):
        yield list(range(len(value)))
    else:
        raise TransformError(f"{type_name(value)} has no keys")


def _not(args: tuple[Node, ...], value: Any, env: Env) -> Iterator[Any]:
    yield not is_truthy(value)


def _empty(args: tuple[Node, ...], value: Any, env: Env) -> Iterator[Any]:
    return iter(())


def _type(args: tuple[Node, ...], value: Any, env: Env) -> Iterator[Any]:
    yield type_name(value)


BUILTINS: dict[tuple[str, int], Builtin] = {
    ("map", 1): _map,
    ("select", 1): _select,
    ("del", 1): _del,
    ("has", 1): _has,
    ("length", 0): _length,
    ("keys", 0): _keys,
    ("not", 0): _not,
    ("empty", 0): _empty,
    ("type", 0): _type,
}
