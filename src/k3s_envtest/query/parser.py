"""
Tokenizer and parser for tree query expressions.

The grammar is a small subset of jq, enough to address, rewrite and delete
fields of Kubernetes manifests held as plain dicts:

    .spec.replicas = 3
    .webhooks |= map(.clientConfig.url = $1 + (.clientConfig.service.path // "/"))
    del(.metadata.annotations?)
    [.webhooks[].clientConfig.url]

Operator precedence, lowest first: ``|``, ``,``, ``//``, ``=`` and ``|=``,
``or``, ``and``, comparisons, ``+`` and ``-``, postfix suffixes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from k3s_envtest.errors import TransformError


@dataclass(frozen=True)
class Token:
    kind: str
    value: Any
    pos: int


# Nodes of the expression tree. All nodes are immutable so a parsed
# expression can be cached and shared.


@dataclass(frozen=True)
class Node:
    pass


@dataclass(frozen=True)
class Identity(Node):
    pass


@dataclass(frozen=True)
class Literal(Node):
    value: Any


@dataclass(frozen=True)
class Var(Node):
    name: str


@dataclass(frozen=True)
class Index(Node):
    base: Node
    key: Node


@dataclass(frozen=True)
class Iterate(Node):
    base: Node


@dataclass(frozen=True)
class Optional(Node):
    base: Node


@dataclass(frozen=True)
class Pipe(Node):
    lhs: Node
    rhs: Node


@dataclass(frozen=True)
class Comma(Node):
    lhs: Node
    rhs: Node


@dataclass(frozen=True)
class Alternative(Node):
    lhs: Node
    rhs: Node


@dataclass(frozen=True)
class Assign(Node):
    lhs: Node
    rhs: Node


@dataclass(frozen=True)
class Update(Node):
    lhs: Node
    rhs: Node


@dataclass(frozen=True)
class BinaryOp(Node):
    op: str
    lhs: Node
    rhs: Node


@dataclass(frozen=True)
class Negate(Node):
    operand: Node


@dataclass(frozen=True)
class ArrayCons(Node):
    body: Node | None


@dataclass(frozen=True)
class ObjectCons(Node):
    entries: tuple[tuple[Node, Node], ...]


@dataclass(frozen=True)
class Call(Node):
    name: str
    args: tuple[Node, ...]


KEYWORDS = {"and", "or", "true", "false", "null"}

# Longest operators first so "|=" wins over "|"
OPERATORS = (
    "|=",
    "//",
    "==",
    "!=",
    "<=",
    ">=",
    "|",
    ",",
    "=",
    "+",
    "-",
    "<",
    ">",
    "(",
    ")",
    "[",
    "]",
    "{",
    "}",
    ":",
    ";",
    "?",
)


def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch == "_"


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def tokenize(text: str) -> list[Token]:
    """Split an expression into tokens, ending with an ``eof`` token."""
    tokens: list[Token] = []
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if ch.isspace():
            i += 1
            continue

        if ch == "#":
            # Comment until end of line
            while i < n and text[i] != "\n":
                i += 1
            continue

        if ch == '"':
            start = i
            i += 1
            while i < n and text[i] != '"':
                i += 2 if text[i] == "\\" else 1
            if i >= n:
                raise TransformError(
                    f"unterminated string starting at position {start}", text
                )
            i += 1
            try:
                value = json.loads(text[start:i])
            except json.JSONDecodeError as e:
                raise TransformError(
                    f"invalid string literal at position {start}: {e.msg}", text
                ) from e
            tokens.append(Token("string", value, start))
            continue

        if ch.isdigit():
            start = i
            while i < n and (text[i].isdigit() or text[i] in ".eE"):
                if text[i] in "eE" and i + 1 < n and text[i + 1] in "+-":
                    i += 1
                i += 1
            raw = text[start:i]
            try:
                value = float(raw) if any(c in raw for c in ".eE") else int(raw)
            except ValueError as e:
                raise TransformError(
                    f"invalid number {raw!r} at position {start}", text
                ) from e
            tokens.append(Token("number", value, start))
            continue

        if ch == ".":
            if i + 1 < n and _is_ident_start(text[i + 1]):
                start = i
                i += 1
                while i < n and _is_ident_char(text[i]):
                    i += 1
                tokens.append(Token("field", text[start + 1 : i], start))
                continue
            tokens.append(Token("dot", ".", i))
            i += 1
            continue

        if ch == "$":
            start = i
            i += 1
            while i < n and _is_ident_char(text[i]):
                i += 1
            if i == start + 1:
                raise TransformError(
                    f"expected variable name at position {start}", text
                )
            tokens.append(Token("var", text[start + 1 : i], start))
            continue

        if _is_ident_start(ch):
            start = i
            while i < n and _is_ident_char(text[i]):
                i += 1
            word = text[start:i]
            kind = "keyword" if word in KEYWORDS else "ident"
            tokens.append(Token(kind, word, start))
            continue

        for op in OPERATORS:
            if text.startswith(op, i):
                tokens.append(Token("op", op, i))
                i += len(op)
                break
        else:
            raise TransformError(f"unexpected character {ch!r} at position {i}", text)

    tokens.append(Token("eof", None, n))
    return tokens


class Parser:
    """Recursive-descent parser producing an immutable expression tree."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def _peek(self, offset: int = 1) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def _advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _at_op(self, *ops: str) -> bool:
        return self.current.kind == "op" and self.current.value in ops

    def _at_keyword(self, word: str) -> bool:
        return self.current.kind == "keyword" and self.current.value == word

    def _expect_op(self, op: str) -> Token:
        if not self._at_op(op):
            self._fail(f"expected {op!r}")
        return self._advance()

    def _fail(self, message: str) -> None:
        token = self.current
        found = "end of expression" if token.kind == "eof" else repr(token.value)
        raise TransformError(
            f"{message}, found {found} at position {token.pos}", self.text
        )

    def parse(self) -> Node:
        node = self.parse_pipe()
        if self.current.kind != "eof":
            self._fail("unexpected token")
        return node

    def parse_pipe(self) -> Node:
        lhs = self.parse_comma()
        if self._at_op("|"):
            self._advance()
            return Pipe(lhs, self.parse_pipe())
        return lhs

    def parse_comma(self) -> Node:
        node = self.parse_alternative()
        while self._at_op(","):
            self._advance()
            node = Comma(node, self.parse_alternative())
        return node

    def parse_alternative(self) -> Node:
        lhs = self.parse_assignment()
        if self._at_op("//"):
            self._advance()
            return Alternative(lhs, self.parse_alternative())
        return lhs

    def parse_assignment(self) -> Node:
        lhs = self.parse_or()
        if self._at_op("="):
            self._advance()
            return Assign(lhs, self.parse_or())
        if self._at_op("|="):
            self._advance()
            return Update(lhs, self.parse_or())
        return lhs

    def parse_or(self) -> Node:
        node = self.parse_and()
        while self._at_keyword("or"):
            self._advance()
            node = BinaryOp("or", node, self.parse_and())
        return node

    def parse_and(self) -> Node:
        node = self.parse_comparison()
        while self._at_keyword("and"):
            self._advance()
            node = BinaryOp("and", node, self.parse_comparison())
        return node

    def parse_comparison(self) -> Node:
        lhs = self.parse_additive()
        if self._at_op("==", "!=", "<", "<=", ">", ">="):
            op = self._advance().value
            return BinaryOp(op, lhs, self.parse_additive())
        return lhs

    def parse_additive(self) -> Node:
        node = self.parse_postfix()
        while self._at_op("+", "-"):
            op = self._advance().value
            node = BinaryOp(op, node, self.parse_postfix())
        return node

    def parse_postfix(self) -> Node:
        node = self.parse_primary()
        while True:
            token = self.current
            if token.kind == "field":
                self._advance()
                node = Index(node, Literal(token.value))
            elif token.kind == "dot" and self._peek().kind == "string":
                self._advance()
                node = Index(node, Literal(self._advance().value))
            elif token.kind == "dot" and self._peek().kind == "op" and self._peek().value == "[":
                self._advance()
            elif self._at_op("["):
                self._advance()
                if self._at_op("]"):
                    self._advance()
                    node = Iterate(node)
                else:
                    key = self.parse_pipe()
                    self._expect_op("]")
                    node = Index(node, key)
            elif self._at_op("?"):
                self._advance()
                node = Optional(node)
            else:
                return node

    def parse_primary(self) -> Node:
        token = self.current

        if token.kind == "field":
            self._advance()
            return Index(Identity(), Literal(token.value))

        if token.kind == "dot":
            self._advance()
            if self.current.kind == "string":
                return Index(Identity(), Literal(self._advance().value))
            return Identity()

        if token.kind in ("number", "string"):
            self._advance()
            return Literal(token.value)

        if token.kind == "keyword" and token.value in ("true", "false", "null"):
            self._advance()
            return Literal({"true": True, "false": False, "null": None}[token.value])

        if token.kind == "var":
            self._advance()
            return Var(token.value)

        if self._at_op("-"):
            self._advance()
            operand = self.parse_postfix()
            if isinstance(operand, Literal) and isinstance(operand.value, int | float):
                return Literal(-operand.value)
            return Negate(operand)

        if self._at_op("("):
            self._advance()
            node = self.parse_pipe()
            self._expect_op(")")
            return node

        if self._at_op("["):
            self._advance()
            if self._at_op("]"):
                self._advance()
                return ArrayCons(None)
            body = self.parse_pipe()
            self._expect_op("]")
            return ArrayCons(body)

        if self._at_op("{"):
            return self._parse_object()

        if token.kind == "ident":
            return self._parse_call()

        self._fail("expected an expression")
        raise AssertionError("unreachable")

    def _parse_object(self) -> Node:
        self._expect_op("{")
        entries: list[tuple[Node, Node]] = []
        while not self._at_op("}"):
            token = self.current
            if token.kind in ("ident", "keyword", "string"):
                self._advance()
                key: Node = Literal(token.value)
                shorthand: Node = Index(Identity(), Literal(token.value))
            elif token.kind == "var":
                self._advance()
                key = Literal(token.value)
                shorthand = Var(token.value)
            elif self._at_op("("):
                self._advance()
                key = self.parse_pipe()
                self._expect_op(")")
                shorthand = None  # type: ignore[assignment]
            else:
                self._fail("expected object key")
                raise AssertionError("unreachable")

            if self._at_op(":"):
                self._advance()
                value = self.parse_alternative()
            elif shorthand is not None:
                value = shorthand
            else:
                self._fail("expected ':' after computed object key")
                raise AssertionError("unreachable")

            entries.append((key, value))
            if not self._at_op(","):
                break
            self._advance()
        self._expect_op("}")
        return ObjectCons(tuple(entries))

    def _parse_call(self) -> Node:
        name = self._advance().value
        args: list[Node] = []
        if self._at_op("("):
            self._advance()
            args.append(self.parse_pipe())
            while self._at_op(";"):
                self._advance()
                args.append(self.parse_pipe())
            self._expect_op(")")
        return Call(name, tuple(args))


@lru_cache(maxsize=256)
def parse(text: str) -> Node:
    """Parse an expression, caching the immutable result."""
    return Parser(text).parse()
