"""Metadata filter expressions.

A small textual language for restricting vector search and deletion to
chunks whose metadata matches, for example::

    versionId == 'abc' AND (chunkIndex < 3 OR documentPath IN ['a.md', 'b.md'])
    NOT documentTitle IS NULL

Expressions parse into a tree of ``Expression`` nodes that can be evaluated
against a metadata dict or rendered as a PostgreSQL jsonpath predicate.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..errors import FilterExpressionError

COMPARISON_OPERATORS = ("==", "!=", ">=", "<=", ">", "<")

KEYWORDS = {"AND", "OR", "NOT", "IN", "IS", "NULL", "TRUE", "FALSE"}

_TOKEN_RE = re.compile(r"""
    (?P<ws>\s+)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<number>-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)
  | (?P<op>==|!=|>=|<=|&&|\|\||[><!()\[\],])
  | (?P<word>[A-Za-z_][A-Za-z0-9_.\-]*)
""", re.VERBOSE)


class Expression:
    """Base class for filter tree nodes."""

    def evaluate(self, metadata: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def to_jsonpath(self) -> str:
        raise NotImplementedError


_MISSING = object()


def _lookup(metadata: Dict[str, Any], key: str) -> Any:
    return metadata.get(key, _MISSING) if metadata else _MISSING


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _path(key: str) -> str:
    # Quoted so dots and dashes stay part of one flat key
    return f"$.{_format_value(key)}"


@dataclass(frozen=True)
class Comparison(Expression):
    key: str
    operator: str
    value: Any

    def evaluate(self, metadata: Dict[str, Any]) -> bool:
        actual = _lookup(metadata, self.key)
        if actual is _MISSING or actual is None:
            return False
        if self.operator == "==":
            return actual == self.value
        if self.operator == "!=":
            return actual != self.value
        try:
            if self.operator == ">":
                return actual > self.value
            if self.operator == ">=":
                return actual >= self.value
            if self.operator == "<":
                return actual < self.value
            if self.operator == "<=":
                return actual <= self.value
        except TypeError:
            # Mismatched types never match, as in jsonpath
            return False
        raise FilterExpressionError(f"Unknown operator: {self.operator}")

    def to_jsonpath(self) -> str:
        return f"{_path(self.key)} {self.operator} {_format_value(self.value)}"


@dataclass(frozen=True)
class InList(Expression):
    key: str
    values: Tuple[Any, ...]
    negated: bool = False

    def evaluate(self, metadata: Dict[str, Any]) -> bool:
        actual = _lookup(metadata, self.key)
        found = actual is not _MISSING and actual in self.values
        return not found if self.negated else found

    def to_jsonpath(self) -> str:
        if self.values:
            conditions = " || ".join(f"{_path(self.key)} == {_format_value(v)}" for v in self.values)
        else:
            conditions = "false"
        rendered = f"({conditions})"
        return f"!({rendered})" if self.negated else rendered


@dataclass(frozen=True)
class IsNull(Expression):
    key: str
    negated: bool = False

    def evaluate(self, metadata: Dict[str, Any]) -> bool:
        is_null = _lookup(metadata, self.key) in (_MISSING, None)
        return not is_null if self.negated else is_null

    def to_jsonpath(self) -> str:
        exists = f"exists({_path(self.key)})"
        return exists if self.negated else f"!({exists})"


@dataclass(frozen=True)
class And(Expression):
    left: Expression
    right: Expression

    def evaluate(self, metadata: Dict[str, Any]) -> bool:
        return self.left.evaluate(metadata) and self.right.evaluate(metadata)

    def to_jsonpath(self) -> str:
        return f"{_group(self.left, Or)} && {_group(self.right, Or)}"


@dataclass(frozen=True)
class Or(Expression):
    left: Expression
    right: Expression

    def evaluate(self, metadata: Dict[str, Any]) -> bool:
        return self.left.evaluate(metadata) or self.right.evaluate(metadata)

    def to_jsonpath(self) -> str:
        return f"{self.left.to_jsonpath()} || {self.right.to_jsonpath()}"


@dataclass(frozen=True)
class Not(Expression):
    operand: Expression

    def evaluate(self, metadata: Dict[str, Any]) -> bool:
        return not self.operand.evaluate(metadata)

    def to_jsonpath(self) -> str:
        return f"!({self.operand.to_jsonpath()})"


def _group(node: Expression, weaker: type) -> str:
    rendered = node.to_jsonpath()
    return f"({rendered})" if isinstance(node, weaker) else rendered


def eq(key: str, value: Any) -> Comparison:
    """Shorthand for ``key == value``."""
    return Comparison(key, "==", value)


def to_jsonpath(expression: Optional[Expression]) -> str:
    """Render ``expression`` as a jsonpath predicate; None renders empty."""
    if expression is None:
        return ""
    return expression.to_jsonpath()


def tokenize(text: str) -> List[Tuple[str, Any, int]]:
    """Split a filter into ``(kind, value, position)`` tokens."""
    tokens = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise FilterExpressionError(f"Unexpected character {text[pos]!r}", text, pos)
        kind = match.lastgroup
        raw = match.group(kind)
        if kind == "string":
            tokens.append(("value", _unquote(raw), pos))
        elif kind == "number":
            tokens.append(("value", float(raw) if any(c in raw for c in ".eE") else int(raw), pos))
        elif kind == "op":
            tokens.append(("op", raw, pos))
        elif kind == "word":
            upper = raw.upper()
            if upper in ("TRUE", "FALSE"):
                tokens.append(("value", upper == "TRUE", pos))
            elif upper in KEYWORDS:
                tokens.append(("keyword", upper, pos))
            else:
                tokens.append(("ident", raw, pos))
        pos = match.end()
    return tokens


def _unquote(raw: str) -> str:
    return re.sub(r"\\(.)", r"\1", raw[1:-1])


class _Parser:
    """Recursive-descent parser; precedence NOT > AND > OR."""

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0

    def parse(self) -> Expression:
        if not self.tokens:
            raise FilterExpressionError("Empty filter expression", self.text, 0)
        node = self._or()
        if self.index < len(self.tokens):
            _, value, pos = self.tokens[self.index]
            raise FilterExpressionError(f"Unexpected token {value!r}", self.text, pos)
        return node

    def _peek(self) -> Optional[Tuple[str, Any, int]]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _accept(self, *values: str) -> bool:
        token = self._peek()
        if token is not None and token[0] in ("op", "keyword") and token[1] in values:
            self.index += 1
            return True
        return False

    def _expect(self, value: str) -> None:
        if not self._accept(value):
            self._fail(f"Expected {value!r}")

    def _fail(self, message: str) -> None:
        token = self._peek()
        position = token[2] if token is not None else len(self.text)
        found = f"{token[1]!r}" if token is not None else "end of input"
        raise FilterExpressionError(f"{message}, found {found}", self.text, position)

    def _or(self) -> Expression:
        node = self._and()
        while self._accept("OR", "||"):
            node = Or(node, self._and())
        return node

    def _and(self) -> Expression:
        node = self._unary()
        while self._accept("AND", "&&"):
            node = And(node, self._unary())
        return node

    def _unary(self) -> Expression:
        if self._accept("NOT", "!"):
            return Not(self._unary())
        if self._accept("("):
            node = self._or()
            self._expect(")")
            return node
        return self._comparison()

    def _comparison(self) -> Expression:
        token = self._peek()
        if token is None or token[0] != "ident":
            self._fail("Expected a metadata key")
        key = token[1]
        self.index += 1

        if self._accept("IS"):
            negated = self._accept("NOT")
            self._expect("NULL")
            return IsNull(key, negated)
        if self._accept("IN"):
            return InList(key, self._list())
        if self._accept("NOT"):
            self._expect("IN")
            return InList(key, self._list(), negated=True)

        op = self._peek()
        if op is None or op[0] != "op" or op[1] not in COMPARISON_OPERATORS:
            self._fail(f"Expected a comparison after {key!r}")
        self.index += 1
        return Comparison(key, op[1], self._value())

    def _list(self) -> Tuple[Any, ...]:
        self._expect("[")
        values = []
        if not self._accept("]"):
            values.append(self._value())
            while self._accept(","):
                values.append(self._value())
            self._expect("]")
        return tuple(values)

    def _value(self) -> Any:
        token = self._peek()
        if token is None or token[0] != "value":
            self._fail("Expected a literal value")
        self.index += 1
        return token[1]


def parse_filter(text: str) -> Expression:
    """Parse a textual filter.

    Raises:
        FilterExpressionError: If the text is not a valid filter
    """
    if text is None or not text.strip():
        raise FilterExpressionError("Empty filter expression", text, 0)
    return _Parser(text).parse()
