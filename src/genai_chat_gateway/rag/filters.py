"""Portable metadata filter expressions.

Requests may narrow retrieval with a filter string such as::

    source == 'guide.md' && (year >= 2020 || tag in ['faq', 'howto'])

Supported operators are ``==``, ``!=``, ``<``, ``<=``, ``>``, ``>=``, ``in``
and ``nin``, combined with ``&&``/``AND``, ``||``/``OR``, ``NOT``/``!`` and
parentheses. A parsed expression compiles either to a Chroma ``where`` clause
or to a Python predicate over document metadata, depending on the backend.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from genai_chat_gateway.errors import FilterExpressionError

Scalar = Union[str, int, float, bool]

_TOKEN_PATTERN = re.compile(
    r"""
    \s*(?:
        (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<op>==|!=|<=|>=|<|>|&&|\|\||!)
      | (?P<punct>[()\[\],])
      | (?P<word>[A-Za-z_][A-Za-z0-9_.\-]*)
    )
    """,
    re.VERBOSE,
)

_NEGATED = {
    "==": "!=",
    "!=": "==",
    "<": ">=",
    ">=": "<",
    ">": "<=",
    "<=": ">",
    "in": "nin",
    "nin": "in",
}

_CHROMA_OPERATORS = {
    "==": "$eq",
    "!=": "$ne",
    "<": "$lt",
    "<=": "$lte",
    ">": "$gt",
    ">=": "$gte",
    "in": "$in",
    "nin": "$nin",
}


@dataclass(slots=True, frozen=True)
class Comparison:
    key: str
    operator: str
    value: Any


@dataclass(slots=True, frozen=True)
class Group:
    operator: str  # and | or
    operands: tuple[Node, ...]


@dataclass(slots=True, frozen=True)
class Negation:
    operand: Node


Node = Union[Comparison, Group, Negation]


@dataclass(slots=True)
class _Token:
    kind: str
    text: str
    value: Any = None


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    stripped_end = len(expression.rstrip())
    while position < stripped_end:
        match = _TOKEN_PATTERN.match(expression, position)
        if match is None or match.end() == position:
            message = f"Unexpected character {expression[position:position + 1]!r} at offset {position}"
            raise FilterExpressionError(message)
        position = match.end()
        kind = match.lastgroup or ""
        text = match.group(kind)
        if kind == "string":
            tokens.append(_Token("value", text, _unquote(text)))
        elif kind == "number":
            number: int | float = float(text) if "." in text else int(text)
            tokens.append(_Token("value", text, number))
        elif kind == "word":
            lowered = text.lower()
            if lowered in {"and", "or", "not", "in", "nin"}:
                tokens.append(_Token("keyword", lowered))
            elif lowered in {"true", "false"}:
                tokens.append(_Token("value", text, lowered == "true"))
            else:
                tokens.append(_Token("identifier", text))
        else:
            tokens.append(_Token(kind, text))
    return tokens


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


class _Parser:
    def __init__(self, tokens: list[_Token]) -> None:
        self._tokens = tokens
        self._index = 0

    def parse(self) -> Node:
        node = self._parse_or()
        if self._index != len(self._tokens):
            message = f"Unexpected token {self._tokens[self._index].text!r}"
            raise FilterExpressionError(message)
        return node

    def _peek(self) -> _Token | None:
        return self._tokens[self._index] if self._index < len(self._tokens) else None

    def _advance(self) -> _Token:
        token = self._peek()
        if token is None:
            message = "Unexpected end of filter expression"
            raise FilterExpressionError(message)
        self._index += 1
        return token

    def _accept(self, *texts: str) -> bool:
        token = self._peek()
        if token is not None and token.kind in {"op", "punct", "keyword"} and token.text in texts:
            self._index += 1
            return True
        return False

    def _expect(self, text: str) -> None:
        token = self._advance()
        if token.kind != "punct" or token.text != text:
            message = f"Expected {text!r} but found {token.text!r}"
            raise FilterExpressionError(message)

    def _parse_or(self) -> Node:
        operands = [self._parse_and()]
        while self._accept("||", "or"):
            operands.append(self._parse_and())
        return operands[0] if len(operands) == 1 else Group("or", tuple(operands))

    def _parse_and(self) -> Node:
        operands = [self._parse_not()]
        while self._accept("&&", "and"):
            operands.append(self._parse_not())
        return operands[0] if len(operands) == 1 else Group("and", tuple(operands))

    def _parse_not(self) -> Node:
        if self._accept("!", "not"):
            return Negation(self._parse_not())
        return self._parse_primary()

    def _parse_primary(self) -> Node:
        if self._accept("("):
            node = self._parse_or()
            self._expect(")")
            return node
        token = self._advance()
        if token.kind != "identifier":
            message = f"Expected a metadata key but found {token.text!r}"
            raise FilterExpressionError(message)
        operator_token = self._advance()
        if operator_token.kind == "op" and operator_token.text in _CHROMA_OPERATORS:
            return Comparison(token.text, operator_token.text, self._parse_value())
        if operator_token.kind == "keyword" and operator_token.text in {"in", "nin"}:
            return Comparison(token.text, operator_token.text, self._parse_list())
        if operator_token.kind == "keyword" and operator_token.text == "not" and self._accept("in"):
            return Comparison(token.text, "nin", self._parse_list())
        message = f"Unsupported operator {operator_token.text!r} after {token.text!r}"
        raise FilterExpressionError(message)

    def _parse_value(self) -> Scalar:
        token = self._advance()
        if token.kind != "value":
            message = f"Expected a literal value but found {token.text!r}"
            raise FilterExpressionError(message)
        return token.value  # type: ignore[no-any-return]

    def _parse_list(self) -> list[Scalar]:
        self._expect("[")
        values = [self._parse_value()]
        while self._accept(","):
            values.append(self._parse_value())
        self._expect("]")
        return values


def parse_filter_expression(expression: str) -> Node:
    """Parse ``expression`` into an expression tree.

    Raises:
        FilterExpressionError: if the expression is blank or malformed.
    """
    if not expression or not expression.strip():
        message = "Filter expression is empty"
        raise FilterExpressionError(message)
    return _Parser(_tokenize(expression)).parse()


def _push_negation(node: Node, negate: bool = False) -> Node:
    if isinstance(node, Negation):
        return _push_negation(node.operand, not negate)
    if isinstance(node, Comparison):
        if not negate:
            return node
        return Comparison(node.key, _NEGATED[node.operator], node.value)
    operator = node.operator
    if negate:
        operator = "or" if operator == "and" else "and"
    operands = tuple(_push_negation(operand, negate) for operand in node.operands)
    return Group(operator, operands)


def to_chroma_where(node: Node) -> dict[str, Any]:
    """Compile an expression tree into a Chroma ``where`` clause."""
    node = _push_negation(node)
    if isinstance(node, Comparison):
        return {node.key: {_CHROMA_OPERATORS[node.operator]: node.value}}
    if isinstance(node, Group):
        clauses: list[dict[str, Any]] = []
        key = f"${node.operator}"
        for operand in node.operands:
            clause = to_chroma_where(operand)
            # Chroma rejects $and/$or nested directly inside the same operator
            if key in clause and len(clause) == 1:
                clauses.extend(clause[key])
            else:
                clauses.append(clause)
        return {key: clauses}
    message = f"Unsupported filter node: {node!r}"
    raise FilterExpressionError(message)


def _compare(actual: Any, operator: str, expected: Any) -> bool:
    if operator == "==":
        return bool(actual == expected)
    if operator == "!=":
        return bool(actual != expected)
    if operator == "in":
        return actual in expected
    if operator == "nin":
        return actual not in expected
    if actual is None:
        return False
    try:
        if operator == "<":
            return bool(actual < expected)
        if operator == "<=":
            return bool(actual <= expected)
        if operator == ">":
            return bool(actual > expected)
        if operator == ">=":
            return bool(actual >= expected)
    except TypeError:
        return False
    message = f"Unsupported operator {operator!r}"
    raise FilterExpressionError(message)


def to_predicate(node: Node) -> Callable[[Mapping[str, Any]], bool]:
    """Compile an expression tree into a predicate over a metadata mapping.

    Negations are pushed down to the comparisons first, as for Chroma, so a
    document without the compared key never matches a negated ordering.
    """
    node = _push_negation(node)

    def evaluate(current: Node, metadata: Mapping[str, Any]) -> bool:
        if isinstance(current, Comparison):
            return _compare(metadata.get(current.key), current.operator, current.value)
        if current.operator == "and":
            return all(evaluate(operand, metadata) for operand in current.operands)
        return any(evaluate(operand, metadata) for operand in current.operands)

    def predicate(metadata: Mapping[str, Any]) -> bool:
        return evaluate(node, metadata)

    return predicate


__all__ = [
    "Comparison",
    "Group",
    "Negation",
    "Node",
    "parse_filter_expression",
    "to_chroma_where",
    "to_predicate",
]
