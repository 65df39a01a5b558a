"""
Update-expression algebra.

Update expressions are clause structured::

    SET #a = :a, b = b + :one REMOVE c ADD d :two DELETE e :three

This module splits such expressions into clauses, merges clauses coming from
several expressions and writes them back, so kvtx can add its own clauses
(version bump, transaction markers) to whatever the caller supplied.

Parsing is token based: an attribute literally named like a clause keyword
must be referenced through a ``#name`` placeholder.
"""
from typing import Any, Mapping, NamedTuple

UPDATE_EXPRESSION_CLAUSES = ('SET', 'ADD', 'REMOVE', 'DELETE')
"""Recognised clause keywords, in canonical output order."""

CLAUSE_SEPARATOR = ', '


class ExpressionAttributes(NamedTuple):
    """Placeholder maps for an expression."""

    names: dict[str, str]
    """``#placeholder -> attribute name``"""

    values: dict[str, Any]
    """``:placeholder -> value``"""


def parse_update_expression(update_expression: str) -> dict[str, str]:
    """
    Split an update expression into its clauses.

    Keywords are matched case-insensitively and returned in upper case.
    Tokens before the first keyword are dropped. A keyword occurring twice
    has its fragments joined with ``", "``.

    :param update_expression: Expression string (may be empty)
    :returns: Mapping of keyword to clause body
    """
    clauses: dict[str, list[str]] = {}
    current: list[str] | None = None

    for token in update_expression.split():
        keyword = token.upper()
        if keyword in UPDATE_EXPRESSION_CLAUSES:
            current = []
            clauses.setdefault(keyword, []).append(current)
            continue
        if current is None:
            continue
        current.append(token)

    parsed: dict[str, str] = {}
    for keyword, fragments in clauses.items():
        body = CLAUSE_SEPARATOR.join(' '.join(tokens) for tokens in fragments if tokens)
        if body:
            parsed[keyword] = body
    return parsed


def stringify_update_expression(parsed_update_expression: Mapping[str, str]) -> str:
    """
    Serialize parsed clauses back into an expression.

    Output order is always SET, ADD, REMOVE, DELETE regardless of the
    mapping's insertion order; empty clauses are omitted.
    """
    parts = []
    for keyword in UPDATE_EXPRESSION_CLAUSES:
        body = (parsed_update_expression.get(keyword) or '').strip()
        if body:
            parts.append(f"{keyword} {body}")
    return ' '.join(parts)


def compose_update_expressions(*update_expressions: str) -> str:
    """
    Merge several update expressions into one.

    Fragments of the same clause are joined with ``", "``. Fragments from a
    later argument come before those of an earlier one::

        >>> compose_update_expressions("SET a = :a", "SET b = :b")
        'SET b = :b, a = :a'
    """
    composed: dict[str, str] = {}
    for update_expression in update_expressions:
        for keyword, body in parse_update_expression(update_expression or '').items():
            previous = composed.get(keyword)
            composed[keyword] = body + (CLAUSE_SEPARATOR + previous if previous else '')
    return stringify_update_expression(composed)


def define_expression_attributes(attributes: Mapping[str, Any]) -> ExpressionAttributes:
    """
    Build placeholder maps for plain attribute assignments.

    ``{"foo": 1}`` yields names ``{"#foo": "foo"}`` and values ``{":foo": 1}``.
    """
    names = {f"#{key}": key for key in attributes}
    values = {f":{key}": value for key, value in attributes.items()}
    return ExpressionAttributes(names=names, values=values)


def merge_expression_attributes(*attributes: ExpressionAttributes) -> ExpressionAttributes:
    """Merge placeholder maps; later maps win on identical placeholders."""
    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    for item in attributes:
        names.update(item.names)
        values.update(item.values)
    return ExpressionAttributes(names=names, values=values)
