"""
Condition and update expression evaluation against plain item dicts.

Used by the reference storage adapters to give conditional writes the same
semantics a document store applies server side. Only top-level attribute
paths are supported.

Condition grammar::

    condition  := or_expr
    or_expr    := and_expr ("OR" and_expr)*
    and_expr   := not_expr ("AND" not_expr)*
    not_expr   := "NOT" not_expr | primary
    primary    := "(" condition ")"
                | function
                | operand comparator operand
                | operand "BETWEEN" operand "AND" operand
                | operand "IN" "(" operand ("," operand)* ")"
    function   := attribute_exists(path) | attribute_not_exists(path)
                | begins_with(path, operand) | contains(path, operand)
    operand    := path | :value | size(path)

Update clauses (split by :func:`kvtx.expression.parse_update_expression`)::

    SET    path = value ["+" | "-" value], ...
    REMOVE path, ...
    ADD    path :value, ...
    DELETE path :value, ...
    value  := path | :value | if_not_exists(path, value) | list_append(value, value)
"""
import copy
import re
from typing import Any, Mapping

from kvtx._exceptions import ExpressionError
from kvtx.expression import parse_update_expression

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<name>\#[A-Za-z0-9_]+)
      | (?P<value>:[A-Za-z0-9_]+)
      | (?P<op><>|<=|>=|=|<|>|\+|-|\(|\)|,)
      | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    )
    """,
    re.VERBOSE,
)

_MISSING = object()
"""Marker for an attribute absent from the item."""

_COMPARATORS = ('=', '<>', '<', '<=', '>', '>=')


def _tokenize(expression: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    position = 0
    expression = expression.rstrip()
    while position < len(expression):
        match = _TOKEN_RE.match(expression, position)
        if match is None or match.end() == position:
            raise ExpressionError(f"Invalid token at position {position} in expression: {expression!r}")
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        position = match.end()
    return tokens


class _Parser:
    """Recursive descent parser evaluating directly against one item."""

    def __init__(
            self,
            expression: str,
            item: Mapping[str, Any],
            names: Mapping[str, str] | None,
            values: Mapping[str, Any] | None,
    ):
        self.expression = expression
        self.item = item
        self.names = names or {}
        self.values = values or {}
        self.tokens = _tokenize(expression)
        self.pos = 0

    # ---- token helpers ----
    def peek(self, offset: int = 0) -> tuple[str, str] | None:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def advance(self) -> tuple[str, str]:
        token = self.peek()
        if token is None:
            raise ExpressionError(f"Unexpected end of expression: {self.expression!r}")
        self.pos += 1
        return token

    def at(self, text: str) -> bool:
        token = self.peek()
        return token is not None and token[1] == text

    def at_keyword(self, word: str) -> bool:
        token = self.peek()
        return token is not None and token[0] == 'ident' and token[1].upper() == word

    def expect(self, text: str) -> None:
        token = self.advance()
        if token[1] != text:
            raise ExpressionError(f"Expected '{text}' but found '{token[1]}' in expression: {self.expression!r}")

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def ensure_end(self) -> None:
        if not self.at_end():
            raise ExpressionError(f"Unexpected token '{self.peek()[1]}' in expression: {self.expression!r}")

    # ---- operands ----
    def path(self) -> str:
        kind, text = self.advance()
        if kind == 'name':
            if text not in self.names:
                raise ExpressionError(f"Undefined attribute name placeholder: {text}")
            return self.names[text]
        if kind == 'ident':
            return text
        raise ExpressionError(f"Expected an attribute path but found '{text}' in expression: {self.expression!r}")

    def placeholder_value(self) -> Any:
        kind, text = self.advance()
        if kind != 'value':
            raise ExpressionError(f"Expected a value placeholder but found '{text}' in expression: {self.expression!r}")
        if text not in self.values:
            raise ExpressionError(f"Undefined attribute value placeholder: {text}")
        return copy.deepcopy(self.values[text])

    def attribute(self, path: str) -> Any:
        return self.item.get(path, _MISSING)

    def operand(self) -> Any:
        token = self.peek()
        if token is None:
            raise ExpressionError(f"Unexpected end of expression: {self.expression!r}")
        kind, text = token
        if kind == 'value':
            return self.placeholder_value()
        if kind == 'ident' and text.lower() == 'size' and self.peek(1) == ('op', '('):
            self.advance()
            self.expect('(')
            value = self.attribute(self.path())
            self.expect(')')
            if value is _MISSING:
                return _MISSING
            try:
                return len(value)
            except TypeError:
                return _MISSING
        return self.attribute(self.path())

    # ---- conditions ----
    def condition(self) -> bool:
        result = self.and_expr()
        while self.at_keyword('OR'):
            self.advance()
            right = self.and_expr()
            result = result or right
        return result

    def and_expr(self) -> bool:
        result = self.not_expr()
        while self.at_keyword('AND'):
            self.advance()
            right = self.not_expr()
            result = result and right
        return result

    def not_expr(self) -> bool:
        if self.at_keyword('NOT'):
            self.advance()
            return not self.not_expr()
        return self.primary()

    def primary(self) -> bool:
        if self.at('('):
            self.advance()
            result = self.condition()
            self.expect(')')
            return result

        token = self.peek()
        if token is not None and token[0] == 'ident' and self.peek(1) == ('op', '('):
            function = token[1].lower()
            if function in ('attribute_exists', 'attribute_not_exists', 'begins_with', 'contains'):
                return self.function(function)

        left = self.operand()
        if self.at_keyword('BETWEEN'):
            self.advance()
            low = self.operand()
            if not self.at_keyword('AND'):
                raise ExpressionError(f"BETWEEN requires AND in expression: {self.expression!r}")
            self.advance()
            high = self.operand()
            return _compare(left, '>=', low) and _compare(left, '<=', high)
        if self.at_keyword('IN'):
            self.advance()
            self.expect('(')
            candidates = [self.operand()]
            while self.at(','):
                self.advance()
                candidates.append(self.operand())
            self.expect(')')
            return left is not _MISSING and any(_compare(left, '=', c) for c in candidates)

        kind, text = self.advance()
        if kind != 'op' or text not in _COMPARATORS:
            raise ExpressionError(f"Expected a comparator but found '{text}' in expression: {self.expression!r}")
        right = self.operand()
        return _compare(left, text, right)

    def function(self, function: str) -> bool:
        self.advance()
        self.expect('(')
        value = self.attribute(self.path())
        argument = _MISSING
        if function in ('begins_with', 'contains'):
            self.expect(',')
            argument = self.operand()
        self.expect(')')

        if function == 'attribute_exists':
            return value is not _MISSING
        if function == 'attribute_not_exists':
            return value is _MISSING
        if value is _MISSING or argument is _MISSING:
            return False
        if function == 'begins_with':
            return isinstance(value, str) and isinstance(argument, str) and value.startswith(argument)
        if isinstance(value, str):
            return isinstance(argument, str) and argument in value
        if isinstance(value, (list, set, frozenset)):
            return argument in value
        return False

    # ---- update values ----
    def update_value(self) -> Any:
        left = self.update_operand()
        if self.at('+') or self.at('-'):
            operator = self.advance()[1]
            right = self.update_operand()
            if not _is_number(left) or not _is_number(right):
                raise ExpressionError(f"Arithmetic requires numeric operands in expression: {self.expression!r}")
            return left + right if operator == '+' else left - right
        return left

    def update_operand(self) -> Any:
        token = self.peek()
        if token is not None and token[0] == 'ident' and self.peek(1) == ('op', '('):
            function = token[1].lower()
            if function == 'if_not_exists':
                self.advance()
                self.expect('(')
                current = self.attribute(self.path())
                self.expect(',')
                fallback = self.update_operand()
                self.expect(')')
                return fallback if current is _MISSING else copy.deepcopy(current)
            if function == 'list_append':
                self.advance()
                self.expect('(')
                first = self.update_operand()
                self.expect(',')
                second = self.update_operand()
                self.expect(')')
                if not isinstance(first, list) or not isinstance(second, list):
                    raise ExpressionError(f"list_append requires list operands in expression: {self.expression!r}")
                return first + second
            raise ExpressionError(f"Unsupported function '{token[1]}' in expression: {self.expression!r}")

        kind, _ = token if token is not None else (None, None)
        if kind == 'value':
            return self.placeholder_value()
        path = self.path()
        value = self.attribute(path)
        if value is _MISSING:
            raise ExpressionError(f"Attribute '{path}' referenced in update does not exist")
        return copy.deepcopy(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare(left: Any, operator: str, right: Any) -> bool:
    if left is _MISSING or right is _MISSING:
        return operator == '<>' and not (left is _MISSING and right is _MISSING)
    if operator == '=':
        return left == right
    if operator == '<>':
        return left != right
    comparable = (_is_number(left) and _is_number(right)) or (type(left) is type(right) and isinstance(left, (str, bytes)))
    if not comparable:
        return False
    if operator == '<':
        return left < right
    if operator == '<=':
        return left <= right
    if operator == '>':
        return left > right
    return left >= right


def evaluate_condition(
        condition_expression: str,
        item: Mapping[str, Any] | None,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
) -> bool:
    """
    Evaluate a condition expression against an item.

    :param condition_expression: Condition string
    :param item: Current item, or None when absent
    :param names: ``#placeholder -> attribute name`` map
    :param values: ``:placeholder -> value`` map
    :returns: Whether the condition holds
    :raises ExpressionError: Malformed expression or unknown placeholder
    """
    parser = _Parser(condition_expression, item or {}, names, values)
    result = parser.condition()
    parser.ensure_end()
    return result


def apply_update(
        update_expression: str,
        item: Mapping[str, Any] | None,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Apply an update expression to an item and return the new item.

    All operands are read from the item as it was before the update. The
    input mapping is not modified.

    :raises ExpressionError: Malformed expression, unknown placeholder,
        overlapping paths or type mismatch
    """
    original = dict(item or {})
    updated = copy.deepcopy(original)
    touched: set[str] = set()

    def touch(path: str) -> None:
        if path in touched:
            raise ExpressionError(f"Two document paths overlap on attribute '{path}'")
        touched.add(path)

    clauses = parse_update_expression(update_expression or '')
    if not clauses:
        raise ExpressionError(f"Update expression has no clauses: {update_expression!r}")

    for keyword, body in clauses.items():
        parser = _Parser(body, original, names, values)
        while True:
            path = parser.path()
            touch(path)
            if keyword == 'SET':
                parser.expect('=')
                updated[path] = parser.update_value()
            elif keyword == 'REMOVE':
                updated.pop(path, None)
            elif keyword == 'ADD':
                updated[path] = _add(original.get(path, _MISSING), parser.placeholder_value(), path)
            else:
                result = _delete_from_set(original.get(path, _MISSING), parser.placeholder_value(), path)
                if result is _MISSING:
                    updated.pop(path, None)
                else:
                    updated[path] = result
            if parser.at_end():
                break
            parser.expect(',')

    return updated


def _add(current: Any, value: Any, path: str) -> Any:
    if _is_number(value):
        if current is _MISSING:
            return value
        if not _is_number(current):
            raise ExpressionError(f"ADD on '{path}' requires a numeric attribute")
        return current + value
    if isinstance(value, (set, frozenset)):
        if current is _MISSING:
            return set(value)
        if not isinstance(current, (set, frozenset)):
            raise ExpressionError(f"ADD on '{path}' requires a set attribute")
        return set(current) | set(value)
    raise ExpressionError(f"ADD on '{path}' supports only numbers and sets")


def _delete_from_set(current: Any, value: Any, path: str) -> Any:
    if not isinstance(value, (set, frozenset)):
        raise ExpressionError(f"DELETE on '{path}' requires a set value")
    if current is _MISSING:
        return _MISSING
    if not isinstance(current, (set, frozenset)):
        raise ExpressionError(f"DELETE on '{path}' requires a set attribute")
    remaining = set(current) - set(value)
    return remaining if remaining else _MISSING
