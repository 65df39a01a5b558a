"""Tests for the update-expression algebra."""

import pytest

from kvtx import (
    ExpressionAttributes,
    compose_update_expressions,
    define_expression_attributes,
    merge_expression_attributes,
    parse_update_expression,
    stringify_update_expression,
)


class TestParseUpdateExpression:
    """parse_update_expression() clause splitting."""

    def test_splits_clauses(self):
        parsed = parse_update_expression("SET a = :a, b = :b REMOVE c ADD d :d DELETE e :e")

        assert parsed == {
            "SET": "a = :a, b = :b",
            "REMOVE": "c",
            "ADD": "d :d",
            "DELETE": "e :e",
        }

    def test_keywords_are_case_insensitive(self):
        parsed = parse_update_expression("set a = :a remove b")

        assert parsed == {"SET": "a = :a", "REMOVE": "b"}

    def test_drops_tokens_before_first_keyword(self):
        parsed = parse_update_expression("garbage tokens SET a = :a")

        assert parsed == {"SET": "a = :a"}

    def test_normalizes_whitespace(self):
        parsed = parse_update_expression("  SET   a  =\n:a\t")

        assert parsed == {"SET": "a = :a"}

    def test_repeated_keyword_fragments_are_joined(self):
        parsed = parse_update_expression("SET a = :a REMOVE c SET b = :b")

        assert parsed["SET"] == "a = :a, b = :b"

    def test_empty_expression(self):
        assert parse_update_expression("") == {}

    def test_keyword_without_body_is_omitted(self):
        assert parse_update_expression("SET") == {}


class TestStringifyUpdateExpression:
    """stringify_update_expression() serialization."""

    def test_canonical_clause_order(self):
        expression = stringify_update_expression({
            "DELETE": "e :e",
            "REMOVE": "c",
            "SET": "a = :a",
            "ADD": "d :d",
        })

        assert expression == "SET a = :a ADD d :d REMOVE c DELETE e :e"

    def test_skips_empty_clauses(self):
        assert stringify_update_expression({"SET": "", "REMOVE": "  ", "ADD": "d :d"}) == "ADD d :d"

    @pytest.mark.parametrize("expression", [
        "SET a = :a",
        "SET #a = :a, b = b + :one REMOVE c",
        "SET a = :a ADD d :d REMOVE c DELETE e :e",
        "REMOVE #x, #y",
    ])
    def test_round_trip(self, expression):
        assert stringify_update_expression(parse_update_expression(expression)) == expression


class TestComposeUpdateExpressions:
    """compose_update_expressions() merging."""

    def test_single_set_clause_with_both_fragments(self):
        composed = compose_update_expressions("SET a = :a", "SET b = :b")

        assert composed.count("SET") == 1
        assert "a = :a" in composed
        assert "b = :b" in composed

    def test_later_fragments_come_first(self):
        assert compose_update_expressions("SET a = :a", "SET b = :b") == "SET b = :b, a = :a"

    def test_merges_different_clauses(self):
        composed = compose_update_expressions("REMOVE c", "SET a = :a", "REMOVE d")

        assert composed == "SET a = :a REMOVE d, c"

    def test_empty_inputs_are_ignored(self):
        assert compose_update_expressions("", "SET a = :a", "") == "SET a = :a"

    def test_no_inputs(self):
        assert compose_update_expressions() == ""


class TestExpressionAttributes:
    """Placeholder map helpers."""

    def test_define_expression_attributes(self):
        attributes = define_expression_attributes({"foo": 1, "select": "x"})

        assert attributes.names == {"#foo": "foo", "#select": "select"}
        assert attributes.values == {":foo": 1, ":select": "x"}

    def test_merge_keeps_all_placeholders(self):
        merged = merge_expression_attributes(
            ExpressionAttributes(names={"#a": "a"}, values={":a": 1}),
            define_expression_attributes({"b": 2}),
        )

        assert merged.names == {"#a": "a", "#b": "b"}
        assert merged.values == {":a": 1, ":b": 2}
