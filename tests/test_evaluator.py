"""Tests for condition evaluation and update application used by the storage adapters."""

import pytest

from kvtx import ExpressionError
from kvtx.storage import apply_update, evaluate_condition


class TestEvaluateCondition:
    """evaluate_condition() semantics."""

    ITEM = {"id": "x", "n": 5, "name": "alpha", "tags": ["a", "b"], "_version": 3}

    @pytest.mark.parametrize("expression, expected", [
        ("n = :five", True),
        ("n <> :five", False),
        ("n < :six", True),
        ("n >= :six", False),
        ("n BETWEEN :one AND :six", True),
        ("n IN (:one, :five)", True),
        ("missing = :five", False),
        ("missing <> :five", True),
        ("attribute_exists(n)", True),
        ("attribute_not_exists(missing)", True),
        ("begins_with(#name, :al)", True),
        ("contains(tags, :a)", True),
        ("contains(#name, :ph)", True),
        ("size(tags) = :two", True),
        ("NOT n = :five", False),
        ("n = :one OR n = :five", True),
        ("n = :five AND n = :one", False),
        ("(n = :one OR n = :five) AND attribute_exists(id)", True),
        ("name < :five", False),
    ])
    def test_expressions(self, expression, expected):
        values = {":one": 1, ":two": 2, ":five": 5, ":six": 6, ":al": "al", ":a": "a", ":ph": "ph"}

        assert evaluate_condition(expression, self.ITEM, {"#name": "name"}, values) is expected

    def test_version_condition_on_absent_item(self):
        expression = "(#_version = :_previous_version OR attribute_not_exists(#_version))"

        assert evaluate_condition(expression, None, {"#_version": "_version"}, {":_previous_version": 0})

    def test_version_condition_rejects_stale_version(self):
        expression = "(#_version = :_previous_version OR attribute_not_exists(#_version))"

        assert not evaluate_condition(expression, self.ITEM, {"#_version": "_version"}, {":_previous_version": 2})

    def test_keywords_are_case_insensitive(self):
        assert evaluate_condition("n = :five and not n = :one", self.ITEM, None, {":five": 5, ":one": 1})

    def test_undefined_placeholder(self):
        with pytest.raises(ExpressionError, match="Undefined attribute value placeholder"):
            evaluate_condition("n = :nope", self.ITEM)

    def test_undefined_name_placeholder(self):
        with pytest.raises(ExpressionError, match="Undefined attribute name placeholder"):
            evaluate_condition("attribute_exists(#nope)", self.ITEM)

    def test_trailing_tokens_are_rejected(self):
        with pytest.raises(ExpressionError):
            evaluate_condition("attribute_exists(n) n", self.ITEM)

    def test_invalid_character(self):
        with pytest.raises(ExpressionError, match="Invalid token"):
            evaluate_condition("n = :five;", self.ITEM, None, {":five": 5})


class TestApplyUpdate:
    """apply_update() semantics."""

    def test_set_remove(self):
        item = {"id": "x", "a": 1, "b": 2}

        updated = apply_update("SET a = :a, #c = :c REMOVE b", item, {"#c": "c"}, {":a": 10, ":c": "new"})

        assert updated == {"id": "x", "a": 10, "c": "new"}
        assert item == {"id": "x", "a": 1, "b": 2}

    def test_arithmetic_uses_pre_update_values(self):
        updated = apply_update("SET a = b + :one, b = a - :one", {"a": 1, "b": 5}, None, {":one": 1})

        assert updated == {"a": 6, "b": 0}

    def test_if_not_exists_and_list_append(self):
        updated = apply_update(
            "SET n = if_not_exists(n, :zero), l = list_append(l, :more)",
            {"l": [1]},
            None,
            {":zero": 0, ":more": [2, 3]},
        )

        assert updated == {"n": 0, "l": [1, 2, 3]}

    def test_add_number_and_set(self):
        updated = apply_update("ADD n :two, s :s", {"n": 1, "s": {"a"}}, None, {":two": 2, ":s": {"b"}})

        assert updated == {"n": 3, "s": {"a", "b"}}

    def test_add_creates_missing_number(self):
        assert apply_update("ADD n :two", {}, None, {":two": 2}) == {"n": 2}

    def test_delete_from_set(self):
        updated = apply_update("DELETE s :s, t :t", {"s": {"a", "b"}, "t": {"c"}}, None, {":s": {"a"}, ":t": {"c"}})

        assert updated == {"s": {"b"}}

    def test_overlapping_paths(self):
        with pytest.raises(ExpressionError, match="overlap"):
            apply_update("SET a = :a REMOVE a", {"a": 1}, None, {":a": 2})

    def test_arithmetic_on_missing_attribute(self):
        with pytest.raises(ExpressionError, match="does not exist"):
            apply_update("SET a = b + :one", {}, None, {":one": 1})

    def test_arithmetic_type_mismatch(self):
        with pytest.raises(ExpressionError, match="numeric"):
            apply_update("SET a = a + :one", {"a": "text"}, None, {":one": 1})

    def test_empty_expression(self):
        with pytest.raises(ExpressionError, match="no clauses"):
            apply_update("", {"a": 1})
