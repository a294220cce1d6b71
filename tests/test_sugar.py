"""Tests for the comparison-sugar translator."""

import pytest

from rxmark import EvalContext, evaluate, translate
from rxmark.sugar import looks_like_dsl


class TestBinary:
    @pytest.mark.parametrize("op", ["===", "==", "!=", ">=", "<=", ">", "<"])
    def test_operators(self, op):
        assert translate(f"count {op} 0") == [op, ["get", "count"], 0]

    def test_no_spaces(self):
        assert translate("count>=10") == [">=", ["get", "count"], 10]

    def test_float_and_negative(self):
        assert translate("ratio < 0.5") == ["<", ["get", "ratio"], 0.5]
        assert translate("delta > -3") == [">", ["get", "delta"], -3]

    def test_booleans(self):
        assert translate("done == true") == ["==", ["get", "done"], True]
        assert translate("done == false") == ["==", ["get", "done"], False]

    def test_quoted_strings(self):
        assert translate("status == 'ok'") == ["==", ["get", "status"], "ok"]
        assert translate('status != "error"') == ["!=", ["get", "status"], "error"]

    def test_identifier_rhs(self):
        assert translate("count < limit") == ["<", ["get", "count"], ["get", "limit"]]

    def test_dotted_paths(self):
        assert translate("user.age >= 18") == [">=", ["get", "user.age"], 18]


class TestUnary:
    def test_not(self):
        assert translate("!loading") == ["!", ["get", "loading"]]
        assert translate("! user.active") == ["!", ["get", "user.active"]]


class TestPassThrough:
    @pytest.mark.parametrize(
        "text",
        ['["get", "count"]', '{"a": 1}', "count", "inc", "!(a)", "1 > 0"],
    )
    def test_not_sugar(self, text):
        assert translate(text) is None

    def test_looks_like_dsl(self):
        assert looks_like_dsl('["get", "a"]')
        assert looks_like_dsl('  {"a": 1}')
        assert not looks_like_dsl("count > 0")
        assert not looks_like_dsl(None)


class TestEquivalence:
    def test_sugar_matches_dsl(self):
        ctx = EvalContext(state={"count": 5})
        assert evaluate(translate("count > 0"), ctx) == evaluate([">", ["get", "count"], 0], ctx) is True
