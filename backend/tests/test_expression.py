"""Tests for the applicability expression language."""

import pytest

from tokengate.errors import MalformedExpression
from tokengate.policy.expression import evaluate, matched_terms, parse, referenced_fields


class TestEvaluate:
    def test_string_equality(self):
        assert evaluate("assetClass == 'ART'", {"assetClass": "ART"}) is True
        assert evaluate("assetClass == 'ART'", {"assetClass": "EMT"}) is False

    def test_double_quoted_literal(self):
        assert evaluate('ledger == "XRPL"', {"ledger": "XRPL"}) is True

    def test_boolean_literal(self):
        assert evaluate("isCaspInvolved == true", {"isCaspInvolved": True}) is True
        assert evaluate("isCaspInvolved == false", {"isCaspInvolved": False}) is True
        assert evaluate("isCaspInvolved == true", {"isCaspInvolved": False}) is False

    def test_missing_field_is_false(self):
        assert evaluate("assetClass == 'ART'", {}) is False
        assert evaluate("assetClass == 'ART'", {"assetClass": None}) is False

    def test_type_mismatch_is_false(self):
        assert evaluate("isCaspInvolved == true", {"isCaspInvolved": "true"}) is False
        assert evaluate("ledger == 'XRPL'", {"ledger": True}) is False
        assert evaluate("count == '1'", {"count": 1}) is False

    def test_and_binds_tighter_than_or(self):
        expr = "a == 'x' || b == 'y' && c == 'z'"
        assert evaluate(expr, {"a": "x"}) is True
        assert evaluate(expr, {"b": "y", "c": "z"}) is True
        assert evaluate(expr, {"b": "y"}) is False

    def test_and_chain(self):
        expr = "assetClass == 'ART' && investorAudience == 'retail'"
        assert evaluate(expr, {"assetClass": "ART", "investorAudience": "retail"}) is True
        assert evaluate(expr, {"assetClass": "ART", "investorAudience": "professional"}) is False

    def test_escaped_quote_in_literal(self):
        assert evaluate(r"name == 'O\'Brien'", {"name": "O'Brien"}) is True

    def test_dotted_identifier(self):
        assert evaluate("issuer.country == 'DE'", {"issuer.country": "DE"}) is True

    def test_evaluation_is_deterministic(self):
        facts = {"assetClass": "EMT", "ledger": "ETHEREUM"}
        expr = "assetClass == 'ART' || assetClass == 'EMT'"
        assert [evaluate(expr, facts) for _ in range(3)] == [True, True, True]


class TestMalformed:
    @pytest.mark.parametrize("expr", [
        "",
        "   ",
        "assetClass = 'ART'",
        "assetClass == ",
        "assetClass == ART",
        "assetClass == 'ART' &&",
        "(assetClass == 'ART')",
        "!isCaspInvolved == true",
        "assetClass == 'ART' assetClass == 'EMT'",
        "assetClass == 'ART",
    ])
    def test_unparsable_raises(self, expr):
        with pytest.raises(MalformedExpression):
            parse(expr)

    def test_error_carries_position(self):
        with pytest.raises(MalformedExpression) as exc_info:
            parse("assetClass = 'ART'")
        assert exc_info.value.position == 11
        assert exc_info.value.expression == "assetClass = 'ART'"


class TestIntrospection:
    def test_matched_terms_of_first_satisfied_branch(self):
        expr = "assetClass == 'ART' || assetClass == 'EMT' && ledger == 'XRPL'"
        terms = matched_terms(expr, {"assetClass": "EMT", "ledger": "XRPL"})
        assert [(t.field, t.value) for t in terms] == [("assetClass", "EMT"), ("ledger", "XRPL")]

    def test_matched_terms_empty_when_false(self):
        assert matched_terms("assetClass == 'ART'", {"assetClass": "EMT"}) == []

    def test_referenced_fields_in_first_use_order(self):
        expr = "transferType == 'A' || isCaspInvolved == true && transferType == 'B'"
        assert referenced_fields(expr) == ["transferType", "isCaspInvolved"]
