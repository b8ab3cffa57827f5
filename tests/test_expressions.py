"""
Tests for the sandboxed expression evaluator.

Covers:
- Member access on JSON documents (mapping keys win over dict methods)
- Failure policy: swallowed errors resolve to None, ValidationError propagates
- Purity: evaluation never mutates the context
- Collection filters and utility namespaces
- Truthiness helper
"""

import copy
import math

import pytest
from hypothesis import given, strategies as st

from serverokey.exceptions import EvaluationError, ValidationError
from serverokey.expressions import Evaluator, is_truthy


@pytest.fixture
def context():
    return {
        "data": {
            "receipt": {
                "items": [
                    {"id": 1, "name": "Tea", "price": 10, "qty": 1},
                    {"id": 2, "name": "Bun", "price": 2.5, "qty": 3},
                ],
                "total": 12.5,
            },
        },
        "body": {"id": 2, "name": "  Anna "},
        "user": None,
        "context": {},
        "_internal": {},
    }


class TestMemberAccess:
    def test_items_key_wins_over_dict_method(self, evaluator, context):
        items = evaluator.evaluate("data.receipt.items", context)
        assert items is context["data"]["receipt"]["items"]

    def test_subscript_access(self, evaluator, context):
        assert evaluator.evaluate("data['receipt']['items'][1].name", context) == "Bun"

    def test_length_on_list_and_string(self, evaluator, context):
        assert evaluator.evaluate("data.receipt.items.length", context) == 2
        assert evaluator.evaluate("'abc'.length", context) == 3

    def test_missing_member_is_none(self, evaluator, context):
        assert evaluator.evaluate("data.missing.deeper.still", context) is None

    def test_missing_key_does_not_expose_dict_methods(self, evaluator, context):
        assert evaluator.evaluate("data.receipt.keys", context) is None

    def test_non_string_passes_through(self, evaluator, context):
        assert evaluator.evaluate(5, context) == 5
        value = [1, 2]
        assert evaluator.evaluate(value, context) is value
        assert evaluator.evaluate(None, context) is None


class TestOperators:
    def test_arithmetic_and_comparison(self, evaluator, context):
        assert evaluator.evaluate("data.receipt.total * 2", context) == 25.0
        assert evaluator.evaluate("data.receipt.total > 10", context) is True

    def test_or_returns_value(self, evaluator, context):
        assert evaluator.evaluate("user or 'guest'", context) == "guest"

    def test_ternary(self, evaluator, context):
        assert evaluator.evaluate("'many' if body.id > 1 else 'one'", context) == "many"

    def test_or_keeps_empty_collections(self, evaluator, context):
        context["data"]["empty"] = {"items": [], "meta": {}}
        assert evaluator.evaluate("data.empty.items or 'fallback'", context) == []
        assert evaluator.evaluate("data.empty.meta or 'fallback'", context) == {}
        assert evaluator.evaluate("[] or 'x'", context) == []
        assert evaluator.evaluate("0 or '' or 'x'", context) == "x"

    def test_and_returns_operand(self, evaluator, context):
        assert evaluator.evaluate("[] and 'next'", context) == "next"
        assert evaluator.evaluate("0 and 'next'", context) == 0
        assert evaluator.evaluate("data.missing and 'next'", context) is None

    def test_and_or_short_circuit(self, evaluator, context):
        assert evaluator.evaluate("body.id or (1 / 0)", context) == 2
        assert evaluator.evaluate("0 and (1 / 0)", context) == 0

    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("not {}", False),
            ("not []", False),
            ("not ''", True),
            ("not 0", True),
            ("not data.missing", True),
            ("not '0'", False),
        ],
    )
    def test_not_uses_truthiness(self, evaluator, context, expression, expected):
        assert evaluator.evaluate(expression, context) is expected

    def test_ternary_uses_truthiness(self, evaluator, context):
        context["data"]["obj"] = {}
        assert evaluator.evaluate("'then' if data.obj else 'else'", context) == "then"
        assert evaluator.evaluate("'then' if 0.0 else 'else'", context) == "else"
        assert evaluator.evaluate("'then' if data.missing", context) is None

    def test_filter_predicates_use_truthiness(self, evaluator, context):
        context["data"]["rows"] = [{"tags": []}, {"tags": ["a"]}, {}]
        result = evaluator.evaluate("data.rows | filter('item.tags and True')", context)
        assert result == [{"tags": []}, {"tags": ["a"]}]

    def test_object_literal(self, evaluator, context):
        result = evaluator.evaluate("{'id': body.id, 'qty': 1}", context)
        assert result == {"id": 2, "qty": 1}

    def test_string_methods(self, evaluator, context):
        assert evaluator.evaluate("body.name.strip().lower()", context) == "anna"

    def test_string_concat(self, evaluator, context):
        assert evaluator.evaluate("'/items/' ~ body.id", context) == "/items/2"


class TestFailurePolicy:
    def test_syntax_error_resolves_to_none(self, evaluator, context):
        assert evaluator.evaluate("data.(", context) is None

    def test_type_error_resolves_to_none(self, evaluator, context):
        assert evaluator.evaluate("'a' - 1", context) is None

    def test_verbose_logs_warning(self, context, caplog):
        evaluator = Evaluator(verbose=True)
        with caplog.at_level("WARNING", logger="serverokey.expressions"):
            assert evaluator.evaluate("data.(", context) is None
        assert "data.(" in caplog.text

    def test_validation_error_propagates(self, evaluator, context):
        context["body"]["id"] = {"nested": True}
        with pytest.raises(ValidationError) as exc_info:
            evaluator.evaluate("schema.string().parse(body.id)", context)
        assert "expected string, received object" in str(exc_info.value)
        assert exc_info.value.issues

    def test_check_raises_on_syntax_error(self, evaluator):
        with pytest.raises(EvaluationError):
            evaluator.check("data.(")


class TestPurity:
    @pytest.mark.parametrize(
        "expression",
        [
            "data.receipt.items.append(1)",
            "data.receipt.update({'total': 0})",
            "data.receipt.items.pop()",
            "data.receipt.setdefault('x', 1)",
            "data.__class__",
            "data.receipt.items | filter('item.update({\"qty\": 0})')",
        ],
    )
    def test_evaluation_never_mutates_context(self, evaluator, context, expression):
        before = copy.deepcopy(context)
        evaluator.evaluate(expression, context)
        assert context == before


class TestCollectionFilters:
    def test_find(self, evaluator, context):
        found = evaluator.evaluate("data.receipt.items | find('item.id == body.id')", context)
        assert found["name"] == "Bun"

    def test_find_returns_none_when_absent(self, evaluator, context):
        assert evaluator.evaluate("data.receipt.items | find('item.id == 99')", context) is None

    def test_find_with_custom_name(self, evaluator, context):
        found = evaluator.evaluate("data.receipt.items | find('p.price < 5', 'p')", context)
        assert found["id"] == 2

    def test_filter(self, evaluator, context):
        result = evaluator.evaluate("data.receipt.items | filter('item.qty > 1')", context)
        assert [item["id"] for item in result] == [2]

    def test_some_and_every(self, evaluator, context):
        assert evaluator.evaluate("data.receipt.items | some('item.price > 5')", context) is True
        assert evaluator.evaluate("data.receipt.items | every('item.price > 5')", context) is False

    def test_reduce_with_initial(self, evaluator, context):
        total = evaluator.evaluate(
            "data.receipt.items | reduce('acc + item.price * item.qty', 0)", context
        )
        assert total == 17.5

    def test_concat_list(self, evaluator, context):
        result = evaluator.evaluate("data.receipt.items | concat([{'id': 3}])", context)
        assert [item["id"] for item in result] == [1, 2, 3]
        assert len(context["data"]["receipt"]["items"]) == 2

    def test_find_index(self, evaluator, context):
        assert evaluator.evaluate("data.receipt.items | find_index('item.id == 2')", context) == 1
        assert evaluator.evaluate("data.receipt.items | find_index('item.id == 9')", context) == -1

    def test_builtin_filters(self, evaluator, context):
        assert evaluator.evaluate("data.receipt.items | map(attribute='qty') | sum", context) == 4
        assert evaluator.evaluate("(10 / 3) | round(2)", context) == 3.33


class TestUtilityNamespaces:
    def test_password_hash_and_verify(self, evaluator, context):
        context["body"]["password"] = "s3cret"
        hashed = evaluator.evaluate("require('password').hash(body.password)", context)
        context["context"]["hash"] = hashed
        assert evaluator.evaluate(
            "require('password').verify(body.password, context.hash)", context
        ) is True
        assert evaluator.evaluate("require('password').verify('nope', context.hash)", context) is False

    def test_require_unknown_namespace_resolves_to_none(self, evaluator, context):
        assert evaluator.evaluate("require('os')", context) is None

    def test_schema_transform(self, evaluator, context):
        context["body"]["itemId"] = "42"
        result = evaluator.evaluate(
            "schema.string(pattern='^[0-9]+$').transform('int').parse(body.itemId)", context
        )
        assert result == 42

    def test_schema_safe_parse(self, evaluator, context):
        result = evaluator.evaluate("require('schema').integer().safe_parse('x')", context)
        assert result["success"] is False


class TestTruthiness:
    @pytest.mark.parametrize("value", [0, 0.0, float("nan"), "", None, False])
    def test_falsy_values(self, value):
        assert is_truthy(value) is False

    @pytest.mark.parametrize("value", ["0", [], {}, "false", 1, -0.5, True])
    def test_truthy_values(self, value):
        assert is_truthy(value) is True

    @given(st.integers())
    def test_integers_truthy_unless_zero(self, value):
        assert is_truthy(value) is (value != 0)

    @given(st.floats())
    def test_floats_truthy_unless_zero_or_nan(self, value):
        assert is_truthy(value) is not (value == 0 or math.isnan(value))
