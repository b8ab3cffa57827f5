"""
Tests for item migrations and computed fields.
"""

import copy

import pytest
from hypothesis import given, strategies as st

from serverokey.computed import ComputedFields, to_number
from serverokey.exceptions import MigrationError
from serverokey.manifest import ComputedRule, MigrationRule
from serverokey.migrations import Migrator


def rule(**kwargs):
    return MigrationRule.model_validate(kwargs)


def computed(*rules):
    return ComputedFields([ComputedRule.model_validate(r) for r in rules])


class TestMigrator:
    def test_patches_items_missing_condition_field(self):
        migrator = Migrator([rule(if_not_exists="qty", set={"qty": 1, "unit": "pcs"})])
        data, changed = migrator.migrate({"items": [{"id": 1}, {"id": 2, "qty": 5}]})
        assert changed is True
        assert data["items"] == [{"id": 1, "qty": 1, "unit": "pcs"}, {"id": 2, "qty": 5}]

    def test_present_key_with_none_value_is_not_patched(self):
        migrator = Migrator([rule(conditionField="qty", patch={"qty": 1})])
        data, changed = migrator.migrate({"items": [{"qty": None}]})
        assert changed is False
        assert data["items"] == [{"qty": None}]

    def test_second_pass_is_noop(self):
        migrator = Migrator([rule(if_not_exists="qty", set={"qty": 1})])
        data, _ = migrator.migrate({"items": [{"id": 1}]})
        snapshot = copy.deepcopy(data)
        data, changed = migrator.migrate(data)
        assert changed is False
        assert data == snapshot

    def test_only_items_are_touched(self):
        migrator = Migrator([rule(if_not_exists="qty", set={"qty": 1})])
        data, _ = migrator.migrate({"items": [], "total": 0})
        assert data == {"items": [], "total": 0}

    def test_non_list_items_is_noop(self):
        migrator = Migrator([rule(if_not_exists="qty", set={"qty": 1})])
        assert migrator.migrate({"items": {"a": 1}}) == ({"items": {"a": 1}}, False)

    def test_non_object_item_raises(self):
        migrator = Migrator([rule(if_not_exists="qty", set={"qty": 1})])
        with pytest.raises(MigrationError):
            migrator.migrate({"items": [{"id": 1}, "oops"]})

    def test_patch_values_are_not_shared(self):
        migrator = Migrator([rule(if_not_exists="tags", set={"tags": []})])
        data, _ = migrator.migrate({"items": [{}, {}]})
        data["items"][0]["tags"].append("x")
        assert data["items"][1]["tags"] == []

    @given(
        st.lists(
            st.dictionaries(st.sampled_from(["id", "qty", "name"]), st.integers(), max_size=3),
            max_size=5,
        )
    )
    def test_idempotent(self, items):
        migrator = Migrator([
            rule(if_not_exists="qty", set={"qty": 1}),
            rule(if_not_exists="name", set={"name": "unnamed"}),
        ])
        once, _ = migrator.migrate({"items": copy.deepcopy(items)})
        snapshot = copy.deepcopy(once)
        twice, changed = migrator.migrate(once)
        assert changed is False
        assert twice == snapshot


class TestToNumber:
    @pytest.mark.parametrize(
        "value,expected",
        [(3, 3), (2.5, 2.5), ("4.5", 4.5), (" 7 ", 7.0)],
    )
    def test_numeric(self, value, expected):
        assert to_number(value) == expected

    @pytest.mark.parametrize(
        "value", [None, True, False, "abc", "", float("nan"), float("inf"), [1], {"a": 1}]
    )
    def test_non_numeric(self, value):
        assert to_number(value) is None


class TestComputedFields:
    def test_sum_over_items(self):
        document = computed({"target": "total", "formula": "sum(items, 'price')"}).apply(
            {"items": [{"price": 10}, {"price": 2.5}]}
        )
        assert document["total"] == 12.5

    def test_sum_arguments_without_quotes(self):
        document = computed({"target": "total", "formula": "sum(items, price)"}).apply(
            {"items": [{"price": "1.5"}, {"price": 1}, {}]}
        )
        assert document["total"] == 2.5

    def test_count(self):
        document = computed({"target": "itemCount", "formula": "count(items)"}).apply(
            {"items": [1, 2, 3]}
        )
        assert document["itemCount"] == 3

    def test_missing_array_counts_as_zero(self):
        document = computed({"target": "total", "formula": "sum(missing, 'price')"}).apply({})
        assert document["total"] == 0

    def test_non_numeric_value_falls_back_to_default(self):
        document = computed(
            {"target": "total", "formula": "sum(items, 'price')", "defaultValue": -1}
        ).apply({"items": [{"price": "abc"}]})
        assert document["total"] == -1

    def test_default_is_zero(self):
        document = computed({"target": "total", "formula": "'abc'"}).apply({"total": 5})
        assert document["total"] == 0

    def test_failed_expression_never_yields_none(self):
        document = computed({"target": "total", "formula": "items.("}).apply({"items": []})
        assert document["total"] == 0

    def test_boolean_result_is_not_numeric(self):
        document = computed({"target": "flag", "formula": "items | length > 0"}).apply(
            {"items": [1]}
        )
        assert document["flag"] == 0

    def test_to_fixed_format(self):
        document = computed(
            {"target": "total", "formula": "sum(items, 'price')", "format": "toFixed(2)"}
        ).apply({"items": [{"price": 10}, {"price": 2.5}]})
        assert document["total"] == "12.50"

    def test_fixed_colon_format(self):
        document = computed({"target": "total", "format": "fixed:1"}).apply({"total": "3.14159"})
        assert document["total"] == "3.1"

    def test_no_formula_coerces_existing_value(self):
        document = computed({"target": "total"}).apply({"total": "3"})
        assert document["total"] == 3.0

    def test_no_formula_missing_target_uses_default(self):
        document = computed({"target": "total", "defaultValue": 7}).apply({})
        assert document["total"] == 7

    def test_later_rules_see_earlier_targets(self):
        document = computed(
            {"target": "total", "formula": "sum(items, 'price')"},
            {"target": "discount", "formula": "total * discountPercent / 100"},
            {"target": "finalTotal", "formula": "total - discount"},
        ).apply({"items": [{"price": 100}, {"price": 50}], "discountPercent": 10})
        assert document["total"] == 150
        assert document["discount"] == 15.0
        assert document["finalTotal"] == 135.0

    def test_formatted_target_stays_numeric_for_later_rules(self):
        document = computed(
            {"target": "total", "formula": "sum(items, 'price')", "format": "toFixed(2)"},
            {"target": "discount", "formula": "total * 0.1"},
            {"target": "finalTotal", "formula": "total - discount", "format": "fixed:2"},
        ).apply({"items": [{"price": 5}, {"price": 7.5}]})
        assert document["total"] == "12.50"
        assert document["discount"] == pytest.approx(1.25)
        assert document["finalTotal"] == "11.25"

    def test_defaulted_target_is_seen_by_later_rules(self):
        document = computed(
            {"target": "total", "formula": "'abc'", "defaultValue": 4},
            {"target": "double", "formula": "total * 2"},
        ).apply({})
        assert document == {"total": 4, "double": 8}

    def test_unknown_function_falls_through_to_expression(self):
        document = computed({"target": "n", "formula": "avg(items)"}).apply({"items": [1]})
        assert document["n"] == 0
