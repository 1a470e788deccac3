import pytest

from ratewatch.alerts.rules import evaluate, evaluate_all, normalize_kind
from ratewatch.errors import InvalidRule
from ratewatch.utils.types import ThresholdRule


@pytest.mark.parametrize("kind,value,expected", [
    ("greaterThanOrEqual", 5.0, True),
    ("greaterThanOrEqual", 4.99, False),
    ("greaterThan", 5.0, False),
    ("greaterThan", 5.01, True),
    ("lessThanOrEqual", 5.0, True),
    ("lessThanOrEqual", 5.01, False),
    ("lessThan", 5.0, False),
    ("lessThan", 4.99, True),
])
def test_comparators_against_threshold_five(kind, value, expected):
    assert evaluate(ThresholdRule("r", kind, 5.0), value) is expected


def test_legacy_kind_aliases():
    assert normalize_kind("greaterThanEqualTo") == "greaterThanOrEqual"
    assert normalize_kind("lessThanEqualTo") == "lessThanOrEqual"
    assert evaluate(ThresholdRule("r", "greaterThanEqualTo", 1), 1) is True


def test_unknown_kind_raises_never_false():
    with pytest.raises(InvalidRule) as ei:
        evaluate(ThresholdRule("bad", "between", 1.0), 1.0)
    assert ei.value.rule_id == "bad"


@pytest.mark.parametrize("value", ["6", None, True, [6]])
def test_non_numeric_value_raises(value):
    with pytest.raises(InvalidRule):
        evaluate(ThresholdRule("r", "greaterThan", 5.0), value)


def test_evaluate_all_empty_rules():
    res = evaluate_all([], 42.0)
    assert res.triggered is False
    assert res.triggered_rule_ids == frozenset()


@pytest.mark.parametrize("value", ["7", None, float("nan")])
def test_evaluate_all_non_numeric_value_is_not_an_error(value):
    res = evaluate_all([ThresholdRule("r", "greaterThan", 5.0)], value)
    assert res.triggered is False
    assert res.triggered_rule_ids == frozenset()


def test_evaluate_all_collects_every_match():
    rules = [
        ThresholdRule("gt5", "greaterThan", 5.0),
        ThresholdRule("gte6", "greaterThanOrEqual", 6.0),
        ThresholdRule("lt1", "lessThan", 1.0),
    ]
    res = evaluate_all(rules, 6.0)
    assert res.triggered is True
    assert res.triggered_rule_ids == {"gt5", "gte6"}


def test_evaluate_all_skips_broken_rule():
    rules = [
        ThresholdRule("broken", "sideways", 5.0),
        ThresholdRule("gt5", "greaterThan", 5.0),
    ]
    res = evaluate_all(rules, 9)
    assert res.triggered_rule_ids == {"gt5"}


def test_huge_integer_value_compared_without_overflow():
    res = evaluate_all([ThresholdRule("r", "greaterThan", 5.0)], 10**400)
    assert res.triggered_rule_ids == {"r"}
    assert evaluate(ThresholdRule("r", "lessThan", 5.0), -(10**400)) is True
