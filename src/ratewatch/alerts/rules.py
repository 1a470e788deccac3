# src/ratewatch/alerts/rules.py
from __future__ import annotations

import math
import operator
from typing import Callable, Iterable

import structlog

from ratewatch.errors import InvalidRule
from ratewatch.utils.types import RuleResult, ThresholdRule

log = structlog.get_logger("rules")

_COMPARATORS: dict[str, Callable[[object, object], bool]] = {
    "greaterThanOrEqual": operator.ge,
    "greaterThan": operator.gt,
    "lessThanOrEqual": operator.le,
    "lessThan": operator.lt,
}

# older configs spell the inclusive kinds differently
KIND_ALIASES: dict[str, str] = {
    "greaterThanEqualTo": "greaterThanOrEqual",
    "lessThanEqualTo": "lessThanOrEqual",
}

RULE_KINDS = tuple(_COMPARATORS)


def normalize_kind(kind: str) -> str:
    """Map a configured kind (canonical or legacy alias) to its canonical name."""
    return KIND_ALIASES.get(kind, kind)


def is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate(rule: ThresholdRule, value) -> bool:
    """
    True if `value` satisfies `rule` (value <op> rule.value).
    Raises InvalidRule for an unrecognized kind or a non-numeric operand.
    """
    cmp = _COMPARATORS.get(normalize_kind(rule.kind))
    if cmp is None:
        raise InvalidRule(rule.id, f"unrecognized kind {rule.kind!r}")
    if not is_number(value):
        raise InvalidRule(rule.id, f"non-numeric value {value!r}")
    if not is_number(rule.value):
        raise InvalidRule(rule.id, f"non-numeric threshold {rule.value!r}")
    return cmp(value, rule.value)


def evaluate_all(rules: Iterable[ThresholdRule], value) -> RuleResult:
    """
    Evaluate every rule independently and collect the ids of those that match.
    No short-circuiting: each matching rule contributes its id.
    A broken rule counts as not triggered.
    """
    rules = list(rules or ())
    if not rules or not is_number(value) or (isinstance(value, float) and math.isnan(value)):
        return RuleResult()

    hits: set[str] = set()
    for rule in rules:
        try:
            if evaluate(rule, value):
                hits.add(rule.id)
        except InvalidRule as e:
            log.warning("rule_invalid", rule_id=e.rule_id, reason=e.reason)
    return RuleResult(frozenset(hits))
