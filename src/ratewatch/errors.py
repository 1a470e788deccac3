from __future__ import annotations

from typing import Optional


class RateWatchError(Exception):
    """Base for every failure the watch cycle knows how to classify."""


class InvalidRule(RateWatchError):
    """Rule of unrecognized kind, or a non-numeric value handed to a rule."""

    def __init__(self, rule_id: Optional[str], reason: str):
        super().__init__(f"rule {rule_id!r}: {reason}")
        self.rule_id = rule_id
        self.reason = reason


class FetchFailure(RateWatchError):
    """Rate source unreachable or returned something we cannot read."""


class StoreFailure(RateWatchError):
    """Read or write against a persistence collection failed."""

    def __init__(self, collection: str, op: str, err: Exception | str):
        super().__init__(f"{collection}.{op} failed: {err}")
        self.collection = collection
        self.op = op


class NotifyFailure(RateWatchError):
    """Notification transport failed to deliver."""
