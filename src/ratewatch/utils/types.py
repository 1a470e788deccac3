from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from ratewatch.utils.time import from_iso, to_iso

# ---- rule domain ----

RuleKind = Literal["greaterThanOrEqual", "greaterThan", "lessThanOrEqual", "lessThan"]


@dataclass(frozen=True, slots=True)
class ThresholdRule:
    id: str
    kind: str    # one of RuleKind; unknown kinds are rejected at evaluation
    value: float


@dataclass(frozen=True, slots=True)
class ConfiguredRate:
    """A rate of interest: which external id matters and what triggers a notification."""
    id: str
    name: str
    rules: tuple[ThresholdRule, ...] = ()


@dataclass(frozen=True, slots=True)
class RuleResult:
    triggered_rule_ids: frozenset[str] = frozenset()

    @property
    def triggered(self) -> bool:
        return bool(self.triggered_rule_ids)


# ---- ingest-level primitives ----

@dataclass(frozen=True, slots=True)
class RateObservation:
    id: str
    value: float
    raw_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "value": self.value, "raw_id": self.raw_id}

    @classmethod
    def from_dict(cls, d: dict) -> "RateObservation":
        return cls(id=d["id"], value=d["value"], raw_id=d.get("raw_id"))


# ---- persisted records ----

@dataclass(frozen=True, slots=True)
class Pull:
    created_at: datetime
    rates: dict[str, RateObservation] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "created_at": to_iso(self.created_at),
            "rates": {k: v.to_dict() for k, v in self.rates.items()},
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Pull":
        rates = {k: RateObservation.from_dict(v) for k, v in (d.get("rates") or {}).items()}
        return cls(created_at=from_iso(d["created_at"]), rates=rates)


@dataclass(frozen=True, slots=True)
class Event:
    """A confirmed, notification-worthy rate change."""
    rate_id: str
    rate_name: str
    old_value: Optional[float]
    new_value: float
    description: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "rate_id": self.rate_id,
            "rate_name": self.rate_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "description": self.description,
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Event":
        return cls(
            rate_id=d["rate_id"],
            rate_name=d["rate_name"],
            old_value=d.get("old_value"),
            new_value=d["new_value"],
            description=d["description"],
            created_at=from_iso(d["created_at"]),
        )


@dataclass(frozen=True, slots=True)
class Notification:
    rate_id: str
    rate_name: str
    triggered_rule_ids: frozenset[str]
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "rate_id": self.rate_id,
            "rate_name": self.rate_name,
            "triggered_rule_ids": sorted(self.triggered_rule_ids),
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Notification":
        return cls(
            rate_id=d["rate_id"],
            rate_name=d["rate_name"],
            triggered_rule_ids=frozenset(d.get("triggered_rule_ids") or ()),
            created_at=from_iso(d["created_at"]),
        )
