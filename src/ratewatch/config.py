from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from ratewatch.alerts.rules import RULE_KINDS, normalize_kind
from ratewatch.utils.types import ConfiguredRate, ThresholdRule


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def parse_rates(raw: list) -> tuple[ConfiguredRate, ...]:
    """
    Parse the rates-of-interest document:
      [{"id": "EURUSD", "name": "Euro", "rules": [{"id": "r1", "kind": "greaterThan", "value": 1.1}]}]
    "type" is accepted in place of "kind"; legacy kind aliases are normalized.
    """
    if not isinstance(raw, list):
        raise ValueError("rates config must be a JSON list")
    rates: list[ConfiguredRate] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict) or not str(item.get("id") or "").strip():
            raise ValueError(f"rate #{i} needs a non-empty 'id'")
        rid = str(item["id"]).strip()
        rules: list[ThresholdRule] = []
        for j, r in enumerate(item.get("rules") or item.get("notifyRules") or []):
            kind = normalize_kind(str(r.get("kind") or r.get("type") or ""))
            if kind not in RULE_KINDS:
                raise ValueError(f"rate {rid!r} rule #{j}: unknown kind {kind!r}")
            value = r.get("value")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"rate {rid!r} rule #{j}: value must be numeric")
            rules.append(ThresholdRule(id=str(r.get("id") or f"{rid}-{j}"), kind=kind, value=float(value)))
        rates.append(ConfiguredRate(id=rid, name=str(item.get("name") or rid), rules=tuple(rules)))
    return tuple(rates)


def load_rates(inline: Optional[str], path: Optional[str]) -> tuple[ConfiguredRate, ...]:
    if inline:
        return parse_rates(json.loads(inline))
    p = Path(path or "rates.json")
    if not p.exists():
        raise ValueError(f"rates config file not found: {p}")
    return parse_rates(json.loads(p.read_text(encoding="utf-8")))


@dataclass(slots=True)
class Settings:
    rates: tuple[ConfiguredRate, ...]
    suppression_window: timedelta = timedelta(hours=24)

    schedule_hour: int = 9
    schedule_minute: int = 0
    schedule_tz: str = "UTC"
    local_tz: Optional[str] = None
    run_on_start: bool = True

    source_url: str = ""
    source_query_pattern: str = ""
    source_value_field: str = "Rate"
    source_timeout_s: float = 10.0
    source_max_retries: int = 3

    store_backend: str = "redis"
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "ratewatch"

    log_level: str = "INFO"
    shutdown_grace_s: float = 10.0

    @property
    def rate_ids(self) -> list[str]:
        return [r.id for r in self.rates]


def settings_from_env(*, dotenv: bool = True) -> Settings:
    """Read Settings from the environment (and a .env file). Raises ValueError on bad config."""
    if dotenv:
        load_dotenv()

    window_h = float(os.getenv("SUPPRESSION_WINDOW_HOURS", "24"))
    if window_h < 0:
        raise ValueError("SUPPRESSION_WINDOW_HOURS must be >= 0")

    backend = os.getenv("STORE_BACKEND", "redis").lower()
    if backend not in ("redis", "memory"):
        raise ValueError(f"STORE_BACKEND must be 'redis' or 'memory', got {backend!r}")

    source_url = os.getenv("SOURCE_URL", "")
    if not source_url:
        raise ValueError("SOURCE_URL is required")

    return Settings(
        rates=load_rates(os.getenv("RATES_CONFIG"), os.getenv("RATES_CONFIG_PATH")),
        suppression_window=timedelta(hours=window_h),
        schedule_hour=int(os.getenv("SCHEDULE_HOUR", "9")),
        schedule_minute=int(os.getenv("SCHEDULE_MINUTE", "0")),
        schedule_tz=os.getenv("SCHEDULE_TZ", "UTC"),
        local_tz=os.getenv("LOCAL_TZ") or None,
        run_on_start=_flag("RUN_ON_START", "1"),
        source_url=source_url,
        source_query_pattern=os.getenv("SOURCE_QUERY_PATTERN", ""),
        source_value_field=os.getenv("SOURCE_VALUE_FIELD", "Rate"),
        source_timeout_s=float(os.getenv("SOURCE_TIMEOUT_S", "10")),
        source_max_retries=int(os.getenv("SOURCE_MAX_RETRIES", "3")),
        store_backend=backend,
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        redis_prefix=os.getenv("REDIS_PREFIX", "ratewatch"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        shutdown_grace_s=float(os.getenv("SHUTDOWN_GRACE_S", "10")),
    )
