from __future__ import annotations

from typing import Iterable, Optional

import structlog

from ratewatch.errors import FetchFailure
from ratewatch.utils.types import RateObservation

log = structlog.get_logger("parser")


def rate_results(body: dict) -> list[dict]:
    """
    Pull the rate result list out of a source response:
      {"query": {"results": {"rate": {...} | [{...}, ...]}}}
    A single result object is wrapped into a one-element list.
    Raises FetchFailure when the response carries no rate results.
    """
    try:
        rate = body["query"]["results"]["rate"]
    except (KeyError, TypeError) as e:
        raise FetchFailure("no rate results in source response") from e
    if rate is None:
        raise FetchFailure("no rate results in source response")
    if isinstance(rate, dict):
        return [rate]
    if isinstance(rate, list):
        return [r for r in rate if isinstance(r, dict)]
    raise FetchFailure(f"unexpected rate result type {type(rate).__name__}")


def _to_number(raw) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        try:
            return float(raw.strip())
        except ValueError:
            return None
    return None


def find_rates_of_interest(
    body: dict,
    rate_ids: Iterable[str],
    *,
    value_field: str = "Rate",
) -> dict[str, RateObservation]:
    """
    Map each wanted rate id to its observation in `body`.
    Ids absent from the response, or with an unreadable value, are logged and skipped.
    """
    by_id: dict[str, dict] = {}
    for r in rate_results(body):
        rid = r.get("id")
        if rid is not None:
            by_id.setdefault(str(rid), r)

    out: dict[str, RateObservation] = {}
    for rid in rate_ids:
        r = by_id.get(rid)
        if r is None:
            log.warning("rate_missing_from_source", rate_id=rid)
            continue
        value = _to_number(r.get(value_field))
        if value is None:
            log.warning("rate_value_unreadable", rate_id=rid, raw=r.get(value_field))
            continue
        out[rid] = RateObservation(id=rid, value=value, raw_id=str(r.get("id")))
    return out
