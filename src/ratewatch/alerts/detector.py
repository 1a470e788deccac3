from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Mapping, Optional, Sequence

import structlog

from ratewatch.alerts.dedup import NotificationGuard
from ratewatch.alerts.formatting import describe_change
from ratewatch.alerts.rules import evaluate_all
from ratewatch.errors import StoreFailure
from ratewatch.utils.time import utc_now
from ratewatch.utils.types import ConfiguredRate, Event, Notification, Pull, RateObservation
from storage.base import Stores

log = structlog.get_logger("detector")


async def _land(write: Awaitable[None]) -> None:
    """
    Await a store write that must not be cut off midway. If the caller is
    cancelled, the write still runs to completion before the cancellation
    propagates; its own outcome is then only logged.
    """
    task = asyncio.ensure_future(write)
    try:
        await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            log.error("write_failed_during_shutdown", err=str(task.exception()))
        raise


@dataclass(slots=True)
class DetectorConfig:
    rates: Sequence[ConfiguredRate]
    suppression_window: timedelta = timedelta(hours=24)


class ChangeDetector:
    """
    Runs one watch cycle over a freshly fetched rate set.

    For each configured rate present in the fetch:
      1) evaluate its threshold rules against the new value
      2) if any fired, ask the guard whether the last notification for that
         rate still covers it
      3) if not, record an Event + Notification and include the Event in the
         cycle's output

    The new Pull is stored only when the cycle produced at least one Event, or
    when no Pull exists yet. "Old value" therefore always refers to the last
    stored snapshot, not literally the previous poll.

    Rates are processed concurrently; each rate's read-then-write sequence is
    ordered, and a write that has started runs to completion even when the
    cycle is cancelled.
    """
    def __init__(
        self,
        stores: Stores,
        cfg: DetectorConfig,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.stores = stores
        self.cfg = cfg
        self.guard = NotificationGuard(cfg.suppression_window)
        self._clock = clock

    def _unique_rates(self) -> list[ConfiguredRate]:
        seen: set[str] = set()
        out: list[ConfiguredRate] = []
        for c in self.cfg.rates:
            if c.id in seen:
                log.warning("rate_configured_twice", rate_id=c.id)
                continue
            seen.add(c.id)
            out.append(c)
        return out

    async def run_cycle(
        self,
        current_rates: Mapping[str, RateObservation],
        *,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> list[Event]:
        now = self._clock()
        # StoreFailure here aborts the cycle: nothing to compare against
        last_pull = await self.stores.pulls.find_most_recent()
        log.info(
            "cycle_started",
            rates=len(current_rates),
            last_pull=last_pull.created_at.isoformat() if last_pull else None,
        )

        work = [
            self._process_rate(c, current_rates[c.id], last_pull, now, should_stop)
            for c in self._unique_rates()
            if c.id in current_rates
        ]
        results = await asyncio.gather(*work)
        events = [e for e in results if e is not None]

        if events or last_pull is None:
            await self._store_pull(Pull(created_at=now, rates=dict(current_rates)), bootstrap=last_pull is None)
        else:
            log.info("pull_not_stored", reason="no_changes")

        log.info("cycle_complete", events=len(events))
        return events

    async def _process_rate(
        self,
        rate: ConfiguredRate,
        obs: RateObservation,
        last_pull: Optional[Pull],
        now: datetime,
        should_stop: Optional[Callable[[], bool]],
    ) -> Optional[Event]:
        result = evaluate_all(rate.rules, obs.value)
        if not result.triggered:
            return None
        if should_stop is not None and should_stop():
            log.info("rate_skipped_stopping", rate_id=rate.id)
            return None

        try:
            last_notif = await self.stores.notifications.find_most_recent(rate.id)
            if not self.guard.should_notify(result.triggered_rule_ids, last_notif, now):
                log.info(
                    "notification_suppressed",
                    rate_id=rate.id,
                    rules=sorted(result.triggered_rule_ids),
                    last_notified=last_notif.created_at.isoformat() if last_notif else None,
                )
                return None

            prev = last_pull.rates.get(rate.id) if last_pull else None
            old_value = prev.value if prev is not None else None
            event = Event(
                rate_id=rate.id,
                rate_name=rate.name,
                old_value=old_value,
                new_value=obs.value,
                description=describe_change(rate.name, rate.id, old_value, obs.value),
                created_at=now,
            )
            notification = Notification(
                rate_id=rate.id,
                rate_name=rate.name,
                triggered_rule_ids=result.triggered_rule_ids,
                created_at=now,
            )
            await _land(self._record(event, notification))
        except StoreFailure as e:
            log.error("rate_store_failed", rate_id=rate.id, collection=e.collection, op=e.op, err=str(e))
            return None

        log.info("rate_changed", rate_id=rate.id, description=event.description)
        return event

    async def _record(self, event: Event, notification: Notification) -> None:
        await self.stores.events.insert(event)
        await self.stores.notifications.insert(notification)

    async def _store_pull(self, pull: Pull, *, bootstrap: bool) -> None:
        try:
            await _land(self.stores.pulls.insert(pull))
        except StoreFailure as e:
            # events already recorded; still hand them to the notifier
            log.error("pull_store_failed", err=str(e))
            return
        log.info("pull_stored", rates=len(pull.rates), bootstrap=bootstrap)
