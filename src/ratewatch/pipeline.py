from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Literal, Optional, Protocol

import structlog

from ratewatch.alerts.detector import ChangeDetector
from ratewatch.alerts.notifiers import Notifier
from ratewatch.errors import FetchFailure, NotifyFailure, StoreFailure
from ratewatch.utils.types import Event, RateObservation

log = structlog.get_logger("pipeline")

CycleStatus = Literal["ok", "fetch_failed", "store_failed", "notify_failed"]


class Source(Protocol):
    async def fetch(self) -> dict[str, RateObservation]: ...


@dataclass(slots=True)
class CycleOutcome:
    status: CycleStatus
    events: list[Event] = field(default_factory=list)
    error: Optional[str] = None


class WatchPipeline:
    """fetch -> ChangeDetector -> Notifier, one cycle per run_once() call."""

    def __init__(self, source: Source, detector: ChangeDetector, notifier: Notifier):
        self.source = source
        self.detector = detector
        self.notifier = notifier

    async def run_once(self, *, should_stop: Optional[Callable[[], bool]] = None) -> CycleOutcome:
        try:
            rates = await self.source.fetch()
        except FetchFailure as e:
            log.error("fetch_failed", err=str(e))
            return CycleOutcome("fetch_failed", error=str(e))

        try:
            events = await self.detector.run_cycle(rates, should_stop=should_stop)
        except StoreFailure as e:
            log.error("cycle_failed", collection=e.collection, op=e.op, err=str(e))
            return CycleOutcome("store_failed", error=str(e))

        if not events:
            return CycleOutcome("ok")

        try:
            await self.notifier.send(events)
        except NotifyFailure as e:
            log.error("notify_failed", changes=len(events), err=str(e))
            return CycleOutcome("notify_failed", events=events, error=str(e))
        return CycleOutcome("ok", events=events)
