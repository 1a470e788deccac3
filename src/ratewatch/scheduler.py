from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, time as dtime, tzinfo
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

import structlog
from apscheduler.job import Job as ScheduledJob
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ratewatch.utils.time import seconds_until, utc_now

log = structlog.get_logger("scheduler")

Job = Callable[..., Awaitable[Any]]

# a fire this late (e.g. after the host slept) still runs, once
MISFIRE_GRACE_S = 3600


def local_zone() -> tzinfo:
    """The service's local zone as seen right now (fixed offset)."""
    return datetime.now().astimezone().tzinfo


@dataclass(frozen=True, slots=True)
class DailySchedule:
    """
    A fixed local wall-clock time, fired once per day.

    Built from an hour/minute in a reference zone, converted to the local zone
    once (at construction). Daylight-saving changes after that are not
    re-applied: the local time stays fixed until the next restart.
    """
    hour: int
    minute: int
    local_tz: tzinfo

    @classmethod
    def from_reference(
        cls,
        hour: int,
        minute: int,
        reference_tz: str = "UTC",
        local_tz: tzinfo | str | None = None,
        *,
        on: Optional[date] = None,
    ) -> "DailySchedule":
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f"invalid schedule time {hour:02d}:{minute:02d}")
        ref = ZoneInfo(reference_tz)
        if isinstance(local_tz, str):
            local_tz = ZoneInfo(local_tz)
        local = local_tz or local_zone()
        day = on or datetime.now(tz=ref).date()
        loc = datetime.combine(day, dtime(hour, minute), tzinfo=ref).astimezone(local)
        log.info(
            "schedule_converted",
            reference=f"{hour:02d}:{minute:02d} {reference_tz}",
            local=f"{loc.hour:02d}:{loc.minute:02d}",
            utc_offset=str(loc.utcoffset()),
        )
        return cls(loc.hour, loc.minute, local)

    def cron_trigger(self) -> CronTrigger:
        return CronTrigger(hour=self.hour, minute=self.minute, timezone=self.local_tz)


class DailyScheduler:
    """
    Fires `job(should_stop=...)` once a day via APScheduler, plus an optional
    eager run at start and manual trigger().

    At most one cycle is in flight: a fire or trigger that arrives while a
    cycle runs is dropped. Exceptions from the job are logged and never stop
    the schedule. stop() waits up to `grace_s` for an in-flight cycle, then cancels it.
    """
    def __init__(
        self,
        job: Job,
        schedule: DailySchedule,
        *,
        run_on_start: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.job = job
        self.schedule = schedule
        self.run_on_start = run_on_start
        self._clock = clock
        self._trigger = schedule.cron_trigger()
        self._scheduler = AsyncIOScheduler(timezone=schedule.local_tz)
        self._daily: Optional[ScheduledJob] = None
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._cycle: Optional[asyncio.Task] = None
        self.last_run: Optional[datetime] = None
        self.last_outcome: Optional[str] = None

    # ---------- diagnostics ----------

    def next_run_time(self) -> datetime:
        nxt = getattr(self._daily, "next_run_time", None)
        if nxt is not None:
            return nxt
        now = self._clock().astimezone(self.schedule.local_tz)
        return self._trigger.get_next_fire_time(None, now)

    def running(self) -> bool:
        return self._lock.locked()

    def stopping(self) -> bool:
        return self._stop.is_set()

    def run_info(self) -> dict:
        return {
            "next": self.next_run_time().isoformat(),
            "running": self.running(),
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_outcome": self.last_outcome,
        }

    # ---------- lifecycle ----------

    async def start(self) -> None:
        self._stop.clear()
        self._scheduler.start()
        self._daily = self._scheduler.add_job(
            self._fire,
            self._trigger,
            id="watch_cycle",
            name="Daily watch cycle",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=MISFIRE_GRACE_S,
            replace_existing=True,
        )
        if self.run_on_start:
            # no trigger: runs once, right away
            self._scheduler.add_job(self._fire, id="watch_cycle_startup", name="Startup watch cycle")
        nxt = self.next_run_time()
        log.info("next_run_scheduled", at=nxt.isoformat(), in_s=round(seconds_until(nxt, self._clock())))

    async def stop(self, grace_s: float = 10.0) -> None:
        self._stop.set()
        cycle = self._cycle
        if cycle is not None and not cycle.done():
            log.info("scheduler_waiting_for_cycle", grace_s=grace_s)
            done, _ = await asyncio.wait({cycle}, timeout=grace_s)
            if not done:
                log.warning("cycle_cancelled_on_shutdown")
                cycle.cancel()
                try:
                    await cycle
                except asyncio.CancelledError:
                    pass
        if self._scheduler.running:
            # after the cycle: shutdown cancels whatever job coroutines remain
            self._scheduler.shutdown(wait=False)

    async def trigger(self) -> bool:
        """Run one cycle now. False if one is already running or we're stopping."""
        if self._stop.is_set():
            log.info("cycle_skipped_stopping")
            return False
        if self._lock.locked():
            log.warning("cycle_skipped_in_flight")
            return False
        async with self._lock:
            self._cycle = asyncio.create_task(self._run_job(), name="watch-cycle")
            try:
                await self._cycle
            finally:
                self._cycle = None
        return True

    async def _fire(self) -> None:
        try:
            await self.trigger()
        except asyncio.CancelledError:
            log.info("scheduled_cycle_cancelled")

    async def _run_job(self) -> None:
        started = self._clock()
        self.last_run = started
        try:
            outcome = await self.job(should_stop=self.stopping)
        except asyncio.CancelledError:
            self.last_outcome = "cancelled"
            raise
        except Exception as e:
            log.exception("cycle_crashed", err=str(e))
            self.last_outcome = "crashed"
            return
        self.last_outcome = getattr(outcome, "status", "ok")
        log.info("cycle_finished", outcome=self.last_outcome,
                 took_s=round((self._clock() - started).total_seconds(), 3))
