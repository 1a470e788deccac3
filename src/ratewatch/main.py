# src/ratewatch/main.py
import asyncio
import logging
import os
import signal

import structlog

from ratewatch.alerts.detector import ChangeDetector, DetectorConfig
from ratewatch.alerts.notifiers import ConsoleNotifier
from ratewatch.config import Settings, settings_from_env
from ratewatch.errors import NotifyFailure
from ratewatch.ingest.source import RateSource, SourceConfig
from ratewatch.notify.mailer import EmailNotifier, config_from_env
from ratewatch.pipeline import WatchPipeline
from ratewatch.scheduler import DailySchedule, DailyScheduler
from storage.base import Stores
from storage.memory import memory_stores
from storage.redis_stores import RedisStores

log = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
    )


def build_stores(settings: Settings) -> Stores:
    if settings.store_backend == "memory":
        log.warning("memory_store_in_use")
        return memory_stores()
    return RedisStores.from_url(settings.redis_url, settings.redis_prefix)


def build_notifier():
    """Email when SMTP_* is configured, otherwise console."""
    try:
        notifier = EmailNotifier(config_from_env())
        log.info("email_enabled")
        return notifier
    except ValueError as e:
        log.info("email_disabled_missing_env", err=str(e))
        return ConsoleNotifier()


async def main():
    settings = settings_from_env()
    configure_logging(settings.log_level)
    log.info("ratewatch_starting", rates=settings.rate_ids, backend=settings.store_backend)

    stores = build_stores(settings)
    source = RateSource(SourceConfig(
        url=settings.source_url,
        rate_ids=settings.rate_ids,
        query_pattern=settings.source_query_pattern,
        value_field=settings.source_value_field,
        timeout_s=settings.source_timeout_s,
        max_retries=settings.source_max_retries,
    ))
    detector = ChangeDetector(stores, DetectorConfig(
        rates=settings.rates,
        suppression_window=settings.suppression_window,
    ))
    notifier = build_notifier()
    pipeline = WatchPipeline(source, detector, notifier)

    schedule = DailySchedule.from_reference(
        settings.schedule_hour,
        settings.schedule_minute,
        settings.schedule_tz,
        settings.local_tz,
    )
    scheduler = DailyScheduler(pipeline.run_once, schedule, run_on_start=settings.run_on_start)

    if os.getenv("SEND_TEST_EMAIL", "0").lower() in ("1", "true", "yes") and isinstance(notifier, EmailNotifier):
        try:
            await notifier.send_test()
        except NotifyFailure as e:
            log.error("email_test_failed", err=str(e))

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # not available on every platform; KeyboardInterrupt still applies
            pass

    await source.start()
    await scheduler.start()
    log.info("ratewatch_started", next_run=scheduler.next_run_time().isoformat())
    try:
        await stop_requested.wait()
    finally:
        log.info("ratewatch_stopping")
        await scheduler.stop(grace_s=settings.shutdown_grace_s)
        await source.stop()
        await stores.close()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
