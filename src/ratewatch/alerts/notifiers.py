# src/ratewatch/alerts/notifiers.py
from __future__ import annotations

from typing import Callable, Optional, Protocol, Sequence

import structlog

from ratewatch.alerts.formatting import format_event_line
from ratewatch.utils.types import Event

log = structlog.get_logger("notifier")


class Notifier(Protocol):
    async def send(self, changes: Sequence[Event]) -> None:
        """Deliver one notification covering `changes`; raise NotifyFailure on error."""
        ...


class ConsoleNotifier:
    """Prints changes to stdout; used when no mail transport is configured."""

    def __init__(self, format_fn: Optional[Callable[[Event], str]] = None):
        self._format_fn = format_fn or format_event_line

    async def send(self, changes: Sequence[Event]) -> None:
        for evt in changes:
            try:
                text = self._format_fn(evt)
            except Exception as e:
                log.warning("console_format_failed", err=str(e))
                text = f"[CHANGE] {evt.rate_id} {evt.description}"
            print(text, flush=True)
