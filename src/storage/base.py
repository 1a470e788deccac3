# src/storage/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from ratewatch.utils.types import Event, Notification, Pull


class PullStore(Protocol):
    """Append-only log of full rate snapshots."""

    async def insert(self, pull: Pull) -> None: ...

    async def find_most_recent(self) -> Optional[Pull]: ...


class EventStore(Protocol):
    """Append-only log of notified rate changes (audit trail)."""

    async def insert(self, event: Event) -> None: ...

    async def find_most_recent(self, rate_id: Optional[str] = None) -> Optional[Event]: ...


class NotificationStore(Protocol):
    """Append-only log of what was sent, queried per rate for dedup."""

    async def insert(self, notification: Notification) -> None: ...

    async def find_most_recent(self, rate_id: Optional[str] = None) -> Optional[Notification]: ...


@dataclass(slots=True)
class Stores:
    pulls: PullStore
    events: EventStore
    notifications: NotificationStore

    async def close(self) -> None:
        for s in (self.pulls, self.events, self.notifications):
            close = getattr(s, "close", None)
            if close is not None:
                await close()
