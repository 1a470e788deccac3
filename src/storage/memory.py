from __future__ import annotations

import asyncio
from typing import Generic, Optional, TypeVar

from storage.base import Stores
from ratewatch.utils.types import Event, Notification, Pull

R = TypeVar("R", Pull, Event, Notification)


class _AppendOnlyLog(Generic[R]):
    """
    In-process append-only collection. Most recent = latest created_at;
    equal timestamps resolve to the later insert.
    """
    def __init__(self):
        self._rows: list[R] = []
        self._lock = asyncio.Lock()

    @property
    def rows(self) -> list[R]:
        return list(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    async def insert(self, record: R) -> None:
        async with self._lock:
            self._rows.append(record)

    def _latest(self, rows: list[R]) -> Optional[R]:
        best: Optional[R] = None
        for r in rows:
            if best is None or r.created_at >= best.created_at:
                best = r
        return best


class MemoryPullStore(_AppendOnlyLog[Pull]):
    async def find_most_recent(self) -> Optional[Pull]:
        return self._latest(self._rows)


class _PerRateLog(_AppendOnlyLog[R]):
    async def find_most_recent(self, rate_id: Optional[str] = None) -> Optional[R]:
        rows = self._rows if rate_id is None else [r for r in self._rows if r.rate_id == rate_id]
        return self._latest(rows)


class MemoryEventStore(_PerRateLog[Event]):
    pass


class MemoryNotificationStore(_PerRateLog[Notification]):
    pass


def memory_stores() -> Stores:
    return Stores(
        pulls=MemoryPullStore(),
        events=MemoryEventStore(),
        notifications=MemoryNotificationStore(),
    )
