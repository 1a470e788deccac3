# src/storage/redis_stores.py
from __future__ import annotations

import json
from typing import Callable, Generic, Optional, TypeVar

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from storage.base import Stores
from ratewatch.errors import StoreFailure
from ratewatch.utils.time import epoch_s
from ratewatch.utils.types import Event, Notification, Pull

log = structlog.get_logger("redis_stores")

PREFIX = "ratewatch"

R = TypeVar("R", Pull, Event, Notification)


def key(prefix: str, collection: str, rate_id: Optional[str] = None) -> str:
    # {prefix}:{collection}[:{rate_id}]
    return f"{prefix}:{collection}" if rate_id is None else f"{prefix}:{collection}:{rate_id}"


class _RedisCollection(Generic[R]):
    """
    Append-only collection stored as Redis sorted sets scored by created_at
    (epoch seconds). Members are JSON records. Per-rate collections also keep
    a {prefix}:{collection}:{rate_id} index written in the same transaction.
    """
    def __init__(
        self,
        r: Redis,
        collection: str,
        decode: Callable[[dict], R],
        *,
        prefix: str = PREFIX,
        per_rate: bool = False,
    ):
        self.r = r
        self.collection = collection
        self.prefix = prefix
        self._decode = decode
        self._per_rate = per_rate

    async def insert(self, record: R) -> None:
        member = json.dumps(record.to_dict(), sort_keys=True)
        score = epoch_s(record.created_at)
        try:
            p = self.r.pipeline(transaction=True)
            p.zadd(key(self.prefix, self.collection), {member: score})
            if self._per_rate:
                p.zadd(key(self.prefix, self.collection, record.rate_id), {member: score})
            await p.execute()
        except RedisError as e:
            raise StoreFailure(self.collection, "insert", e) from e

    async def _most_recent(self, rate_id: Optional[str] = None) -> Optional[R]:
        k = key(self.prefix, self.collection, rate_id)
        try:
            data = await self.r.zrevrange(k, 0, 0)
        except RedisError as e:
            raise StoreFailure(self.collection, "find_most_recent", e) from e
        if not data:
            return None
        raw = data[0]
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        try:
            return self._decode(json.loads(raw))
        except (ValueError, KeyError) as e:
            raise StoreFailure(self.collection, "decode", e) from e


class RedisPullStore(_RedisCollection[Pull]):
    def __init__(self, r: Redis, prefix: str = PREFIX):
        super().__init__(r, "pulls", Pull.from_dict, prefix=prefix)

    async def find_most_recent(self) -> Optional[Pull]:
        return await self._most_recent()


class RedisEventStore(_RedisCollection[Event]):
    def __init__(self, r: Redis, prefix: str = PREFIX):
        super().__init__(r, "events", Event.from_dict, prefix=prefix, per_rate=True)

    async def find_most_recent(self, rate_id: Optional[str] = None) -> Optional[Event]:
        return await self._most_recent(rate_id)


class RedisNotificationStore(_RedisCollection[Notification]):
    def __init__(self, r: Redis, prefix: str = PREFIX):
        super().__init__(r, "notifications", Notification.from_dict, prefix=prefix, per_rate=True)

    async def find_most_recent(self, rate_id: Optional[str] = None) -> Optional[Notification]:
        return await self._most_recent(rate_id)


class RedisStores(Stores):
    """Stores bundle sharing one Redis client; close() releases it."""

    def __init__(self, r: Redis, prefix: str = PREFIX):
        super().__init__(
            pulls=RedisPullStore(r, prefix),
            events=RedisEventStore(r, prefix),
            notifications=RedisNotificationStore(r, prefix),
        )
        self._r = r

    @classmethod
    def from_url(cls, url: str, prefix: str = PREFIX) -> "RedisStores":
        log.info("redis_stores_connect", url=url, prefix=prefix)
        return cls(Redis.from_url(url, decode_responses=True), prefix)

    async def close(self) -> None:
        await self._r.aclose()
