from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Iterable, Optional

import aiohttp
import structlog

from ratewatch.errors import FetchFailure
from ratewatch.ingest.parser import find_rates_of_interest
from ratewatch.utils.backoff import jitter, retry_delays
from ratewatch.utils.types import RateObservation

log = structlog.get_logger("source")


@dataclass(slots=True)
class SourceConfig:
    url: str
    rate_ids: list[str]
    # "{ids}" receives the quoted, comma-joined rate ids
    query_pattern: str = ""
    value_field: str = "Rate"
    timeout_s: float = 10.0
    max_retries: int = 3
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0


def build_source_url(base: str, query_pattern: str, rate_ids: Iterable[str]) -> str:
    """
    Append the query pattern with each non-empty id in double quotes, comma-joined.
    Without ids (or without a pattern) the base URL is returned unchanged.
    """
    specifiers = [f'"{rid}"' for rid in rate_ids if isinstance(rid, str) and rid.strip()]
    if not specifiers or not query_pattern:
        return base
    return base + query_pattern.format(ids=",".join(specifiers))


class RateSource:
    """
    Fetches the external rate document and normalizes it to {id: RateObservation}.

    Network errors, timeouts, 429 and 5xx responses are retried with jittered
    backoff; other 4xx responses and unreadable bodies fail immediately.
    Every failure surfaces as FetchFailure.
    """
    def __init__(self, cfg: SourceConfig, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg
        self._session = session
        self._owns_session = session is None
        self.url = build_source_url(cfg.url, cfg.query_pattern, cfg.rate_ids)

    async def start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def stop(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def fetch(self) -> dict[str, RateObservation]:
        body = await self._fetch_json()
        rates = find_rates_of_interest(body, self.cfg.rate_ids, value_field=self.cfg.value_field)
        log.info("source_fetched", found=len(rates), wanted=len(self.cfg.rate_ids))
        return rates

    async def _fetch_json(self) -> dict:
        await self.start()
        assert self._session is not None
        attempts = max(1, self.cfg.max_retries)
        delays = retry_delays(attempts, self.cfg.initial_backoff_s, self.cfg.max_backoff_s)
        last_err: str = "no attempt made"
        # per request: an injected session may carry no timeout of its own
        timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)

        for attempt in range(1, attempts + 1):
            try:
                async with self._session.get(self.url, timeout=timeout) as resp:
                    if resp.status == 200:
                        try:
                            body = await resp.json(content_type=None)
                        except (json.JSONDecodeError, aiohttp.ContentTypeError, ValueError) as e:
                            raise FetchFailure(f"undecodable source body: {e}") from e
                        if not isinstance(body, dict):
                            raise FetchFailure("source body is not a JSON object")
                        return body
                    last_err = f"status {resp.status}"
                    log.warning("source_bad_status", status=resp.status, attempt=attempt)
                    if not (resp.status == 429 or 500 <= resp.status < 600):
                        raise FetchFailure(f"source returned {last_err}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_err = str(e) or type(e).__name__
                log.warning("source_network_error", err=last_err, attempt=attempt)

            delay = next(delays, None)
            if delay is None:
                break
            await asyncio.sleep(jitter(delay))

        raise FetchFailure(f"source fetch failed after {attempts} attempt(s): {last_err}")
