import asyncio

import aiohttp
import pytest

from ratewatch.errors import FetchFailure
from ratewatch.ingest.source import RateSource, SourceConfig, build_source_url
from tests.helpers.fake_http import FakeResponse, FakeSession

OK_BODY = {"query": {"results": {"rate": [
    {"id": "EURUSD", "Rate": "1.08"},
    {"id": "GBPUSD", "Rate": "1.27"},
]}}}


def cfg(**kw):
    base = dict(
        url="https://rates.example/q",
        rate_ids=["EURUSD", "GBPUSD"],
        query_pattern="?pairs={ids}",
        max_retries=3,
        initial_backoff_s=0.001,
        max_backoff_s=0.002,
    )
    base.update(kw)
    return SourceConfig(**base)


def test_build_source_url_quotes_and_joins_ids():
    url = build_source_url("https://x/q", "?pairs={ids}", ["EURUSD", "", "GBPUSD"])
    assert url == 'https://x/q?pairs="EURUSD","GBPUSD"'


def test_build_source_url_without_ids_or_pattern():
    assert build_source_url("https://x/q", "?pairs={ids}", []) == "https://x/q"
    assert build_source_url("https://x/q", "", ["EURUSD"]) == "https://x/q"


@pytest.mark.asyncio
async def test_fetch_returns_observations():
    session = FakeSession([FakeResponse(200, OK_BODY)])
    src = RateSource(cfg(), session=session)
    rates = await src.fetch()
    assert {k: v.value for k, v in rates.items()} == {"EURUSD": 1.08, "GBPUSD": 1.27}
    assert session.requests == ['https://rates.example/q?pairs="EURUSD","GBPUSD"']


@pytest.mark.asyncio
async def test_fetch_retries_transient_errors():
    session = FakeSession([
        aiohttp.ClientConnectionError("reset"),
        FakeResponse(503, {}),
        FakeResponse(200, OK_BODY),
    ])
    src = RateSource(cfg(), session=session)
    rates = await src.fetch()
    assert len(rates) == 2
    assert len(session.requests) == 3


@pytest.mark.asyncio
async def test_fetch_gives_up_after_retries():
    session = FakeSession([asyncio.TimeoutError()] * 3)
    src = RateSource(cfg(), session=session)
    with pytest.raises(FetchFailure):
        await src.fetch()
    assert len(session.requests) == 3


@pytest.mark.asyncio
async def test_client_error_status_not_retried():
    session = FakeSession([FakeResponse(404, {}), FakeResponse(200, OK_BODY)])
    src = RateSource(cfg(), session=session)
    with pytest.raises(FetchFailure):
        await src.fetch()
    assert len(session.requests) == 1


@pytest.mark.asyncio
async def test_undecodable_body_is_fetch_failure():
    session = FakeSession([FakeResponse(200, raw_text="<html>nope</html>")])
    src = RateSource(cfg(), session=session)
    with pytest.raises(FetchFailure):
        await src.fetch()


@pytest.mark.asyncio
async def test_injected_session_not_closed_on_stop():
    session = FakeSession([])
    src = RateSource(cfg(), session=session)
    await src.stop()
    assert session.closed is False


@pytest.mark.asyncio
async def test_every_request_carries_the_configured_timeout():
    session = FakeSession([FakeResponse(503, {}), FakeResponse(200, OK_BODY)])
    src = RateSource(cfg(timeout_s=2.5), session=session)
    await src.fetch()
    assert len(session.request_kwargs) == 2
    for kw in session.request_kwargs:
        assert isinstance(kw["timeout"], aiohttp.ClientTimeout)
        assert kw["timeout"].total == 2.5
