"""Shared fixtures: scripted HTTP client, fake clock and a service factory."""

import json

import pytest

from marketdata.config import Settings
from marketdata.retrieval.service import MarketDataService
from marketdata.retrieval.transport import HttpResponse
from marketdata.storage.sqlite import MemoryStore


# 2025-10-09, mid-day UTC
START_TS = 1_760_000_000.0


def json_response(data, status=200):
    return HttpResponse(status=status, text=json.dumps(data))


class FakeHttpClient:
    """
    Routes requests by URL fragment, in the order routes were added.

    A route holding several responses serves them one per call and then
    keeps repeating the last one. Exceptions are raised instead of returned.
    Unrouted URLs get a 404.
    """

    def __init__(self):
        self.routes = []
        self.calls = []

    def add(self, fragment, *responses):
        self.routes.append((fragment, list(responses)))

    def add_json(self, fragment, data):
        self.add(fragment, json_response(data))

    def calls_matching(self, fragment):
        return [url for url, _ in self.calls if fragment in url]

    async def get(self, url, headers=None, timeout=None):
        self.calls.append((url, headers))
        for fragment, responses in self.routes:
            if fragment in url:
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(response, Exception):
                    raise response
                return response
        return HttpResponse(status=404, text='{"error": "not found"}')


class FakeClock:
    """Wall and monotonic clock; sleeping advances it instantly."""

    def __init__(self, now=START_TS):
        self.now = now
        self.sleeps = []

    def time(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def http():
    return FakeHttpClient()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        relay_urls="",
        cors_proxies="https://proxy.test/?url=",
        chunk_delay_seconds=0.0,
        twelve_data_api_key=None,
    )


@pytest.fixture
def make_service(settings, http, clock):
    def _make(store=None, **overrides):
        cfg = settings.model_copy(update=overrides) if overrides else settings
        return MarketDataService(
            cfg,
            store=store if store is not None else MemoryStore(),
            http=http,
            clock=clock.time,
            sleep=clock.sleep,
            monotonic=clock.time,
        )
    return _make


# ---- Sample upstream payloads ----

AAPL_TWELVE_DATA = {
    "symbol": "AAPL",
    "name": "Apple Inc",
    "exchange": "NASDAQ",
    "currency": "USD",
    "close": "276.21",
    "previous_close": "273.08",
    "change": "3.13",
    "percent_change": "1.14618",
}

TASE_SECURITY = {
    "Name": "TEVA",
    "LongName": "Teva Pharmaceutical Industries",
    "LastRate": 27650,
    "BaseRate": 27000,
    "Change": 2.41,
    "AnnualYield": 10.0,
}

TASE_FUND = {
    "FundId": 512345,
    "FundShortName": "Tachlit TA-125",
    "FundLongName": "Tachlit Sal TA-125 Index Fund",
    "UnitValuePrice": 15230,
    "DayYield": 0.35,
    "YearYield": 12.4,
}


def yahoo_chart(price, currency="USD", previous=None, name="Apple Inc.", symbol="AAPL"):
    meta = {"currency": currency, "symbol": symbol, "regularMarketPrice": price, "longName": name}
    if previous is not None:
        meta["chartPreviousClose"] = previous
    return {"chart": {"result": [{"meta": meta}], "error": None}}
