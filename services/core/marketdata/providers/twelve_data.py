"""Twelve Data REST API (tickers, time series, forex)."""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence
from urllib.parse import urlencode

from ..errors import ConfigurationError, RateLimitedError, TransientFetchError
from ..retrieval.ratelimit import SlidingWindowRateLimiter
from ..retrieval.transport import HttpClient, decode_json
from ..storage.resolution import ResolutionStore
from .base import Quote, to_float, to_major_unit


logger = logging.getLogger(__name__)

DEFAULT_EXCHANGES = ("NYSE", "NASDAQ", "TSX")


def parse_twelve_data_quote(payload: Any, symbol: str) -> Quote | None:
    """
    Normalize a ``/quote`` payload. Requires ``symbol`` and ``close``.

    Raises:
        ConfigurationError: the payload reports an invalid API key (code 401)
    """
    if not isinstance(payload, dict):
        return None
    code = payload.get("code")
    if code == 401:
        raise ConfigurationError(payload.get("message") or "Invalid API key")
    if code:
        return None
    price = to_float(payload.get("close"))
    if not payload.get("symbol") or price is None:
        return None
    raw_currency = str(payload.get("currency") or "USD")
    price, currency = to_major_unit(price, raw_currency)
    previous_close, _ = to_major_unit(to_float(payload.get("previous_close")), raw_currency)
    change, _ = to_major_unit(to_float(payload.get("change")), raw_currency)
    return Quote(
        price=price,
        previous_close=previous_close,
        change=change,
        change_percent=to_float(payload.get("percent_change")),
        currency=currency,
        name=payload.get("name") or payload.get("symbol") or symbol,
        source="twelvedata",
    )


def parse_twelve_data_close(payload: Any) -> float | None:
    """Close of the first (most recent) bar of a ``/time_series`` payload."""
    if not isinstance(payload, dict) or payload.get("code"):
        return None
    values = payload.get("values")
    if not isinstance(values, list) or not values or not isinstance(values[0], dict):
        return None
    return to_float(values[0].get("close"))


class TwelveDataClient:
    """Rate-limited access to the Twelve Data API."""

    def __init__(
        self,
        http: HttpClient,
        limiter: SlidingWindowRateLimiter,
        api_key: Callable[[], str],
        base_url: str = "https://api.twelvedata.com",
        timeout: float = 8.0,
    ):
        self.http = http
        self.limiter = limiter
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def get(self, path: str, params: dict[str, Any]) -> Any:
        """
        GET an endpoint under the rate limiter.

        Returns the decoded payload, or None on transient failure or after
        exhausting the 429 backoff schedule.
        """
        key = self.api_key()
        if not key:
            raise ConfigurationError("API key not set")
        url = f"{self.base_url}{path}?{urlencode({**params, 'apikey': key})}"

        async def call() -> Any:
            payload = decode_json(await self.http.get(url, timeout=self.timeout))
            # Twelve Data reports quota errors in the body with HTTP 200
            if isinstance(payload, dict) and payload.get("code") == 429:
                raise RateLimitedError(payload.get("message") or "Too many requests")
            return payload

        try:
            return await self.limiter.call_with_backoff(call)
        except TransientFetchError as e:
            logger.warning(f"Twelve Data {path} failed for {params.get('symbol')}: {e}")
            return None

    async def time_series_close(self, symbol: str, start_date: str, end_date: str) -> float | None:
        """Last daily close between two YYYY-MM-DD dates (inclusive)."""
        payload = await self.get(
            "/time_series",
            {
                "symbol": symbol,
                "interval": "1day",
                "start_date": start_date,
                "end_date": end_date,
                "outputsize": 1,
            },
        )
        if isinstance(payload, dict) and payload.get("code") == 401:
            raise ConfigurationError(payload.get("message") or "Invalid API key")
        return parse_twelve_data_close(payload)


class TwelveDataStrategy:
    """
    Ticker quotes with exchange disambiguation.

    An unresolved ticker is tried bare and then with each exchange suffix
    (``CAAP:NYSE``, ``CAAP:NASDAQ``, ...). The first candidate that returns
    a quote is persisted so later lookups skip the trial list.
    """

    name = "twelvedata"

    def __init__(
        self,
        client: TwelveDataClient,
        resolutions: ResolutionStore,
        exchanges: Sequence[str] = DEFAULT_EXCHANGES,
    ):
        self.client = client
        self.resolutions = resolutions
        self.exchanges = list(exchanges)

    def candidates(self, symbol: str) -> list[str]:
        resolved = self.resolutions.resolved_symbol(symbol)
        if resolved:
            return [resolved]
        trial = [symbol]
        for exchange in self.exchanges:
            suffixed = f"{symbol}:{exchange}"
            if suffixed not in trial:
                trial.append(suffixed)
        return trial

    async def try_fetch(self, symbol: str) -> Quote | None:
        for candidate in self.candidates(symbol):
            payload = await self.client.get("/quote", {"symbol": candidate})
            quote_data = parse_twelve_data_quote(payload, symbol)
            if quote_data is None:
                continue
            await self.resolutions.set_resolution(symbol, candidate)
            return quote_data
        return None
