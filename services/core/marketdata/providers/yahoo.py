"""Yahoo Finance v8 chart API."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from ..retrieval.transport import TransportChain, YAHOO_HEADERS
from .base import Quote, to_float, to_major_unit


logger = logging.getLogger(__name__)


def parse_yahoo_chart(payload: Any, symbol: str) -> Quote | None:
    """
    Normalize a chart payload into a Quote.

    Expected shape: ``{"chart": {"result": [{"meta": {...}}], "error": null}}``.
    ``meta.regularMarketPrice`` is required. Minor-unit currencies (ILA for
    Tel Aviv listings, GBp for London) are converted to the major unit.
    """
    try:
        result = payload["chart"]["result"]
        meta = result[0]["meta"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(meta, dict):
        return None

    raw_price = to_float(meta.get("regularMarketPrice"))
    if raw_price is None:
        return None
    currency = str(meta.get("currency") or "USD")
    raw_prev = to_float(meta.get("chartPreviousClose"))
    if raw_prev is None:
        raw_prev = to_float(meta.get("previousClose"))

    price, major = to_major_unit(raw_price, currency)
    previous_close, _ = to_major_unit(raw_prev, currency)

    change = None
    change_percent = None
    if previous_close:
        change = price - previous_close
        change_percent = change / previous_close * 100

    return Quote(
        price=price,
        previous_close=previous_close,
        change=change,
        change_percent=change_percent,
        currency=major,
        name=meta.get("longName") or meta.get("shortName") or meta.get("symbol") or symbol,
    )


class YahooChartStrategy:
    """
    Quote from the Yahoo chart endpoint through the transport chain.

    With a suffix (e.g. ``.TA``) this serves as the alternate provider for
    Tel Aviv security numbers; the ILA result is reinterpreted as ILS.
    """

    def __init__(self, chain: TransportChain, base_url: str, suffix: str = ""):
        self.chain = chain
        self.base_url = base_url
        self.suffix = suffix
        self.name = f"yahoo{suffix}" if suffix else "yahoo"

    def accept_payload(self, symbol: str, payload: Any) -> Quote | None:
        """Parse a raw payload obtained elsewhere (e.g. the relay batch)."""
        quote_data = parse_yahoo_chart(payload, symbol)
        if quote_data is not None:
            quote_data.source = self.name
        return quote_data

    async def try_fetch(self, symbol: str) -> Quote | None:
        url = f"{self.base_url}{quote(symbol + self.suffix, safe='')}?range=1d&interval=1d"
        payload = await self.chain.fetch_json(url, YAHOO_HEADERS)
        quote_data = self.accept_payload(symbol, payload)
        if quote_data is None:
            logger.info(f"[{self.name}] no usable chart data for {symbol}")
        return quote_data
