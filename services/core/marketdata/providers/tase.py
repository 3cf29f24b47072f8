"""Tel Aviv Stock Exchange security and fund endpoints.

Securities are identified by numeric ids. Both endpoints quote prices in
agorot (1/100 ILS); conversion to ILS happens here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable
from urllib.parse import quote

from ..retrieval.transport import (
    LEGACY_HEADERS,
    TASE_FUND_HEADERS,
    TASE_STOCK_HEADERS,
    TransportChain,
)
from ..storage.resolution import ResolutionStore
from .base import HistoricalReference, Quote, to_float, to_major_unit


logger = logging.getLogger(__name__)

TASE_CURRENCY = "ILA"  # feed currency: agorot


def historical_from_yield(price: float | None, yearly_yield: Any) -> float | None:
    """One-year-ago price implied by a trailing yearly yield in percent."""
    pct = to_float(yearly_yield)
    if price is None or not pct or pct <= -100:
        return None
    return price / (1 + pct / 100)


def parse_tase_security(payload: Any, symbol: str) -> Quote | None:
    """Normalize a ``company/securitydata`` payload. Requires ``LastRate``."""
    if not isinstance(payload, dict):
        return None
    last_rate = to_float(payload.get("LastRate"))
    if not last_rate:
        return None
    base_rate = to_float(payload.get("BaseRate"))

    price, currency = to_major_unit(last_rate, TASE_CURRENCY)
    previous_close, _ = to_major_unit(base_rate or None, TASE_CURRENCY)
    change = price - previous_close if previous_close else None

    return Quote(
        price=price,
        previous_close=previous_close,
        change=change,
        change_percent=to_float(payload.get("Change")),
        currency=currency,
        name=(
            payload.get("LongName")
            or payload.get("SecurityLongName")
            or payload.get("CompanyName")
            or payload.get("Name")
            or symbol
        ),
        source="tase-security",
    )


def parse_tase_fund(payload: Any, symbol: str) -> Quote | None:
    """Normalize a Maya ``fund/details`` payload. Requires ``UnitValuePrice``."""
    if not isinstance(payload, dict):
        return None
    unit_price = to_float(payload.get("UnitValuePrice"))
    if unit_price is None:
        return None

    price, currency = to_major_unit(unit_price, TASE_CURRENCY)
    day_yield = to_float(payload.get("DayYield"))
    previous_close = None
    change = None
    if day_yield is not None and day_yield > -100:
        previous_close = price / (1 + day_yield / 100)
        change = price - previous_close

    return Quote(
        price=price,
        previous_close=previous_close,
        change=change,
        change_percent=day_yield,
        currency=currency,
        name=payload.get("FundLongName") or payload.get("FundShortName") or symbol,
        source="tase-fund",
    )


def parse_tase_payload(payload: Any, symbol: str) -> tuple[Quote | None, HistoricalReference | None]:
    """
    Parse either payload shape and derive the historical reference from its yield.

    Returns:
        (quote, historical reference); both None when the payload is unusable
    """
    quote_data = parse_tase_security(payload, symbol)
    if quote_data is not None:
        yearly = payload.get("AnnualYield")
    else:
        quote_data = parse_tase_fund(payload, symbol)
        if quote_data is None:
            return None, None
        yearly = payload.get("YearYield")
    ref = HistoricalReference(
        ytd_price=None,
        one_year_ago_price=historical_from_yield(quote_data.price, yearly),
    )
    return quote_data, ref


class TaseStrategy:
    """
    Quote a TASE id from the security endpoint and the fund endpoint.

    Modes:
    - "sequential": security endpoint first, fund endpoint only if it had nothing
    - "concurrent": both at once, preferring the security endpoint's data
    """

    name = "tase"

    def __init__(
        self,
        chain: TransportChain,
        resolutions: ResolutionStore,
        api_base_url: str = "https://api.tase.co.il/api/",
        fund_api_base_url: str = "https://mayaapi.tase.co.il/api/",
        mode: str = "sequential",
        clock: Callable[[], float] = time.time,
    ):
        if mode not in {"sequential", "concurrent"}:
            raise ValueError(f"Invalid TASE endpoint mode '{mode}'. Must be 'sequential' or 'concurrent'.")
        self.chain = chain
        self.resolutions = resolutions
        self.api_base_url = api_base_url
        self.fund_api_base_url = fund_api_base_url
        self.mode = mode
        self.clock = clock

    def security_url(self, symbol: str) -> str:
        return f"{self.api_base_url}company/securitydata?securityId={quote(symbol, safe='')}&lang=1"

    def fund_url(self, symbol: str) -> str:
        return f"{self.fund_api_base_url}fund/details?fundId={quote(symbol, safe='')}"

    async def accept_payload(self, symbol: str, payload: Any) -> Quote | None:
        """Parse a raw payload and record its yield-derived historical reference."""
        quote_data, ref = parse_tase_payload(payload, symbol)
        if quote_data is None:
            return None
        await self._remember_historical(symbol, ref)
        return quote_data

    async def _remember_historical(self, symbol: str, ref: HistoricalReference | None) -> None:
        if ref is None or ref.one_year_ago_price is None:
            return
        await self.resolutions.put_historical(symbol, ref, self.clock())

    async def _fetch_security(self, symbol: str) -> Any:
        return await self.chain.fetch_json(self.security_url(symbol), TASE_STOCK_HEADERS, LEGACY_HEADERS)

    async def _fetch_fund(self, symbol: str) -> Any:
        return await self.chain.fetch_json(self.fund_url(symbol), TASE_FUND_HEADERS, LEGACY_HEADERS)

    async def try_fetch(self, symbol: str) -> Quote | None:
        if self.mode == "concurrent":
            security, fund = await asyncio.gather(
                self._fetch_security(symbol),
                self._fetch_fund(symbol),
            )
            security_quote, security_ref = parse_tase_payload(security, symbol)
            fund_quote, fund_ref = parse_tase_payload(fund, symbol)
            if security_quote is None:
                await self._remember_historical(symbol, fund_ref)
                return fund_quote
            # Security data wins; the fund endpoint only fills its gaps
            if fund_quote is not None:
                security_quote = security_quote.fill_missing(fund_quote)
            if security_ref is None or security_ref.one_year_ago_price is None:
                security_ref = fund_ref
            await self._remember_historical(symbol, security_ref)
            return security_quote

        quote_data = await self.accept_payload(symbol, await self._fetch_security(symbol))
        if quote_data is not None:
            return quote_data
        logger.info(f"[tase] {symbol} not found as a security, trying fund endpoint")
        return await self.accept_payload(symbol, await self._fetch_fund(symbol))
