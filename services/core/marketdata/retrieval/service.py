"""Market data service: routes symbols through provider fallback chains and caches results."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from datetime import date
from typing import Any, Awaitable, Callable, Iterable

from ..config import Settings, get_settings
from ..errors import ConfigurationError
from ..providers.base import ForexRates, HistoricalReference, Quote, QuoteStrategy
from ..providers.tase import TaseStrategy
from ..providers.twelve_data import TwelveDataClient, TwelveDataStrategy, parse_twelve_data_quote
from ..providers.yahoo import YahooChartStrategy
from ..storage.resolution import KeyValueStore, ResolutionStore
from ..storage.sqlite import MemoryStore
from ..utils.dates import one_year_ago_window, ytd_window
from .cache import TTLCache
from .ratelimit import SlidingWindowRateLimiter
from .relay import RelayClient
from .transport import CorsProxyTransport, HttpClient, build_transport_chain


logger = logging.getLogger(__name__)

# TASE securities and funds are identified by 5-9 digit numbers
TASE_ID_RE = re.compile(r"^\d{5,9}$")
FOREX_PAIR = "USD/ILS"

ProgressCallback = Callable[[str, str, int, int], Any]


def is_tase_id(symbol: str) -> bool:
    return bool(TASE_ID_RE.match(symbol))


def normalize_symbols(symbols: Iterable[str]) -> list[str]:
    """Uppercase, strip and dedupe while preserving order."""
    seen: set[str] = set()
    out: list[str] = []
    for raw in symbols:
        symbol = raw.strip().upper()
        if not symbol or symbol in seen:
            continue
        seen.add(symbol)
        out.append(symbol)
    return out


def _chunks(items: list[str], size: int) -> list[list[str]]:
    size = max(1, size)
    return [items[i:i + size] for i in range(0, len(items), size)]


class MarketDataService:
    """
    Owns all retrieval state: quote cache, rate limiter, relay probe and
    the persisted resolution store.

    Routing:
    - TASE ids (all-numeric): TASE security/fund endpoints, then Yahoo ``<id>.TA``
    - tickers: Twelve Data with exchange disambiguation, then Yahoo chart

    A reachable local relay is asked first, in one batch call per family.
    Whatever it cannot answer goes through the per-symbol chains in small
    concurrent chunks.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: KeyValueStore | None = None,
        http: HttpClient | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.http = http or HttpClient(self.settings.data_timeout_seconds)
        self.clock = clock
        self.sleep = sleep
        self.cache_ttl = self.settings.cache_ttl_seconds
        self.on_progress: ProgressCallback | None = None

        self.quotes: TTLCache[Quote] = TTLCache()
        self.resolutions = ResolutionStore(store if store is not None else MemoryStore())

        self.limiter = SlidingWindowRateLimiter(
            max_calls=self.settings.max_calls_per_minute,
            margin_seconds=self.settings.rate_limit_margin_seconds,
            backoff=self.settings.get_backoff_schedule(),
            clock=monotonic,
            sleep=sleep,
        )
        self.chain = build_transport_chain(
            self.http,
            self.settings.get_cors_proxies(),
            direct=self.settings.direct_upstream,
            timeout=self.settings.data_timeout_seconds,
        )
        self.relay = RelayClient(
            self.http,
            self.settings.get_relay_urls(),
            ping_ttl=self.settings.relay_ping_ttl_seconds,
            probe_timeout=self.settings.probe_timeout_seconds,
            batch_timeout=self.settings.batch_timeout_seconds,
            clock=monotonic,
        )
        self.twelve_data = TwelveDataClient(
            self.http,
            self.limiter,
            self.get_api_key,
            base_url=self.settings.twelve_data_base_url,
            timeout=self.settings.data_timeout_seconds,
        )
        self.tase = TaseStrategy(
            self.chain,
            self.resolutions,
            api_base_url=self.settings.tase_api_base_url,
            fund_api_base_url=self.settings.tase_fund_api_base_url,
            mode=self.settings.tase_endpoint_mode,
            clock=clock,
        )
        self.yahoo = YahooChartStrategy(self.chain, self.settings.yahoo_chart_base_url)

        self.ticker_strategies: list[QuoteStrategy] = [
            TwelveDataStrategy(self.twelve_data, self.resolutions),
            self.yahoo,
        ]
        self.tase_strategies: list[QuoteStrategy] = [
            self.tase,
            YahooChartStrategy(self.chain, self.settings.yahoo_chart_base_url, suffix=".TA"),
        ]

    async def load(self) -> None:
        """Read persisted state. Call once at startup."""
        await self.resolutions.load()

    async def configure(
        self,
        cache_ttl: float | None = None,
        api_key: str | None = None,
        cors_proxy: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """
        Update runtime options.

        Args:
            cache_ttl: Quote cache TTL in seconds
            api_key: Twelve Data API key (persisted)
            cors_proxy: Extra URL-rewriting relay prefix, tried before the defaults
            on_progress: Callback(symbol, kind, done, total) after each symbol
        """
        if cache_ttl is not None:
            if cache_ttl < 0:
                raise ValueError("cache_ttl must be non-negative")
            self.cache_ttl = float(cache_ttl)
        if api_key is not None:
            await self.resolutions.set_api_key(api_key.strip())
        if cors_proxy:
            layer = CorsProxyTransport(self.http, cors_proxy, timeout=self.settings.data_timeout_seconds)
            if self.chain.add_proxy(layer):
                logger.info(f"Added CORS relay {cors_proxy}")
        if on_progress is not None:
            self.on_progress = on_progress

    def get_api_key(self) -> str:
        return self.resolutions.api_key or (self.settings.twelve_data_api_key or "")

    def _notify(self, symbol: str, kind: str, done: int, total: int) -> None:
        if self.on_progress is not None:
            self.on_progress(symbol, kind, done, total)

    def _require_api_key(self, symbols: list[str]) -> None:
        if any(not is_tase_id(s) for s in symbols) and not self.get_api_key():
            raise ConfigurationError("API key not set")

    # ---- Quotes ----

    async def fetch_quotes(self, symbols: Iterable[str]) -> dict[str, Quote | None]:
        """
        Current quotes for the given symbols.

        Symbols within the cache TTL are served from the cache without any
        network call. A symbol no provider could resolve maps to None.

        Raises:
            ConfigurationError: ticker symbols need fetching and no API key is set
        """
        upper = normalize_symbols(symbols)
        if not upper:
            return {}

        now = self.clock()
        stale = [s for s in upper if self.quotes.is_stale(s, self.cache_ttl, now)]
        if stale:
            self._require_api_key(stale)
            await self._refresh_quotes(stale)

        return {s: self.quotes.get(s) for s in upper}

    async def _refresh_quotes(self, symbols: list[str]) -> dict[str, Quote | None]:
        fetched = await self._fetch_all_quotes(symbols)
        # Merge only after every chunk completed
        ts = self.clock()
        for symbol in symbols:
            self.quotes.put(symbol, fetched.get(symbol), ts)
        return fetched

    async def _fetch_all_quotes(self, symbols: list[str]) -> dict[str, Quote | None]:
        total = len(symbols)
        results: dict[str, Quote | None] = {}

        relay_up = await self.relay.is_available()
        if relay_up:
            results.update(await self._fetch_via_relay(symbols))
            for done, symbol in enumerate(results, start=1):
                self._notify(symbol, "quote", done, total)

        remaining = [s for s in symbols if results.get(s) is None]
        if remaining and relay_up:
            logger.info(f"Relay could not resolve {len(remaining)} symbol(s), using provider chains")

        for index, chunk in enumerate(_chunks(remaining, self.settings.batch_chunk_size)):
            if index > 0 and not relay_up and self.settings.chunk_delay_seconds > 0:
                await self.sleep(self.settings.chunk_delay_seconds)
            quotes = await asyncio.gather(*(self._fetch_one(s) for s in chunk))
            for symbol, quote_data in zip(chunk, quotes):
                results[symbol] = quote_data
                if quote_data is not None:
                    self._notify(symbol, "quote", len(results), total)

        return results

    async def _fetch_via_relay(self, symbols: list[str]) -> dict[str, Quote]:
        found: dict[str, Quote] = {}
        tase_ids = [s for s in symbols if is_tase_id(s)]
        tickers = [s for s in symbols if not is_tase_id(s)]

        if tase_ids:
            raw = await self.relay.fetch_securities_batch(tase_ids)
            for symbol in tase_ids:
                quote_data = await self.tase.accept_payload(symbol, raw.get(symbol))
                if quote_data is not None:
                    found[symbol] = quote_data

        if tickers:
            raw = await self.relay.fetch_quotes_batch(tickers)
            for symbol in tickers:
                quote_data = self.yahoo.accept_payload(symbol, raw.get(symbol))
                if quote_data is not None:
                    found[symbol] = quote_data

        return found

    async def _fetch_one(self, symbol: str) -> Quote | None:
        """Walk the symbol's strategy chain; never raises."""
        strategies = self.tase_strategies if is_tase_id(symbol) else self.ticker_strategies
        for strategy in strategies:
            try:
                quote_data = await strategy.try_fetch(symbol)
            except ConfigurationError as e:
                logger.warning(f"{strategy.name} rejected credentials for {symbol}: {e}")
                continue
            except Exception as e:
                logger.error(f"Unexpected error from {strategy.name} for {symbol}: {e}", exc_info=True)
                continue
            if quote_data is not None:
                return quote_data
            logger.info(f"{strategy.name} had no data for {symbol}, falling back")
        logger.warning(f"No data for {symbol} from any provider")
        return None

    def get_cached(self, symbol: str) -> Quote | None:
        """Previously fetched quote, without network I/O."""
        return self.quotes.get(symbol.strip().upper())

    # ---- Historical reference prices ----

    async def fetch_historical(self, symbols: Iterable[str]) -> dict[str, HistoricalReference | None]:
        """
        YTD-start and one-year-ago reference prices.

        Tickers use Twelve Data daily closes; TASE ids derive the one-year-ago
        price from the yearly yield in their quote.

        Raises:
            ConfigurationError: ticker symbols requested and no API key is set
        """
        upper = normalize_symbols(symbols)
        if not upper:
            return {}
        self._require_api_key(upper)

        now = self.clock()
        ttl = self.settings.historical_ttl_seconds
        stale = [s for s in upper if self.resolutions.historical.is_stale(s, ttl, now)]
        if stale:
            await self._fetch_all_historical(stale)

        return {s: self.resolutions.historical.get(s) for s in upper}

    async def _fetch_all_historical(self, symbols: list[str]) -> None:
        total = len(symbols)
        done = 0

        tase_ids = [s for s in symbols if is_tase_id(s)]
        if tase_ids:
            fetched = await self._refresh_quotes(tase_ids)
            for symbol in tase_ids:
                if fetched.get(symbol) is None:
                    continue
                # Quote found but it carried no usable yield: remember that for the TTL
                if self.resolutions.historical.is_stale(symbol, self.settings.historical_ttl_seconds, self.clock()):
                    await self.resolutions.put_historical(symbol, HistoricalReference(None, None), self.clock())
                done += 1
                self._notify(symbol, "historical", done, total)

        tickers = [s for s in symbols if not is_tase_id(s)]
        if not tickers:
            return

        today = date.fromtimestamp(self.clock())
        ytd_start, ytd_end = ytd_window(today)
        oya_start, oya_end = one_year_ago_window(today)

        for symbol in tickers:
            resolved = self.resolutions.resolved_symbol(symbol) or symbol
            try:
                ytd_price = await self.twelve_data.time_series_close(resolved, ytd_start, ytd_end)
                oya_price = await self.twelve_data.time_series_close(resolved, oya_start, oya_end)
            except ConfigurationError as e:
                logger.warning(f"Failed to fetch historical for {symbol}: {e}")
                continue
            if ytd_price is None and oya_price is None:
                logger.warning(f"No historical closes for {symbol}")
                continue
            await self.resolutions.put_historical(
                symbol, HistoricalReference(ytd_price, oya_price), self.clock()
            )
            done += 1
            self._notify(symbol, "historical", done, total)

    def get_historical(self, symbol: str) -> HistoricalReference | None:
        """Cached historical reference, without network I/O."""
        return self.resolutions.historical.get(symbol.strip().upper())

    # ---- Forex ----

    async def fetch_forex_rates(self) -> ForexRates:
        """
        USD/ILS now (1h TTL), at the YTD start and one year ago (24h TTL).

        Raises:
            ConfigurationError: no API key is set, or it was rejected
        """
        if not self.get_api_key():
            raise ConfigurationError("API key not set")

        now = self.clock()
        forex = self.resolutions.forex
        need_current = forex.is_stale("current", self.settings.forex_ttl_seconds, now)
        need_historical = forex.is_stale("ytd_start", self.settings.historical_ttl_seconds, now)
        updates: dict[str, float] = {}

        if need_current:
            payload = await self.twelve_data.get("/quote", {"symbol": FOREX_PAIR})
            quote_data = parse_twelve_data_quote(payload, FOREX_PAIR)
            if quote_data is not None and quote_data.price is not None:
                updates["current"] = quote_data.price
            self._notify(FOREX_PAIR, "forex", 1, 2)

        if need_historical:
            today = date.fromtimestamp(now)
            ytd_rate = await self.twelve_data.time_series_close(FOREX_PAIR, *ytd_window(today))
            oya_rate = await self.twelve_data.time_series_close(FOREX_PAIR, *one_year_ago_window(today))
            if ytd_rate is not None:
                updates["ytd_start"] = ytd_rate
            if oya_rate is not None:
                updates["one_year_ago"] = oya_rate
            self._notify(FOREX_PAIR, "forex", 2, 2)

        if updates:
            await self.resolutions.put_forex(updates, self.clock())
        return self.get_forex_rates()

    def get_forex_rates(self) -> ForexRates:
        """Cached USD/ILS rates, without network I/O."""
        forex = self.resolutions.forex
        return ForexRates(
            current=forex.get("current"),
            ytd_start=forex.get("ytd_start"),
            one_year_ago=forex.get("one_year_ago"),
        )

    async def clear_cache(self) -> None:
        """Drop quotes, historical references, forex rates and exchange resolutions."""
        self.quotes.clear()
        await self.resolutions.clear()
        logger.info("Market data cache cleared")
