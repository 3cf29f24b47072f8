"""Read-through persisted state: API key, exchange resolutions, historical and forex caches."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from ..errors import PersistenceError
from ..providers.base import HistoricalReference
from ..retrieval.cache import TTLCache


logger = logging.getLogger(__name__)


API_KEY = "api_key"
EXCHANGE_MAP = "exchange_map"
HISTORICAL = "historical"
FOREX = "forex"


class KeyValueStore(Protocol):
    async def init(self) -> None: ...
    async def get(self, key: str) -> str | None: ...
    async def set(self, key: str, value: str) -> None: ...
    async def delete(self, key: str) -> None: ...


class ResolutionStore:
    """
    In-memory state backed by a key-value store.

    Everything is loaded once at startup; each write serializes the whole
    structure for its key (no diffing, last writer wins). Storage failures
    are logged and the in-memory state keeps working.
    """

    def __init__(self, backend: KeyValueStore):
        self.backend = backend
        self.api_key: str = ""
        self.exchange_map: dict[str, str] = {}
        self.historical: TTLCache[HistoricalReference] = TTLCache()
        self.forex: TTLCache[float] = TTLCache()

    async def load(self) -> None:
        try:
            await self.backend.init()
        except PersistenceError as e:
            logger.warning(f"Persisted state unavailable, running in memory only: {e}")
            return

        api_key = await self._read(API_KEY)
        self.api_key = api_key if isinstance(api_key, str) else ""

        exchange_map = await self._read(EXCHANGE_MAP)
        if isinstance(exchange_map, dict):
            self.exchange_map = {
                str(k): str(v) for k, v in exchange_map.items() if isinstance(v, str)
            }

        self.historical = TTLCache.from_dict(await self._read(HISTORICAL), HistoricalReference.from_dict)
        self.forex = TTLCache.from_dict(await self._read(FOREX), float)
        logger.info(
            f"Loaded {len(self.exchange_map)} exchange resolutions, "
            f"{len(self.historical)} historical references"
        )

    async def _read(self, key: str) -> Any:
        try:
            raw = await self.backend.get(key)
            return json.loads(raw) if raw else None
        except (PersistenceError, ValueError) as e:
            logger.warning(f"Ignoring unreadable persisted {key}: {e}")
            return None

    async def _write(self, key: str, value: Any) -> None:
        try:
            await self.backend.set(key, json.dumps(value))
        except (PersistenceError, TypeError, ValueError) as e:
            logger.warning(f"Could not persist {key}: {e}")

    async def _delete(self, key: str) -> None:
        try:
            await self.backend.delete(key)
        except PersistenceError as e:
            logger.warning(f"Could not delete persisted {key}: {e}")

    async def set_api_key(self, api_key: str) -> None:
        self.api_key = api_key
        await self._write(API_KEY, api_key)

    def resolved_symbol(self, symbol: str) -> str | None:
        return self.exchange_map.get(symbol)

    async def set_resolution(self, symbol: str, resolved: str) -> None:
        if self.exchange_map.get(symbol) == resolved:
            return
        self.exchange_map[symbol] = resolved
        await self._write(EXCHANGE_MAP, self.exchange_map)

    async def put_historical(self, symbol: str, ref: HistoricalReference, ts: float) -> None:
        self.historical.put(symbol, ref, ts)
        await self._write(HISTORICAL, self.historical.to_dict(HistoricalReference.to_dict))

    async def put_forex(self, rates: dict[str, float], ts: float) -> None:
        for name, rate in rates.items():
            self.forex.put(name, rate, ts)
        await self._write(FOREX, self.forex.to_dict(float))

    async def clear(self) -> None:
        """Drop cached state (memory and persisted). The API key is kept."""
        self.exchange_map.clear()
        self.historical.clear()
        self.forex.clear()
        for key in (EXCHANGE_MAP, HISTORICAL, FOREX):
            await self._delete(key)
