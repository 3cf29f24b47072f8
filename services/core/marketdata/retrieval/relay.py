"""Client for the optional local batch relay (first transport layer)."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable
from urllib.parse import quote

from ..errors import TransientFetchError
from .transport import HttpClient, decode_json


logger = logging.getLogger(__name__)


class RelayClient:
    """
    Batch relay exposing ``/ping``, ``/quotes/batch`` and ``/securities/batch``.

    Liveness is probed with a short timeout and the outcome (alive or not) is
    cached for ``ping_ttl`` seconds so the probe is not repeated on every call.
    """

    def __init__(
        self,
        http: HttpClient,
        base_urls: list[str],
        ping_ttl: float = 60.0,
        probe_timeout: float = 1.5,
        batch_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.http = http
        self.base_urls = [u.rstrip("/") for u in base_urls]
        self.ping_ttl = ping_ttl
        self.probe_timeout = probe_timeout
        self.batch_timeout = batch_timeout
        self.clock = clock
        self.active_url: str | None = None
        self._checked_at: float | None = None

    def invalidate(self) -> None:
        """Forget the cached probe result."""
        self._checked_at = None
        self.active_url = None

    async def is_available(self) -> bool:
        now = self.clock()
        if self._checked_at is not None and now - self._checked_at < self.ping_ttl:
            return self.active_url is not None

        self.active_url = None
        for base in self.base_urls:
            try:
                payload = decode_json(
                    await self.http.get(f"{base}/ping", timeout=self.probe_timeout)
                )
            except TransientFetchError as e:
                logger.debug(f"Relay {base} not reachable: {e}")
                continue
            if isinstance(payload, dict) and payload.get("ok"):
                self.active_url = base
                logger.info(f"Using relay at {base}")
                break

        self._checked_at = now
        return self.active_url is not None

    async def fetch_quotes_batch(self, symbols: list[str]) -> dict[str, Any]:
        """Raw ticker payloads keyed by symbol (value None when the relay had nothing)."""
        return await self._batch("/quotes/batch", "symbols", symbols)

    async def fetch_securities_batch(self, ids: list[str]) -> dict[str, Any]:
        """Raw TASE security/fund payloads keyed by id."""
        return await self._batch("/securities/batch", "ids", ids)

    async def _batch(self, path: str, param: str, keys: list[str]) -> dict[str, Any]:
        if not keys or not await self.is_available():
            return {}

        url = f"{self.active_url}{path}?{param}={quote(','.join(keys), safe=',')}"
        try:
            payload = decode_json(await self.http.get(url, timeout=self.batch_timeout))
        except TransientFetchError as e:
            logger.warning(f"Relay batch {path} failed: {e}")
            self.invalidate()
            return {}

        if not isinstance(payload, dict):
            logger.warning(f"Relay batch {path} returned {type(payload).__name__}, expected object")
            return {}
        return {str(k).upper(): v for k, v in payload.items()}
