"""HTTP capability and the transport layers quotes are fetched through.

Upstream feeds sit behind bot protection that sometimes answers with an HTML
challenge page instead of JSON. Such a page is treated as a failure of the
layer that received it, and the next layer is tried.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import quote

import aiohttp

from ..errors import BlockedResponseError, RateLimitedError, TransientFetchError


logger = logging.getLogger(__name__)


_BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

YAHOO_HEADERS = {
    "User-Agent": _BROWSER_UA,
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
}

TASE_STOCK_HEADERS = {
    "User-Agent": _BROWSER_UA,
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9,he;q=0.8",
    "Accept-Encoding": "identity",
    "Cache-Control": "no-cache",
    "Referer": "https://www.tase.co.il/",
    "Origin": "https://www.tase.co.il",
}

TASE_FUND_HEADERS = {
    "User-Agent": _BROWSER_UA,
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9,he;q=0.8",
    "Accept-Encoding": "identity",
    "Cache-Control": "no-cache",
    "Referer": "https://maya.tase.co.il/",
    "Origin": "https://maya.tase.co.il",
    "X-Maya-With": "allow",
}

# Old IE profile; occasionally let through when the browser profile is challenged
LEGACY_HEADERS = {
    "User-Agent": "Mozilla/4.0 (compatible; MSIE 6.0; Windows NT 5.1; FSL 7.0.6.01001)",
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US",
    "Cache-Control": "no-cache",
    "Referer": "https://www.tase.co.il/",
}


@dataclass
class HttpResponse:
    """Status and decoded body of a GET."""
    status: int
    text: str


class HttpClient:
    """Thin aiohttp wrapper: one GET with headers and an explicit timeout."""

    def __init__(self, default_timeout: float = 8.0):
        self.default_timeout = default_timeout

    async def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        """
        Issue a GET request.

        Raises:
            TransientFetchError: on network errors and timeouts. A timed-out
                call is treated exactly like a failed one.
        """
        total = timeout if timeout is not None else self.default_timeout
        client_timeout = aiohttp.ClientTimeout(total=total)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.get(url, headers=headers) as response:
                    text = await response.text()
                    return HttpResponse(status=response.status, text=text)
        except asyncio.TimeoutError as e:
            raise TransientFetchError(f"Timed out after {total}s: {url}") from e
        except aiohttp.ClientError as e:
            raise TransientFetchError(f"Network error for {url}: {e}") from e
        except UnicodeDecodeError as e:
            raise TransientFetchError(f"Undecodable body from {url}") from e


def looks_like_json(body: str) -> bool:
    """True if the first non-whitespace character opens a JSON object or array."""
    stripped = body.lstrip()
    return bool(stripped) and stripped[0] in "{["


def decode_json(response: HttpResponse) -> Any:
    """
    Decode a JSON response body.

    A literal ``null`` body decodes to None (upstream "not found").

    Raises:
        RateLimitedError: HTTP 429
        TransientFetchError: any other non-200 status or malformed JSON
        BlockedResponseError: the body is not JSON (block/challenge page)
    """
    if response.status == 429:
        raise RateLimitedError("HTTP 429 Too Many Requests")
    if response.status != 200:
        raise TransientFetchError(f"HTTP {response.status}")
    if response.text.strip() == "null":
        return None
    if not looks_like_json(response.text):
        preview = response.text.lstrip()[:80].replace("\n", " ")
        raise BlockedResponseError(f"Non-JSON body: {preview!r}")
    try:
        return json.loads(response.text)
    except ValueError as e:
        raise TransientFetchError(f"Malformed JSON: {e}") from e


class DirectTransport:
    """Fetch the upstream URL as-is."""

    name = "direct"

    def __init__(self, http: HttpClient, timeout: float = 8.0):
        self.http = http
        self.timeout = timeout

    def build_url(self, target_url: str) -> str:
        return target_url

    async def fetch_json(
        self,
        target_url: str,
        headers: dict[str, str] | None = None,
        legacy_headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Fetch and decode one URL through this layer.

        On failure, retries once immediately with the legacy header profile
        (when given). Never retries more than that.
        """
        url = self.build_url(target_url)
        try:
            return decode_json(await self.http.get(url, headers=headers, timeout=self.timeout))
        except TransientFetchError as e:
            if legacy_headers is None:
                raise
            logger.info(f"[{self.name}] {e}; retrying with legacy headers")
        return decode_json(await self.http.get(url, headers=legacy_headers, timeout=self.timeout))


class CorsProxyTransport(DirectTransport):
    """Generic URL-rewriting relay service (e.g. corsproxy.io)."""

    def __init__(self, http: HttpClient, prefix: str, encode: bool = True, timeout: float = 8.0):
        super().__init__(http, timeout)
        self.prefix = prefix
        self.encode = encode
        self.name = f"proxy:{prefix}"

    def build_url(self, target_url: str) -> str:
        return self.prefix + (quote(target_url, safe="") if self.encode else target_url)


class TransportChain:
    """Ordered transport layers; each is tried only if the previous one failed."""

    def __init__(self, layers: Iterable[DirectTransport]):
        self.layers = list(layers)

    def add_proxy(self, layer: CorsProxyTransport) -> bool:
        """Insert a proxy ahead of the existing proxies. Returns False if already present."""
        for existing in self.layers:
            if isinstance(existing, CorsProxyTransport) and existing.prefix == layer.prefix:
                return False
        index = next(
            (i for i, l in enumerate(self.layers) if isinstance(l, CorsProxyTransport)),
            len(self.layers),
        )
        self.layers.insert(index, layer)
        return True

    async def fetch_json(
        self,
        target_url: str,
        headers: dict[str, str] | None = None,
        legacy_headers: dict[str, str] | None = None,
    ) -> Any:
        """Return the first decoded payload any layer produces, or None if all fail."""
        for layer in self.layers:
            try:
                return await layer.fetch_json(target_url, headers, legacy_headers)
            except BlockedResponseError as e:
                logger.warning(f"[{layer.name}] block page for {target_url}: {e}. Trying next layer.")
            except TransientFetchError as e:
                logger.warning(f"[{layer.name}] failed for {target_url}: {e}. Trying next layer.")
        logger.warning(f"All transport layers failed for {target_url}")
        return None


def build_transport_chain(
    http: HttpClient,
    proxies: Iterable[str],
    direct: bool = True,
    timeout: float = 8.0,
) -> TransportChain:
    """Direct upstream first (if enabled), then the CORS relays in order."""
    layers: list[DirectTransport] = []
    if direct:
        layers.append(DirectTransport(http, timeout))
    for prefix in proxies:
        layers.append(CorsProxyTransport(http, prefix, encode=True, timeout=timeout))
    return TransportChain(layers)
