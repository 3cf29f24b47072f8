"""
Quote API endpoints for the portfolio UI.

Thin layer over MarketDataService: parses comma-separated symbol lists and
maps ConfigurationError to HTTP 400.
"""

from dataclasses import asdict
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..errors import ConfigurationError
from ..retrieval.service import MarketDataService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["quotes"])

# Service instance (set by main.py)
_service: MarketDataService | None = None


def set_service(service: MarketDataService):
    """Set the service instance."""
    global _service
    _service = service


def get_service() -> MarketDataService:
    """Get the service instance."""
    if _service is None:
        raise RuntimeError("Service not initialized")
    return _service


def _split(symbols: str) -> list[str]:
    return [s for s in symbols.split(",") if s.strip()]


class ConfigRequest(BaseModel):
    api_key: Optional[str] = None
    cache_ttl_seconds: Optional[float] = Field(default=None, ge=0)
    cors_proxy: Optional[str] = None


@router.get("/quotes")
async def get_quotes(
    symbols: str = Query("", description="Comma-separated symbols, e.g. AAPL,512345"),
    service: MarketDataService = Depends(get_service),
) -> Dict[str, Any]:
    """
    Current quotes keyed by symbol; unresolvable symbols map to null.

    Example:
        {"AAPL": {"price": 276.21, "currency": "USD", ...}, "512345": null}
    """
    try:
        quotes = await service.fetch_quotes(_split(symbols))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {s: q.to_dict() if q else None for s, q in quotes.items()}


@router.get("/quotes/{symbol}/cached")
async def get_cached_quote(
    symbol: str,
    service: MarketDataService = Depends(get_service),
) -> Optional[Dict[str, Any]]:
    """Cached quote without any upstream call."""
    quote_data = service.get_cached(symbol)
    return quote_data.to_dict() if quote_data else None


@router.get("/historical")
async def get_historical(
    symbols: str = Query("", description="Comma-separated symbols"),
    service: MarketDataService = Depends(get_service),
) -> Dict[str, Any]:
    """YTD-start and one-year-ago reference prices keyed by symbol."""
    try:
        refs = await service.fetch_historical(_split(symbols))
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {s: r.to_dict() if r else None for s, r in refs.items()}


@router.get("/forex")
async def get_forex(service: MarketDataService = Depends(get_service)) -> Dict[str, Any]:
    """USD/ILS rates."""
    try:
        rates = await service.fetch_forex_rates()
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return asdict(rates)


@router.post("/config")
async def post_config(
    req: ConfigRequest,
    service: MarketDataService = Depends(get_service),
) -> Dict[str, Any]:
    await service.configure(
        cache_ttl=req.cache_ttl_seconds,
        api_key=req.api_key,
        cors_proxy=req.cors_proxy,
    )
    return {"ok": True, "api_key_set": bool(service.get_api_key()), "cache_ttl_seconds": service.cache_ttl}


@router.delete("/cache")
async def delete_cache(service: MarketDataService = Depends(get_service)) -> Dict[str, Any]:
    await service.clear_cache()
    return {"ok": True}
