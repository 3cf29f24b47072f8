from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI

from .api import quotes
from .config import get_settings
from .retrieval.service import MarketDataService
from .storage.sqlite import SQLiteStore


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

settings = get_settings()
store = SQLiteStore(settings.sqlite_path)
service: MarketDataService | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for startup/shutdown."""
    global service

    # Startup: load persisted resolutions and caches
    service = MarketDataService(settings, store)
    await service.load()
    quotes.set_service(service)

    yield


app = FastAPI(
    title="Portfolio Market Data API",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(quotes.router)


@app.get("/health")
async def health() -> dict[str, Any]:
    relay = service.relay.active_url if service else None
    return {"ok": True, "ts": int(time.time()), "relay": relay}


@app.get("/v1/providers")
async def get_providers() -> dict[str, Any]:
    """Get information about the configured transport layers and providers."""
    return {
        "twelvedata": {
            "api_key_set": bool(service and service.get_api_key()),
            "max_calls_per_minute": settings.max_calls_per_minute,
            "calls_in_window": service.limiter.in_window() if service else 0,
        },
        "tase": {"endpoint_mode": settings.tase_endpoint_mode},
        "transport": {
            "relays": settings.get_relay_urls(),
            "active_relay": service.relay.active_url if service else None,
            "layers": [layer.name for layer in service.chain.layers] if service else [],
        },
    }
