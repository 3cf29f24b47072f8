"""
Tests for the quote API endpoints and the CLI.

Endpoints are called directly with an explicit service, the same way
FastAPI would inject it.
"""

import json

import pytest
from fastapi import HTTPException

from marketdata import cli
from marketdata.api.quotes import (
    ConfigRequest,
    delete_cache,
    get_cached_quote,
    get_forex,
    get_historical,
    get_quotes,
    get_service,
    post_config,
    set_service,
)

from conftest import TASE_FUND, TASE_SECURITY


@pytest.mark.asyncio
async def test_quotes_endpoint(make_service, http):
    http.add_json("fundId=512345", TASE_FUND)
    service = make_service()

    result = await get_quotes(symbols="512345, 999999", service=service)

    assert result["512345"]["price"] == 152.30
    assert result["512345"]["currency"] == "ILS"
    assert result["999999"] is None
    assert (await get_cached_quote("512345", service=service))["source"] == "tase-fund"
    assert await get_cached_quote("AAPL", service=service) is None


@pytest.mark.asyncio
async def test_missing_api_key_is_bad_request(make_service):
    service = make_service()

    for call in (
        get_quotes(symbols="AAPL", service=service),
        get_historical(symbols="AAPL", service=service),
        get_forex(service=service),
    ):
        with pytest.raises(HTTPException) as exc_info:
            await call
        assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_historical_endpoint(make_service, http):
    http.add_json("securityId=629014", TASE_SECURITY)
    service = make_service()

    result = await get_historical(symbols="629014", service=service)

    assert result["629014"]["ytd_price"] is None
    assert result["629014"]["one_year_ago_price"] == pytest.approx(251.36, abs=0.01)


@pytest.mark.asyncio
async def test_config_and_cache_endpoints(make_service, http):
    http.add_json("fundId=512345", TASE_FUND)
    service = make_service()

    result = await post_config(ConfigRequest(api_key="X", cache_ttl_seconds=60), service=service)
    assert result == {"ok": True, "api_key_set": True, "cache_ttl_seconds": 60.0}

    await get_quotes(symbols="512345", service=service)
    assert await delete_cache(service=service) == {"ok": True}
    assert service.get_cached("512345") is None
    assert service.get_api_key() == "X"


def test_config_request_rejects_negative_ttl():
    with pytest.raises(ValueError):
        ConfigRequest(cache_ttl_seconds=-5)


def test_service_registry(make_service):
    service = make_service()
    set_service(service)
    assert get_service() is service


def test_cli_parse_args():
    args = cli.parse_args(["--api_key", "K", "quotes", "AAPL", "512345"])
    assert args.command == "quotes"
    assert args.symbols == ["AAPL", "512345"]
    assert args.api_key == "K"

    args = cli.parse_args(["--db", "/tmp/x.db", "clear-cache"])
    assert args.command == "clear-cache"
    assert args.db == "/tmp/x.db"

    with pytest.raises(SystemExit):
        cli.parse_args(["quotes"])


@pytest.mark.asyncio
async def test_cli_without_key_exits_with_error(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("TWELVE_DATA_API_KEY", raising=False)
    args = cli.parse_args(["--db", str(tmp_path / "kv.db"), "forex"])

    code = await cli.run(args)

    assert code == 2
    assert "API key not set" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_cli_clear_cache(tmp_path, capsys):
    args = cli.parse_args(["--db", str(tmp_path / "kv.db"), "clear-cache"])

    code = await cli.run(args)

    assert code == 0
    assert json.loads(capsys.readouterr().out) == {"ok": True}


@pytest.mark.asyncio
async def test_health_and_providers(make_service, monkeypatch):
    from marketdata import main

    service = make_service(twelve_data_api_key="K")
    monkeypatch.setattr(main, "service", service)

    health = await main.health()
    assert health["ok"] is True
    assert health["relay"] is None

    providers = await main.get_providers()
    assert providers["twelvedata"]["api_key_set"] is True
    assert providers["transport"]["layers"] == ["direct", "proxy:https://proxy.test/?url="]
