"""
Command-line access to the market data service.

Usage:
    python -m marketdata.cli quotes AAPL MSFT 512345
    python -m marketdata.cli historical AAPL --api_key YOUR_KEY
    python -m marketdata.cli forex
    python -m marketdata.cli clear-cache
    python -m marketdata.cli serve --port 8080
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict

import uvicorn

from .config import get_settings
from .errors import ConfigurationError
from .retrieval.service import MarketDataService
from .storage.sqlite import SQLiteStore


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Portfolio market data - quotes, historical references, USD/ILS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m marketdata.cli quotes AAPL 512345
  python -m marketdata.cli historical AAPL CAAP
  python -m marketdata.cli forex --api_key YOUR_KEY
        """
    )
    parser.add_argument(
        "--db",
        default=None,
        help="SQLite path for persisted state (default: settings.sqlite_path)"
    )
    parser.add_argument(
        "--api_key",
        default=None,
        help="Twelve Data API key (persisted for later runs)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log fallback decisions"
    )

    sub = parser.add_subparsers(dest="command", required=True)
    quotes = sub.add_parser("quotes", help="Fetch current quotes")
    quotes.add_argument("symbols", nargs="+")
    historical = sub.add_parser("historical", help="Fetch YTD and 1Y reference prices")
    historical.add_argument("symbols", nargs="+")
    sub.add_parser("forex", help="Fetch USD/ILS rates")
    sub.add_parser("clear-cache", help="Drop cached quotes, references and resolutions")
    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    return parser.parse_args(argv)


def _progress(symbol: str, kind: str, done: int, total: int) -> None:
    print(f"  {kind} {symbol} ({done}/{total})", file=sys.stderr)


async def run(args) -> int:
    settings = get_settings()
    service = MarketDataService(settings, SQLiteStore(args.db or settings.sqlite_path))
    await service.load()
    await service.configure(api_key=args.api_key, on_progress=_progress)

    try:
        if args.command == "quotes":
            result = await service.fetch_quotes(args.symbols)
            output = {s: q.to_dict() if q else None for s, q in result.items()}
        elif args.command == "historical":
            refs = await service.fetch_historical(args.symbols)
            output = {s: r.to_dict() if r else None for s, r in refs.items()}
        elif args.command == "forex":
            output = asdict(await service.fetch_forex_rates())
        else:
            await service.clear_cache()
            output = {"ok": True}
    except ConfigurationError as e:
        print(f"❌ {e}. Pass --api_key or set TWELVE_DATA_API_KEY.", file=sys.stderr)
        return 2

    print(json.dumps(output, indent=2, ensure_ascii=False))
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if args.command == "serve":
        return serve(args)
    return asyncio.run(run(args))


def serve(args) -> int:
    """Run the FastAPI app under uvicorn."""
    settings = get_settings()
    host = args.host or settings.host
    port = args.port or settings.port
    print(f"🚀 Market data API on http://{host}:{port}", file=sys.stderr)
    uvicorn.run("marketdata.main:app", host=host, port=port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
