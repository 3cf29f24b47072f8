from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


# Get the directory where this config.py file is located
_config_dir = Path(__file__).parent
_env_file = _config_dir.parent / ".env"  # services/core/.env


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Persisted key-value state (exchange resolutions, historical, forex, api key)
    sqlite_path: str = "data/marketdata.db"

    # Cache TTLs (seconds)
    cache_ttl_seconds: float = 5 * 60
    historical_ttl_seconds: float = 24 * 60 * 60
    forex_ttl_seconds: float = 60 * 60

    # Twelve Data (ticker symbols, forex); key may also be set at runtime via configure()
    twelve_data_api_key: str | None = None
    twelve_data_base_url: str = "https://api.twelvedata.com"
    max_calls_per_minute: int = 8  # free-tier quota
    rate_limit_margin_seconds: float = 0.2
    rate_limit_backoff_seconds: str = "3,6"  # waits between 429 retries

    # Upstream endpoints
    yahoo_chart_base_url: str = "https://query1.finance.yahoo.com/v8/finance/chart/"
    tase_api_base_url: str = "https://api.tase.co.il/api/"
    tase_fund_api_base_url: str = "https://mayaapi.tase.co.il/api/"
    tase_endpoint_mode: str = "sequential"  # "sequential" | "concurrent"

    # Transport layers, in priority order
    relay_urls: str = "http://localhost:8081/api"  # comma-separated; empty disables the relay layer
    relay_ping_ttl_seconds: float = 60.0
    direct_upstream: bool = True
    cors_proxies: str = "https://corsproxy.io/?url=,https://api.codetabs.com/v1/proxy/?quest="

    # Timeouts (seconds)
    probe_timeout_seconds: float = 1.5
    data_timeout_seconds: float = 8.0
    batch_timeout_seconds: float = 30.0

    # Batch admission control
    batch_chunk_size: int = 3
    chunk_delay_seconds: float = 0.5

    def get_relay_urls(self) -> list[str]:
        """Relay base URLs without trailing slashes."""
        return [u.strip().rstrip("/") for u in self.relay_urls.split(",") if u.strip()]

    def get_cors_proxies(self) -> list[str]:
        """CORS relay prefixes, tried in order."""
        return [p.strip() for p in self.cors_proxies.split(",") if p.strip()]

    def get_backoff_schedule(self) -> list[float]:
        """Parse the 429 backoff schedule."""
        return [float(s.strip()) for s in self.rate_limit_backoff_seconds.split(",") if s.strip()]


def get_settings() -> Settings:
    return Settings()
