"""Error taxonomy for the retrieval layer.

Internal code raises these; the public service boundary converts everything
except ConfigurationError into "no data" for the affected symbol.
"""

from __future__ import annotations


class MarketDataError(Exception):
    """Base class for retrieval errors."""


class ConfigurationError(MarketDataError):
    """Missing or rejected credential. Fatal to the current call only."""


class TransientFetchError(MarketDataError):
    """Network failure, timeout, non-200 status or unparseable body."""


class BlockedResponseError(TransientFetchError):
    """Upstream answered with an HTML block/challenge page instead of JSON."""


class RateLimitedError(TransientFetchError):
    """Upstream signalled "too many requests"."""


class PersistenceError(MarketDataError):
    """Reading or writing the persisted key-value state failed."""
