"""Base types and protocols for quote providers."""

from __future__ import annotations

from dataclasses import dataclass, asdict, replace
from typing import Any, Protocol


# Minor-unit currency codes as reported by upstream feeds -> (major code, divisor)
MINOR_UNITS: dict[str, tuple[str, int]] = {
    "ILA": ("ILS", 100),  # agorot
    "GBp": ("GBP", 100),  # pence
    "GBX": ("GBP", 100),
    "ZAc": ("ZAR", 100),
}


@dataclass
class Quote:
    """Unified quote representation. Prices are in the major currency unit."""
    price: float | None
    previous_close: float | None
    change: float | None
    change_percent: float | None
    currency: str
    name: str
    source: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def fill_missing(self, other: Quote) -> Quote:
        """Copy of this quote with its None price fields taken from another quote."""
        return replace(
            self,
            price=self.price if self.price is not None else other.price,
            previous_close=self.previous_close if self.previous_close is not None else other.previous_close,
            change=self.change if self.change is not None else other.change,
            change_percent=self.change_percent if self.change_percent is not None else other.change_percent,
        )


@dataclass
class HistoricalReference:
    """Reference closes used for YTD and 1Y performance."""
    ytd_price: float | None
    one_year_ago_price: float | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoricalReference:
        return cls(
            ytd_price=data.get("ytd_price"),
            one_year_ago_price=data.get("one_year_ago_price"),
        )


@dataclass
class ForexRates:
    """USD/ILS rates: now, at the start of the year and one year ago."""
    current: float | None
    ytd_start: float | None
    one_year_ago: float | None


class QuoteStrategy(Protocol):
    """Protocol for one step of a provider fallback chain."""

    name: str

    async def try_fetch(self, symbol: str) -> Quote | None:
        """
        Fetch a quote for a symbol.

        Returns None when this provider has no usable data. Transient
        failures should be handled internally; only ConfigurationError
        may propagate.
        """
        ...


def to_float(value: Any) -> float | None:
    """Coerce provider numbers (often strings) to float, None on failure."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_major_unit(value: float | None, currency: str) -> tuple[float | None, str]:
    """Convert a minor-unit amount to the major unit, returning the major currency code."""
    major = MINOR_UNITS.get(currency)
    if major is None:
        return value, currency.upper() if currency else currency
    code, divisor = major
    if value is None:
        return None, code
    return value / divisor, code
