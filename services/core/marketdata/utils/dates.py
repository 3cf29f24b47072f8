from __future__ import annotations

from datetime import date, timedelta


def ytd_window(today: date) -> tuple[str, str]:
    """Last trading days of the previous year (Dec 26-31)."""
    year = today.year - 1
    return f"{year}-12-26", f"{year}-12-31"


def one_year_ago_window(today: date) -> tuple[str, str]:
    """A week around the date 365 days ago (-4/+3 days), to land on a trading day."""
    anchor = today - timedelta(days=365)
    start = anchor - timedelta(days=4)
    end = anchor + timedelta(days=3)
    return start.isoformat(), end.isoformat()
