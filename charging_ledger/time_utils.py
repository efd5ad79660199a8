"""Calendar helpers for the monthly ledger window."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterator, Optional

from .models import MonthKey

__all__ = ["last_closed_month", "month_range", "utc_now"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def last_closed_month(now: Optional[datetime] = None) -> MonthKey:
    """Return the most recent fully elapsed calendar month (UTC)."""
    current = now or utc_now()
    if current.tzinfo is not None:
        current = current.astimezone(timezone.utc)
    return MonthKey(current.year, current.month).previous()


def month_range(start: MonthKey, end: MonthKey) -> Iterator[MonthKey]:
    """Yield every month from start through end, inclusive."""
    current = start
    while current <= end:
        yield current
        current = current.next()
