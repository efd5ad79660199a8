"""Lookup of the tariff row effective for a month."""

from __future__ import annotations

from typing import Iterable

from .models import MonthKey, TariffRow

__all__ = ["rate_for"]


def rate_for(rows: Iterable[TariffRow], month_key: MonthKey) -> TariffRow:
    """Return the latest row effective on or before ``month_key``.

    Months that predate every row get the earliest row as a best-effort rate.
    """
    ordered = sorted(rows, key=lambda row: row.effective_from)
    if not ordered:
        raise ValueError("at least one tariff row is required")

    selected = ordered[0]
    for row in ordered:
        if row.effective_from > month_key:
            break
        selected = row
    return selected
