"""Helpers for parsing Swedish formatted numbers and rounding currency."""

from __future__ import annotations

import math
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

__all__ = ["parse_sv_number", "round2", "to_decimal"]

_WHITESPACE_PATTERN = re.compile(r"\s+")
_CENT = Decimal("0.01")


def parse_sv_number(raw: object) -> Optional[float]:
    """Parse a table cell such as '1 234,56' into a float.

    Returns None for empty, unparsable or non-finite values so callers can
    skip the cell.
    """
    if raw is None:
        return None
    normalized = _WHITESPACE_PATTERN.sub("", str(raw)).replace(",", ".")
    if not normalized:
        return None
    try:
        value = float(normalized)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def to_decimal(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps the shortest repr, so 1.005 stays 1.005 instead of 1.00499...
    return Decimal(str(value))


def round2(value: float | int | Decimal) -> float:
    """Round half-up to two decimals."""
    return float(to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP))
