"""Monthly cost allocation between the primary and secondary identity."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .models import Breakdown, TariffRow, WarningKind
from .numeral import round2, to_decimal

__all__ = ["MonthCalculation", "calculate_month"]


@dataclass(frozen=True, slots=True)
class MonthCalculation:
    applied_rates: Dict[str, float]
    primary: Breakdown
    secondary: Breakdown
    warnings: Tuple[WarningKind, ...]


def calculate_month(
    spot_price: Optional[float],
    usage_primary: Optional[float],
    usage_secondary: Optional[float],
    rates: TariffRow,
) -> MonthCalculation:
    """Split one month's cost into energy and grid parts per identity.

    Unknown inputs never raise: the affected identity gets a zero-filled
    breakdown and the month carries a warning instead.
    """
    warnings: List[WarningKind] = []
    if spot_price is None:
        warnings.append(WarningKind.MISSING_SPOT_PRICE)
    if usage_primary is None:
        warnings.append(WarningKind.MISSING_USAGE_PRIMARY)
    if usage_secondary is None:
        warnings.append(WarningKind.MISSING_USAGE_SECONDARY)

    difference: Optional[Decimal] = None
    if spot_price is not None:
        difference = to_decimal(spot_price) - to_decimal(rates.local_discount)

    return MonthCalculation(
        applied_rates=rates.applied(),
        primary=_breakdown(difference, usage_primary, rates),
        secondary=_breakdown(difference, usage_secondary, rates),
        warnings=tuple(warnings),
    )


def _breakdown(difference: Optional[Decimal], kwh: Optional[float], rates: TariffRow) -> Breakdown:
    # Only the displayed price is rounded; the energy cost uses the exact difference.
    adjusted = round2(difference) if difference is not None else None
    if difference is None or kwh is None:
        return Breakdown.zero(adjusted)

    usage = to_decimal(kwh)
    grid_fee = (
        to_decimal(rates.grid_transfer)
        + to_decimal(rates.energy_tax)
        + to_decimal(rates.norrland_deduction)
    )
    energy_cost = round2(usage * difference / 100)
    grid_cost = round2(usage * grid_fee / 100)
    # Components are rounded independently; the total may differ from
    # round2(unrounded sum) by one öre.
    total_cost = round2(to_decimal(energy_cost) + to_decimal(grid_cost))
    return Breakdown(
        adjusted_spot_price=adjusted,
        energy_cost=energy_cost,
        grid_cost=grid_cost,
        total_cost=total_cost,
    )
