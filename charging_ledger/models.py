"""Domain models for the monthly charging cost ledger."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


@dataclass(frozen=True, order=True, slots=True)
class MonthKey:
    """Calendar month used to index every per-month series."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be within 1..12, got {self.month}")

    @classmethod
    def parse(cls, value: str) -> "MonthKey":
        """Parse a 'YYYY-MM' string."""
        try:
            year_text, month_text = str(value).strip().split("-")
            return cls(int(year_text), int(month_text))
        except ValueError as exc:
            raise ValueError(f"invalid month key '{value}', expected YYYY-MM") from exc

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def next(self) -> "MonthKey":
        if self.month == 12:
            return MonthKey(self.year + 1, 1)
        return MonthKey(self.year, self.month + 1)

    def previous(self) -> "MonthKey":
        if self.month == 1:
            return MonthKey(self.year - 1, 12)
        return MonthKey(self.year, self.month - 1)


# year -> month -> öre incl. VAT; absent entries mean "unknown"
SpotPriceTable = Dict[int, Dict[int, float]]
UsageSeries = Dict[MonthKey, float]


def spot_price_for(table: SpotPriceTable, key: MonthKey) -> Optional[float]:
    return table.get(key.year, {}).get(key.month)


class WarningKind(str, Enum):
    MISSING_SPOT_PRICE = "MissingSpotPrice"
    MISSING_USAGE_PRIMARY = "MissingUsagePrimary"
    MISSING_USAGE_SECONDARY = "MissingUsageSecondary"


class RunStatus(str, Enum):
    OK = "OK"
    FAIL = "FAIL"


# Field names written by earlier ledger files, mapped to the current ones.
_LEGACY_RATE_FIELDS = {
    "effectiveFrom": "from",
    "localDiscount": "localDiscountOreInclVat",
    "gridTransfer": "gridTransferOreInclVat",
    "energyTax": "energyTaxOreInclVat",
    "norrlandDeduction": "norrlandDeductionOreInclVat",
}


def _pick(data: Mapping[str, Any], name: str, legacy: Optional[str] = None) -> Any:
    if name in data:
        return data[name]
    if legacy is not None:
        return data.get(legacy)
    return None


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


@dataclass(frozen=True, slots=True)
class TariffRow:
    """Grid and tax rates in öre/kWh incl. VAT, effective from a month onwards."""

    effective_from: MonthKey
    local_discount: float
    grid_transfer: float
    energy_tax: float
    norrland_deduction: float
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)

    def applied(self) -> Dict[str, float]:
        return {
            "localDiscount": self.local_discount,
            "gridTransfer": self.grid_transfer,
            "energyTax": self.energy_tax,
            "norrlandDeduction": self.norrland_deduction,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TariffRow":
        values = {name: _pick(data, name, legacy) for name, legacy in _LEGACY_RATE_FIELDS.items()}
        missing = [name for name, value in values.items() if value is None]
        if missing:
            raise ValueError(f"tariff row is missing {', '.join(missing)}")
        return cls(
            effective_from=MonthKey.parse(values["effectiveFrom"]),
            local_discount=float(values["localDiscount"]),
            grid_transfer=float(values["gridTransfer"]),
            energy_tax=float(values["energyTax"]),
            norrland_deduction=float(values["norrlandDeduction"]),
            raw=copy.deepcopy(dict(data)),
        )

    def to_dict(self) -> Dict[str, Any]:
        if self.raw is not None:
            return copy.deepcopy(self.raw)
        return {"effectiveFrom": str(self.effective_from), **self.applied()}


@dataclass(frozen=True, slots=True)
class Breakdown:
    """Per-identity cost split for one month, in kronor."""

    adjusted_spot_price: Optional[float]
    energy_cost: float
    grid_cost: float
    total_cost: float

    @classmethod
    def zero(cls, adjusted_spot_price: Optional[float]) -> "Breakdown":
        return cls(adjusted_spot_price, 0.0, 0.0, 0.0)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Breakdown":
        return cls(
            adjusted_spot_price=_optional_float(
                _pick(data, "adjustedSpotPrice", "adjustedElPriceOre")
            ),
            energy_cost=float(_pick(data, "energyCost", "elhandelKr") or 0),
            grid_cost=float(_pick(data, "gridCost", "elnatKr") or 0),
            total_cost=float(_pick(data, "totalCost", "totalKr") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "adjustedSpotPrice": self.adjusted_spot_price,
            "energyCost": self.energy_cost,
            "gridCost": self.grid_cost,
            "totalCost": self.total_cost,
        }


@dataclass(frozen=True, slots=True)
class MonthRecord:
    """One ledger month.

    Records loaded from disk keep their original JSON object in ``raw`` and
    serialize it unchanged, so carried-forward months stay byte-identical.
    """

    key: MonthKey
    is_locked: bool
    spot_price: Optional[float]
    usage_primary: Optional[float]
    usage_secondary: Optional[float]
    applied_rates: Dict[str, float]
    primary: Breakdown
    secondary: Breakdown
    warnings: Tuple[WarningKind, ...] = ()
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MonthRecord":
        inputs = data.get("inputs") or {}
        result = data.get("result") or {}
        warnings = []
        for item in data.get("warnings") or []:
            try:
                warnings.append(WarningKind(item))
            except ValueError:
                continue
        return cls(
            key=MonthKey(int(data["year"]), int(data["month"])),
            is_locked=bool(data.get("isLocked", False)),
            spot_price=_optional_float(_pick(inputs, "spotPrice", "spotOreInclVat")),
            usage_primary=_optional_float(_pick(inputs, "usagePrimary", "meKWh")),
            usage_secondary=_optional_float(_pick(inputs, "usageSecondary", "neighborKWh")),
            applied_rates=dict(data.get("appliedRates") or {}),
            primary=Breakdown.from_dict(_pick(result, "primary", "me") or {}),
            secondary=Breakdown.from_dict(_pick(result, "secondary", "neighbor") or {}),
            warnings=tuple(warnings),
            raw=copy.deepcopy(dict(data)),
        )

    def to_dict(self) -> Dict[str, Any]:
        if self.raw is not None:
            return copy.deepcopy(self.raw)
        return {
            "year": self.key.year,
            "month": self.key.month,
            "isLocked": self.is_locked,
            "inputs": {
                "spotPrice": self.spot_price,
                "usagePrimary": self.usage_primary,
                "usageSecondary": self.usage_secondary,
            },
            "appliedRates": dict(self.applied_rates),
            "result": {
                "primary": self.primary.to_dict(),
                "secondary": self.secondary.to_dict(),
            },
            "warnings": [warning.value for warning in self.warnings],
        }


@dataclass(frozen=True, slots=True)
class Identities:
    """Easee site and the two metered users sharing it."""

    site_id: int
    primary_user_id: int
    secondary_user_id: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Identities":
        values = {
            "siteId": data.get("siteId"),
            "primaryUserId": _pick(data, "primaryUserId", "meUserId"),
            "secondaryUserId": _pick(data, "secondaryUserId", "neighborUserId"),
        }
        missing = [name for name, value in values.items() if value is None]
        if missing:
            raise ValueError(f"ledger identities are missing {', '.join(missing)}")
        return cls(
            site_id=int(values["siteId"]),
            primary_user_id=int(values["primaryUserId"]),
            secondary_user_id=int(values["secondaryUserId"]),
        )

    def user_ids(self) -> List[int]:
        return [self.primary_user_id, self.secondary_user_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "siteId": self.site_id,
            "primaryUserId": self.primary_user_id,
            "secondaryUserId": self.secondary_user_id,
        }


@dataclass(frozen=True, slots=True)
class LedgerMeta:
    updated_at: Optional[str] = None
    last_run_status: Optional[RunStatus] = None
    last_error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LedgerMeta":
        status = data.get("lastRunStatus")
        return cls(
            updated_at=_pick(data, "updatedAt", "updatedAtUtc"),
            last_run_status=RunStatus(status) if status in ("OK", "FAIL") else None,
            last_error=data.get("lastError"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updatedAt": self.updated_at,
            "lastRunStatus": self.last_run_status.value if self.last_run_status else None,
            "lastError": self.last_error,
        }


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """Whole ledger document; unknown top-level keys ride along in ``extra``."""

    identities: Identities
    rates: Tuple[TariffRow, ...]
    months: Tuple[MonthRecord, ...]
    meta: LedgerMeta = LedgerMeta()
    identities_raw: Optional[Dict[str, Any]] = field(default=None, compare=False, repr=False)
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LedgerSnapshot":
        if "identities" not in data:
            raise ValueError("ledger has no identities block")
        rates = tuple(TariffRow.from_dict(row) for row in data.get("rates") or [])
        if not rates:
            raise ValueError("ledger must define at least one tariff row")
        months = tuple(MonthRecord.from_dict(entry) for entry in data.get("months") or [])
        known = {"identities", "rates", "months", "meta"}
        return cls(
            identities=Identities.from_dict(data["identities"]),
            rates=rates,
            months=months,
            meta=LedgerMeta.from_dict(data.get("meta") or {}),
            identities_raw=copy.deepcopy(dict(data["identities"])),
            extra={key: copy.deepcopy(value) for key, value in data.items() if key not in known},
        )

    def month(self, key: MonthKey) -> Optional[MonthRecord]:
        for record in self.months:
            if record.key == key:
                return record
        return None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "identities": (
                copy.deepcopy(self.identities_raw)
                if self.identities_raw is not None
                else self.identities.to_dict()
            ),
            "rates": [row.to_dict() for row in self.rates],
            "months": [record.to_dict() for record in self.months],
            "meta": self.meta.to_dict(),
        }
        for key, value in self.extra.items():
            payload.setdefault(key, copy.deepcopy(value))
        return payload
