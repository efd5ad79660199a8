"""Reconcile fetched spot prices and usage into the persisted ledger."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .calculator import calculate_month
from .config import Credentials
from .errors import LedgerError
from .logging import bind_run_context, clear_run_context, get_logger
from .models import (
    Identities,
    LedgerMeta,
    LedgerSnapshot,
    MonthKey,
    MonthRecord,
    RunStatus,
    SpotPriceTable,
    UsageSeries,
    spot_price_for,
)
from .rates import rate_for
from .store import LedgerStore
from .time_utils import last_closed_month, month_range, utc_now
from .usage_client import UsageClient

logger = get_logger(__name__)


class RunState(str, Enum):
    INIT = "INIT"
    FETCHING = "FETCHING"
    OK = "OK"
    FAILED = "FAILED"
    MERGING = "MERGING"
    PERSISTING = "PERSISTING"
    DONE = "DONE"


@dataclass(frozen=True, slots=True)
class FetchedInputs:
    spot_prices: SpotPriceTable
    usage_primary: UsageSeries
    usage_secondary: UsageSeries


@dataclass(frozen=True, slots=True)
class ReconcileOutcome:
    snapshot: LedgerSnapshot
    state: RunState
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is RunState.OK


@dataclass(frozen=True, slots=True)
class RunReport:
    outcome: ReconcileOutcome
    failed_targets: List[Path] = field(default_factory=list)


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a trailing 'Z'."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def merge_months(
    prior: LedgerSnapshot,
    inputs: FetchedInputs,
    start: MonthKey,
    end: MonthKey,
) -> Tuple[MonthRecord, ...]:
    """Build the month sequence start..end; locked prior months are carried as-is.

    Unlocked months are always recomputed from ``inputs``, so a value that
    disappeared upstream turns into a warning rather than a stale number.
    """
    existing: Dict[MonthKey, MonthRecord] = {record.key: record for record in prior.months}
    merged: List[MonthRecord] = []
    for key in month_range(start, end):
        previous = existing.get(key)
        if previous is not None and previous.is_locked:
            logger.debug("month_locked_carried", month=str(key))
            merged.append(previous)
            continue

        spot_price = spot_price_for(inputs.spot_prices, key)
        usage_primary = inputs.usage_primary.get(key)
        usage_secondary = inputs.usage_secondary.get(key)
        calculation = calculate_month(
            spot_price,
            usage_primary,
            usage_secondary,
            rate_for(prior.rates, key),
        )
        merged.append(
            MonthRecord(
                key=key,
                is_locked=False,
                spot_price=spot_price,
                usage_primary=usage_primary,
                usage_secondary=usage_secondary,
                applied_rates=calculation.applied_rates,
                primary=calculation.primary,
                secondary=calculation.secondary,
                warnings=calculation.warnings,
            )
        )

    # Locked months outside the window (e.g. after moving the start month) are kept.
    window = {record.key for record in merged}
    merged.extend(
        record for key, record in existing.items() if record.is_locked and key not in window
    )
    return tuple(sorted(merged, key=lambda record: record.key))


class LedgerReconciler:
    """Runs one INIT -> FETCHING -> OK/FAILED -> MERGING -> PERSISTING -> DONE cycle."""

    def __init__(
        self,
        fetch_spot_prices: Callable[[], SpotPriceTable],
        usage_client: UsageClient,
        credentials: Credentials,
        start_month: MonthKey,
        verify_site_users: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.fetch_spot_prices = fetch_spot_prices
        self.usage_client = usage_client
        self.credentials = credentials
        self.start_month = start_month
        self.verify_site_users = verify_site_users
        self.clock = clock
        self.state = RunState.INIT

    def _transition(self, state: RunState) -> None:
        logger.info("run_state", previous=self.state.value, state=state.value)
        self.state = state

    def fetch_inputs(self, identities: Identities) -> FetchedInputs:
        spot_prices = self.fetch_spot_prices()

        token, login = self.credentials.resolve()
        if token is None:
            username, password = login
            token = self.usage_client.login(username, password)

        if self.verify_site_users:
            self.usage_client.verify_identities(identities.site_id, identities.user_ids(), token)

        usage_primary = self.usage_client.monthly_usage(
            identities.site_id, identities.primary_user_id, token
        )
        usage_secondary = self.usage_client.monthly_usage(
            identities.site_id, identities.secondary_user_id, token
        )
        return FetchedInputs(spot_prices, usage_primary, usage_secondary)

    def reconcile(self, prior: LedgerSnapshot, now: Optional[datetime] = None) -> ReconcileOutcome:
        now = now or self.clock()
        self.state = RunState.INIT
        self._transition(RunState.FETCHING)

        error: Optional[str] = None
        inputs: Optional[FetchedInputs] = None
        try:
            inputs = self.fetch_inputs(prior.identities)
        except LedgerError as exc:
            error = str(exc)
            logger.error("reconcile_failed", error_type=type(exc).__name__, error=error)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.exception("reconcile_unexpected_error", error=error)

        if inputs is None:
            self._transition(RunState.FAILED)
            meta = LedgerMeta(format_timestamp(now), RunStatus.FAIL, error)
            return ReconcileOutcome(replace(prior, meta=meta), RunState.FAILED, error)

        self._transition(RunState.OK)
        self._transition(RunState.MERGING)
        end = last_closed_month(now)
        months = merge_months(prior, inputs, self.start_month, end)
        logger.info(
            "months_merged",
            start=str(self.start_month),
            end=str(end),
            months=len(months),
            locked=sum(1 for record in months if record.is_locked),
        )
        meta = LedgerMeta(format_timestamp(now), RunStatus.OK, None)
        return ReconcileOutcome(replace(prior, months=months, meta=meta), RunState.OK)

    def run(self, store: LedgerStore, now: Optional[datetime] = None) -> RunReport:
        """Load, reconcile and persist; the snapshot is written even on failure."""
        bind_run_context(ledger=str(store.source))
        try:
            prior = store.load()
            outcome = self.reconcile(prior, now)
            self._transition(RunState.PERSISTING)
            failed_targets = store.write_all(outcome.snapshot)
            self._transition(RunState.DONE)
        finally:
            clear_run_context()
        return RunReport(outcome=outcome, failed_targets=failed_targets)
