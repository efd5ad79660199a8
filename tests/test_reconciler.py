import json
from datetime import datetime, timezone

import pytest

from charging_ledger.config import Credentials
from charging_ledger.errors import ExtractionFailed, IdentityNotFound, TransportError
from charging_ledger.models import LedgerSnapshot, MonthKey, RunStatus, WarningKind
from charging_ledger.reconciler import LedgerReconciler, RunState, format_timestamp
from charging_ledger.store import LedgerStore

NOW = datetime(2024, 4, 15, 6, 0, tzinfo=timezone.utc)
SPOT_PRICES = {2024: {1: 50.0, 2: 60.0, 3: 100.0}}


class StubUsageClient:
    def __init__(self, usage=None, missing_users=None, login_error=None):
        self.usage = usage if usage is not None else {
            7: {MonthKey(2024, 2): 20.0, MonthKey(2024, 3): 10.0},
            8: {MonthKey(2024, 3): 30.0},
        }
        self.missing_users = missing_users
        self.login_error = login_error
        self.calls = []

    def login(self, username, password):
        self.calls.append(("login", username))
        if self.login_error:
            raise self.login_error
        return "session-token"

    def verify_identities(self, site_id, expected, token):
        self.calls.append(("verify", site_id, token))
        if self.missing_users:
            raise IdentityNotFound(site_id, self.missing_users, [7])

    def monthly_usage(self, site_id, user_id, token):
        self.calls.append(("usage", user_id, token))
        return dict(self.usage.get(user_id, {}))


def _reconciler(usage_client=None, spot_prices=None, credentials=None, fail_with=None):
    def fetch_spot_prices():
        if fail_with is not None:
            raise fail_with
        return SPOT_PRICES if spot_prices is None else spot_prices

    return LedgerReconciler(
        fetch_spot_prices=fetch_spot_prices,
        usage_client=usage_client or StubUsageClient(),
        credentials=credentials or Credentials(token="env-token"),
        start_month=MonthKey(2024, 1),
        clock=lambda: NOW,
    )


def test_successful_run_recomputes_unlocked_months(ledger_dict):
    prior = LedgerSnapshot.from_dict(ledger_dict)
    outcome = _reconciler().reconcile(prior, NOW)

    assert outcome.state is RunState.OK
    assert [str(record.key) for record in outcome.snapshot.months] == ["2024-01", "2024-02", "2024-03"]

    march = outcome.snapshot.month(MonthKey(2024, 3)).to_dict()
    assert march["isLocked"] is False
    assert march["inputs"] == {"spotPrice": 100.0, "usagePrimary": 10.0, "usageSecondary": 30.0}
    assert march["result"]["primary"] == {
        "adjustedSpotPrice": 95.0,
        "energyCost": 9.5,
        "gridCost": 6.5,
        "totalCost": 16.0,
    }
    assert march["result"]["secondary"]["totalCost"] == 48.0
    assert march["warnings"] == []

    february = outcome.snapshot.month(MonthKey(2024, 2))
    assert february.warnings == (WarningKind.MISSING_USAGE_SECONDARY,)
    assert february.primary.total_cost == round(20 * 55 / 100 + 20 * 65 / 100, 2)
    assert february.secondary.total_cost == 0

    meta = outcome.snapshot.meta
    assert meta.last_run_status is RunStatus.OK
    assert meta.last_error is None
    assert meta.updated_at == "2024-04-15T06:00:00.000Z"


def test_locked_month_is_carried_forward_byte_for_byte(ledger_dict):
    locked_before = json.dumps(ledger_dict["months"][0], indent=2)
    prior = LedgerSnapshot.from_dict(ledger_dict)

    outcome = _reconciler().reconcile(prior, NOW)

    january = outcome.snapshot.to_dict()["months"][0]
    assert json.dumps(january, indent=2) == locked_before
    assert january["inputs"]["spotPrice"] == 77.7


def test_locked_months_outside_window_are_kept(ledger_dict):
    ledger_dict["months"][0]["year"] = 2023
    ledger_dict["months"][0]["month"] = 6
    prior = LedgerSnapshot.from_dict(ledger_dict)

    outcome = _reconciler().reconcile(prior, NOW)

    keys = [str(record.key) for record in outcome.snapshot.months]
    assert keys == ["2023-06", "2024-01", "2024-02", "2024-03"]
    assert outcome.snapshot.months[0].is_locked


def test_fetch_failure_leaves_months_untouched(ledger_dict):
    prior = LedgerSnapshot.from_dict(ledger_dict)
    usage_client = StubUsageClient()
    reconciler = _reconciler(
        usage_client=usage_client,
        fail_with=ExtractionFailed("Could not parse Jamtkraft Elområde 2 data"),
    )

    outcome = reconciler.reconcile(prior, NOW)
    payload = outcome.snapshot.to_dict()

    assert outcome.state is RunState.FAILED
    assert payload["months"] == ledger_dict["months"]
    assert payload["profiles"] == ledger_dict["profiles"]
    assert payload["meta"] == {
        "updatedAt": "2024-04-15T06:00:00.000Z",
        "lastRunStatus": "FAIL",
        "lastError": "Could not parse Jamtkraft Elområde 2 data",
    }
    # usage is never requested once the tariff step failed
    assert usage_client.calls == []


def test_missing_credentials_fail_the_run(ledger_dict):
    prior = LedgerSnapshot.from_dict(ledger_dict)
    outcome = _reconciler(credentials=Credentials()).reconcile(prior, NOW)

    assert outcome.state is RunState.FAILED
    assert "EASEE_TOKEN" in outcome.error
    assert outcome.snapshot.meta.last_run_status is RunStatus.FAIL


def test_token_takes_precedence_over_login(ledger_dict):
    usage_client = StubUsageClient()
    creds = Credentials(token="env-token", username="driver@example.com", password="secret")

    _reconciler(usage_client=usage_client, credentials=creds).reconcile(
        LedgerSnapshot.from_dict(ledger_dict), NOW
    )

    assert ("login", "driver@example.com") not in usage_client.calls
    assert ("usage", 7, "env-token") in usage_client.calls


def test_password_login_is_used_without_token(ledger_dict):
    usage_client = StubUsageClient()
    creds = Credentials(username="driver@example.com", password="secret")

    outcome = _reconciler(usage_client=usage_client, credentials=creds).reconcile(
        LedgerSnapshot.from_dict(ledger_dict), NOW
    )

    assert outcome.ok
    assert usage_client.calls[0] == ("login", "driver@example.com")
    assert ("usage", 8, "session-token") in usage_client.calls


def test_unknown_identity_fails_fast(ledger_dict):
    usage_client = StubUsageClient(missing_users=[8])

    outcome = _reconciler(usage_client=usage_client).reconcile(LedgerSnapshot.from_dict(ledger_dict), NOW)

    assert outcome.state is RunState.FAILED
    assert "Missing: 8" in outcome.error
    assert not any(call[0] == "usage" for call in usage_client.calls)


def test_transport_error_during_login_fails_the_run(ledger_dict):
    usage_client = StubUsageClient(login_error=TransportError("Easee login failed: timed out"))
    creds = Credentials(username="driver@example.com", password="secret")

    outcome = _reconciler(usage_client=usage_client, credentials=creds).reconcile(
        LedgerSnapshot.from_dict(ledger_dict), NOW
    )

    assert outcome.error == "Easee login failed: timed out"


def test_unexpected_exception_is_recorded_not_raised(ledger_dict):
    outcome = _reconciler(fail_with=RuntimeError("parser exploded")).reconcile(
        LedgerSnapshot.from_dict(ledger_dict), NOW
    )

    assert outcome.state is RunState.FAILED
    assert outcome.error == "parser exploded"


def test_reconcile_is_idempotent(ledger_dict):
    reconciler = _reconciler()
    first = reconciler.reconcile(LedgerSnapshot.from_dict(ledger_dict), NOW)
    second = reconciler.reconcile(first.snapshot, NOW)

    assert second.snapshot.to_dict()["months"] == first.snapshot.to_dict()["months"]


def test_missing_source_values_become_warnings(ledger_dict):
    outcome = _reconciler(usage_client=StubUsageClient(usage={}), spot_prices={}).reconcile(
        LedgerSnapshot.from_dict(ledger_dict), NOW
    )

    march = outcome.snapshot.month(MonthKey(2024, 3))
    assert outcome.ok
    assert set(march.warnings) == set(WarningKind)
    assert march.primary.total_cost == 0
    assert march.secondary.total_cost == 0


def test_run_persists_every_target_even_on_failure(tmp_path, ledger_dict):
    source = tmp_path / "data" / "ledger.json"
    source.parent.mkdir()
    source.write_text(json.dumps(ledger_dict, indent=2), encoding="utf-8")
    mirror = tmp_path / "docs" / "data" / "ledger.json"
    store = LedgerStore(source, [source, mirror])

    reconciler = _reconciler(fail_with=ExtractionFailed("no table"))
    report = reconciler.run(store, NOW)

    assert report.failed_targets == []
    assert reconciler.state is RunState.DONE
    for path in (source, mirror):
        written = json.loads(path.read_text(encoding="utf-8"))
        assert written["meta"]["lastRunStatus"] == "FAIL"
        assert written["months"] == ledger_dict["months"]
    assert source.read_text(encoding="utf-8") == mirror.read_text(encoding="utf-8")


def test_write_failure_on_one_target_does_not_block_the_other(tmp_path, ledger_dict):
    source = tmp_path / "ledger.json"
    source.write_text(json.dumps(ledger_dict), encoding="utf-8")
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    broken = blocker / "ledger.json"
    mirror = tmp_path / "mirror.json"

    report = _reconciler().run(LedgerStore(source, [broken, mirror]), NOW)

    assert report.failed_targets == [broken]
    assert json.loads(mirror.read_text(encoding="utf-8"))["meta"]["lastRunStatus"] == "OK"


@pytest.mark.parametrize(
    "moment,expected",
    [
        (datetime(2024, 4, 15, 6, 0, 0, 123456, tzinfo=timezone.utc), "2024-04-15T06:00:00.123Z"),
        (datetime(2024, 4, 15, 6, 0), "2024-04-15T06:00:00.000Z"),
    ],
)
def test_format_timestamp(moment, expected):
    assert format_timestamp(moment) == expected
