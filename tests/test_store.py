import json

import pytest

from charging_ledger.models import LedgerSnapshot
from charging_ledger.store import LedgerStore, render_ledger


def test_render_ledger_is_pretty_and_newline_terminated(ledger_dict):
    text = render_ledger(LedgerSnapshot.from_dict(ledger_dict))

    assert text.endswith("}\n")
    assert text.startswith('{\n  "identities": {')
    assert "Avstämd manuellt" in text
    assert json.loads(text) == ledger_dict


def test_load_reads_snapshot(tmp_path, ledger_dict):
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps(ledger_dict), encoding="utf-8")

    snapshot = LedgerStore(path, [path]).load()

    assert snapshot.identities.site_id == 101
    assert len(snapshot.months) == 2


def test_load_missing_file_raises(tmp_path):
    with pytest.raises(ValueError, match="not found"):
        LedgerStore(tmp_path / "missing.json", []).load()


@pytest.mark.parametrize("content", ["{broken", "[]", '{"identities": {"siteId": 1}}'])
def test_load_rejects_malformed_ledgers(tmp_path, content):
    path = tmp_path / "ledger.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ValueError):
        LedgerStore(path, []).load()


def test_write_all_creates_parent_directories(tmp_path, ledger_dict):
    target = tmp_path / "docs" / "data" / "ledger.json"
    failed = LedgerStore(tmp_path / "unused.json", [target]).write_all(LedgerSnapshot.from_dict(ledger_dict))

    assert failed == []
    assert json.loads(target.read_text(encoding="utf-8")) == ledger_dict
    assert [p.name for p in target.parent.iterdir()] == ["ledger.json"]
