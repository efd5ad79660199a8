"""JSON file persistence for the ledger snapshot."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Iterable, List

from .logging import get_logger
from .models import LedgerSnapshot

logger = get_logger(__name__)


def render_ledger(snapshot: LedgerSnapshot) -> str:
    """Pretty-printed, newline-terminated JSON text of the snapshot."""
    return json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False) + "\n"


class LedgerStore:
    """Reads the canonical ledger and writes it to every output target.

    Targets are written independently: a failing target is logged and
    reported back, it does not stop the others. There is no rollback, so the
    copies can disagree until the next successful write.
    """

    def __init__(self, source: Path, targets: Iterable[Path]) -> None:
        self.source = Path(source)
        self.targets = [Path(target) for target in targets]

    def load(self) -> LedgerSnapshot:
        try:
            raw = self.source.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ValueError(f"Ledger file not found: {self.source}") from exc
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Ledger file {self.source} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"Ledger file {self.source} must contain a JSON object")
        try:
            snapshot = LedgerSnapshot.from_dict(data)
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Ledger file {self.source} is malformed: {exc!r}") from exc
        logger.info("ledger_loaded", path=str(self.source), months=len(snapshot.months))
        return snapshot

    def write_all(self, snapshot: LedgerSnapshot) -> List[Path]:
        """Write the snapshot to every target and return the ones that failed."""
        payload = render_ledger(snapshot)
        failed: List[Path] = []
        for target in self.targets:
            try:
                _write_atomic(target, payload)
            except OSError as exc:
                logger.error("ledger_write_failed", path=str(target), error=str(exc))
                failed.append(target)
                continue
            logger.info("ledger_written", path=str(target), bytes=len(payload.encode("utf-8")))
        return failed


def _write_atomic(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(payload)
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
