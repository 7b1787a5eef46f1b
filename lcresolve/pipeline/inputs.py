"""Reading ledger and record rows that upstream ingestion already parsed."""

from __future__ import annotations

import csv
from pathlib import Path

from lcresolve.common.errors import LedgerLoadError, StoreError
from lcresolve.common.fs import read_json
from lcresolve.common.models import LedgerEntry


def _read_rows(path: Path) -> list[dict]:
    if path.suffix.lower() == ".csv":
        with path.open("r", encoding="utf-8", newline="") as f:
            return list(csv.DictReader(f))
    payload = read_json(path)
    if isinstance(payload, dict):
        for key in ("rows", "records"):
            if isinstance(payload.get(key), list):
                return payload[key]
        raise ValueError(f"no rows/records list in {path}")
    if isinstance(payload, list):
        return payload
    raise ValueError(f"unsupported layout in {path}")


def load_ledger(path: Path) -> list[LedgerEntry]:
    if not path.exists():
        raise LedgerLoadError(f"Ledger file not found: {path}")
    try:
        rows = _read_rows(path)
        return [LedgerEntry.from_row(row) for row in rows]
    except (OSError, ValueError, AttributeError) as exc:
        raise LedgerLoadError(f"Failed to load ledger {path}: {exc}") from exc


def load_records(path: Path) -> list[dict]:
    if not path.exists():
        raise StoreError(f"Record file not found: {path}")
    try:
        return _read_rows(path)
    except (OSError, ValueError) as exc:
        raise StoreError(f"Failed to read records {path}: {exc}") from exc
