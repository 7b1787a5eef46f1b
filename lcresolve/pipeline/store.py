"""Record collections the backfill reads from and writes to."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Iterator, Protocol, Sequence

from lcresolve.common.errors import StoreError, TransientStoreError
from lcresolve.common.fs import read_json, write_json_atomic


def needs_classification(row: dict) -> bool:
    department = row.get("department")
    return department is None or str(department).strip() == ""


class RecordStore(Protocol):
    def count(self) -> int: ...

    def count_unclassified(self) -> int: ...

    def iter_pages(self, page_size: int) -> Iterator[list[dict]]: ...

    def fetch_unclassified(self, limit: int) -> list[dict]: ...

    def apply_batch(self, updates: Sequence[dict]) -> int: ...

    def get(self, record_id) -> dict | None: ...


class JsonRecordStore:
    """A JSON document of records, rewritten atomically once per batch.

    The document is either a list of records or ``{"records": [...]}``.
    Every record needs an ``id``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        if not path.exists():
            raise StoreError(f"Record file not found: {path}")
        try:
            payload = read_json(path)
        except ValueError as exc:
            raise StoreError(f"Record file is not valid JSON: {path}") from exc

        if isinstance(payload, dict) and isinstance(payload.get("records"), list):
            self._envelope = {key: value for key, value in payload.items() if key != "records"}
            records = payload["records"]
        elif isinstance(payload, list):
            self._envelope = None
            records = payload
        else:
            raise StoreError(f"Unsupported record document layout in {path}")

        seen: set[str] = set()
        for idx, record in enumerate(records):
            if not isinstance(record, dict) or record.get("id") is None:
                raise StoreError(f"Record {idx} in {path} has no id")
            key = str(record["id"])
            if key in seen:
                raise StoreError(f"Duplicate record id {key} in {path}")
            seen.add(key)
        self._records: list[dict] = records

    def count(self) -> int:
        return len(self._records)

    def count_unclassified(self) -> int:
        return sum(1 for record in self._records if needs_classification(record))

    def iter_pages(self, page_size: int) -> Iterator[list[dict]]:
        for start in range(0, len(self._records), page_size):
            yield copy.deepcopy(self._records[start : start + page_size])

    def fetch_unclassified(self, limit: int) -> list[dict]:
        out = []
        for record in self._records:
            if needs_classification(record):
                out.append(copy.deepcopy(record))
                if len(out) >= limit:
                    break
        return out

    def get(self, record_id) -> dict | None:
        key = str(record_id)
        for record in self._records:
            if str(record["id"]) == key:
                return copy.deepcopy(record)
        return None

    def apply_batch(self, updates: Sequence[dict]) -> int:
        staged = copy.deepcopy(self._records)
        position = {str(record["id"]): idx for idx, record in enumerate(staged)}
        for update in updates:
            key = str(update.get("id"))
            if key not in position:
                raise StoreError(f"Unknown record id in batch: {key}")
            staged[position[key]].update({k: v for k, v in update.items() if k != "id"})

        payload = staged if self._envelope is None else {**self._envelope, "records": staged}
        try:
            write_json_atomic(self.path, payload)
        except OSError as exc:
            raise TransientStoreError(f"Failed to write {self.path}: {exc}") from exc

        self._records = staged
        return len(updates)
