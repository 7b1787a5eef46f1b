"""Append-only audit trail of per-record match attempts."""

from __future__ import annotations

from pathlib import Path

from lcresolve.common.fs import append_jsonl
from lcresolve.common.models import Classification, MatchAttempt
from lcresolve.common.time_utils import utc_timestamp_iso


class MatchAuditLog:
    def __init__(self, path: Path, run_id: str) -> None:
        self.path = path
        self.run_id = run_id
        self._pending: list[MatchAttempt] = []

    def record(self, record_id, classification: Classification | None, error: str | None = None) -> MatchAttempt:
        entry = classification.matched_entry if classification is not None else None
        attempt = MatchAttempt(
            record_id=None if record_id is None else str(record_id),
            run_id=self.run_id,
            tier=classification.tier.value if classification is not None else None,
            lc_number=classification.lc_number if classification is not None else None,
            matched_entry=entry.to_dict() if entry is not None else None,
            error=error,
            timestamp=utc_timestamp_iso(),
        )
        self._pending.append(attempt)
        return attempt

    def discard(self) -> None:
        self._pending.clear()

    def flush(self) -> int:
        written = append_jsonl(self.path, (attempt.to_dict() for attempt in self._pending))
        self._pending.clear()
        return written
