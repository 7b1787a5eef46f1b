"""Batch backfill of classification fields onto historical records.

States: not_started -> backing_up -> loading_ledger -> processing ->
verifying -> done, with failed reachable from any step. A run only ever
selects records whose department is still unset, so repeated runs are
idempotent and an interrupted run can simply be started again.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Sequence

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from lcresolve.common.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_DEPARTMENT,
    INTEGRITY_INFERRED,
    INTEGRITY_INVALID,
    INTEGRITY_VALID,
    MAPPING_STATUS_ERROR,
    MAPPING_STATUS_INFERRED,
    MAPPING_STATUS_LC,
    MIGRATION_VERSION,
)
from lcresolve.common.errors import BatchWriteError, PipelineError, StoreError, TransientStoreError
from lcresolve.common.logging import log_event
from lcresolve.common.models import (
    Classification,
    ClassificationError,
    ClassificationResult,
    LedgerEntry,
    MatchTier,
)
from lcresolve.common.time_utils import parse_timestamp, utc_now
from lcresolve.engine.matcher import RecordMatcher
from lcresolve.pipeline.audit import MatchAuditLog
from lcresolve.pipeline.backup import write_backup
from lcresolve.pipeline.store import RecordStore

STAGE = "backfill"
UNEXPECTED_ERROR_CODE = "UNEXPECTED_ERROR"


class BackfillState(str, Enum):
    NOT_STARTED = "not_started"
    BACKING_UP = "backing_up"
    LOADING_LEDGER = "loading_ledger"
    PROCESSING = "processing"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class BatchSchedule:
    batch_size: int = DEFAULT_BATCH_SIZE
    inter_batch_delay: float = 0.1
    write_attempts: int = 3
    retry_initial_wait: float = 0.5
    retry_max_wait: float = 5.0

    @classmethod
    def from_config(cls, backfill_cfg: Mapping, *, batch_size: int | None = None) -> "BatchSchedule":
        return cls(
            batch_size=int(batch_size or backfill_cfg["batch_size"]),
            inter_batch_delay=float(backfill_cfg["inter_batch_delay_seconds"]),
            write_attempts=int(backfill_cfg["write_attempts"]),
        )


@dataclass
class BackfillSummary:
    run_id: str
    state: BackfillState = BackfillState.NOT_STARTED
    initial_unclassified: int = 0
    total_processed: int = 0
    total_errors: int = 0
    remaining_unclassified: int | None = None
    batches_committed: int = 0
    backup_path: str | None = None
    elapsed_seconds: float = 0.0
    failure: str | None = None
    error_code: str | None = None
    tier_counts: dict[str, int] = field(default_factory=dict)

    @property
    def mutated(self) -> bool:
        return self.batches_committed > 0

    @property
    def status(self) -> str:
        if self.state is BackfillState.FAILED:
            return "error"
        if self.total_errors or self.remaining_unclassified:
            return "partial"
        return "success"

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "status": self.status,
            "initial_unclassified": self.initial_unclassified,
            "total_processed": self.total_processed,
            "total_errors": self.total_errors,
            "remaining_unclassified": self.remaining_unclassified,
            "batches_committed": self.batches_committed,
            "backup_path": self.backup_path,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "failure": self.failure,
            "error_code": self.error_code,
            "tier_counts": dict(sorted(self.tier_counts.items())),
        }


@dataclass(frozen=True)
class DerivedFields:
    hours: float
    event_date: datetime


def _parse_hours(value) -> tuple[float, str | None]:
    if value is None or str(value).strip() == "":
        return 0.0, None
    try:
        hours = float(value)
    except (TypeError, ValueError):
        return 0.0, f"non-numeric hours: {value!r}"
    if not math.isfinite(hours):
        return 0.0, f"non-numeric hours: {value!r}"
    return hours, None


def derive_fields(row: Mapping, now: datetime) -> tuple[DerivedFields | None, str | None]:
    started_at, error = parse_timestamp(row.get("from"))
    if error:
        return None, error
    ended_at, error = parse_timestamp(row.get("to"))
    if error:
        return None, error
    hours, error = _parse_hours(row.get("hours"))
    if error:
        return None, error

    if hours <= 0 and started_at is not None and ended_at is not None:
        hours = (ended_at - started_at).total_seconds() / 3600
    return DerivedFields(hours=round(hours, 2), event_date=started_at or now), None


def _existing_metadata(row: Mapping) -> dict:
    metadata = row.get("metadata")
    if isinstance(metadata, dict):
        return metadata
    # Non-mapping metadata is kept under its own key rather than dropped.
    return {"legacyMetadata": metadata} if metadata not in (None, "") else {}


def build_update(row: Mapping, derived: DerivedFields, classifications: Sequence[Classification], now: datetime) -> dict:
    primary = classifications[0]
    lc_mapped = primary.tier is MatchTier.EXACT_LC and primary.is_special_case
    return {
        "id": row["id"],
        "department": primary.department,
        "finalHours": round(derived.hours * primary.allocation_percentage / 100, 2),
        "eventDate": derived.event_date.isoformat(),
        "lcNumber": primary.lc_number,
        "lcPercentage": primary.allocation_percentage,
        "mappedLocation": primary.mapped_location or row.get("location"),
        "mappingStatus": MAPPING_STATUS_LC if lc_mapped else MAPPING_STATUS_INFERRED,
        "dataIntegrity": INTEGRITY_VALID if lc_mapped else INTEGRITY_INFERRED,
        "metadata": {
            **_existing_metadata(row),
            "migrationDate": now.isoformat(),
            "migrationVersion": MIGRATION_VERSION,
            "allocationCount": len(classifications),
        },
    }


def default_update(row: Mapping, reason: str, now: datetime) -> dict:
    hours, _ = _parse_hours(row.get("hours"))
    return {
        "id": row["id"],
        "department": DEFAULT_DEPARTMENT,
        "finalHours": round(hours, 2),
        "eventDate": now.isoformat(),
        "lcNumber": None,
        "lcPercentage": 100.0,
        "mappedLocation": row.get("location"),
        "mappingStatus": MAPPING_STATUS_ERROR,
        "dataIntegrity": INTEGRITY_INVALID,
        "metadata": {
            **_existing_metadata(row),
            "migrationDate": now.isoformat(),
            "migrationVersion": MIGRATION_VERSION,
            "migrationError": reason,
        },
    }


class BackfillPipeline:
    def __init__(
        self,
        store: RecordStore,
        ledger_loader: Callable[[], Sequence[LedgerEntry]],
        matcher_factory: Callable[[Sequence[LedgerEntry]], RecordMatcher],
        *,
        backup_dir: Path,
        logger: logging.Logger,
        run_id: str,
        schedule: BatchSchedule | None = None,
        page_size: int = DEFAULT_BATCH_SIZE,
        audit: MatchAuditLog | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.ledger_loader = ledger_loader
        self.matcher_factory = matcher_factory
        self.backup_dir = backup_dir
        self.logger = logger
        self.run_id = run_id
        self.schedule = schedule or BatchSchedule()
        self.page_size = page_size
        self.audit = audit
        self.sleep = sleep
        self.clock = clock
        self.state = BackfillState.NOT_STARTED
        self.history: list[BackfillState] = [self.state]

    def _transition(self, state: BackfillState) -> None:
        self.state = state
        self.history.append(state)
        log_event(self.logger, f"state -> {state.value}", run_id=self.run_id, stage=STAGE, event="STATE")

    def _log(self, message: str, level: str = "INFO", **fields) -> None:
        log_event(self.logger, message, level=level, run_id=self.run_id, stage=STAGE, **fields)

    def run(self) -> BackfillSummary:
        started = time.monotonic()
        summary = BackfillSummary(run_id=self.run_id)
        self._log("Starting department backfill", event="RUN_START")
        try:
            self._run(summary)
        except PipelineError as exc:
            self._transition(BackfillState.FAILED)
            summary.failure = str(exc)
            summary.error_code = exc.error_code
            self._log(f"Backfill failed: {exc}", level="ERROR", event="RUN_FAIL", error_code=exc.error_code)
        except Exception as exc:
            self._transition(BackfillState.FAILED)
            summary.failure = f"{type(exc).__name__}: {exc}"
            summary.error_code = UNEXPECTED_ERROR_CODE
            self.logger.exception(
                "Backfill failed unexpectedly",
                extra={"run_id": self.run_id, "stage": STAGE, "event": "RUN_FAIL", "error_code": UNEXPECTED_ERROR_CODE},
            )
        if self.state is BackfillState.FAILED:
            summary.remaining_unclassified = self._remaining_after_failure()
        summary.state = self.state
        summary.elapsed_seconds = time.monotonic() - started
        self._log_summary(summary)
        return summary

    def _remaining_after_failure(self) -> int | None:
        try:
            return self.store.count_unclassified()
        except (PipelineError, OSError) as exc:
            self._log(f"Could not count remaining records: {exc}", level="WARN", event="VERIFY")
            return None

    def _run(self, summary: BackfillSummary) -> None:
        pending = self.store.count_unclassified()
        summary.initial_unclassified = pending
        if pending == 0:
            self._log("No records need department backfill")
            summary.remaining_unclassified = 0
            self._transition(BackfillState.DONE)
            return
        self._log(f"Found {pending} records that need department backfill", rows_in=pending)

        self._transition(BackfillState.BACKING_UP)
        backup_path = write_backup(
            self.store,
            self.backup_dir,
            page_size=self.page_size,
            logger=self.logger,
            run_id=self.run_id,
        )
        summary.backup_path = str(backup_path)
        self._log(f"Backup created: {backup_path}", event="BACKUP_DONE")

        self._transition(BackfillState.LOADING_LEDGER)
        matcher = self.matcher_factory(self.ledger_loader())
        self._log(
            f"Ledger index built: {len(matcher.index.by_lc)} LC numbers, "
            f"{len(matcher.index.by_location)} locations",
            rows_in=matcher.index.entry_count,
        )

        self._transition(BackfillState.PROCESSING)
        batch_number = 0
        previous_ids: tuple[str, ...] | None = None
        while summary.total_processed < pending:
            rows = self.store.fetch_unclassified(self.schedule.batch_size)
            if not rows:
                break
            ids = tuple(str(row["id"]) for row in rows)
            if ids == previous_ids:
                self._log("Batch selection made no progress; stopping", level="WARN", event="NO_PROGRESS")
                break
            previous_ids = ids
            batch_number += 1

            updates, errors = self._process_batch(rows, matcher, summary)
            self._commit(updates, batch_number)
            summary.batches_committed += 1
            summary.total_processed += len(updates)
            summary.total_errors += errors

            progress = min(summary.total_processed / pending * 100, 100.0)
            self._log(
                f"Batch {batch_number}: updated {len(updates)} records ({errors} errors); "
                f"progress {progress:.1f}% ({summary.total_processed} processed, {summary.total_errors} errors)",
                event="BATCH_DONE",
                batch=batch_number,
                rows_out=len(updates),
            )
            if self.schedule.inter_batch_delay > 0:
                self.sleep(self.schedule.inter_batch_delay)

        self._transition(BackfillState.VERIFYING)
        summary.remaining_unclassified = self.store.count_unclassified()
        if summary.remaining_unclassified:
            self._log(
                f"{summary.remaining_unclassified} records still have no department",
                level="WARN",
                event="VERIFY",
                status="warning",
            )
        self._transition(BackfillState.DONE)

    def _process_batch(
        self,
        rows: list[dict],
        matcher: RecordMatcher,
        summary: BackfillSummary,
    ) -> tuple[list[dict], int]:
        updates: list[dict] = []
        errors = 0
        now = self.clock()
        for row in rows:
            record_id = row.get("id")
            update = None
            try:
                result, derived = self._evaluate(row, matcher, now)
                if result.ok and derived is not None and result.classifications:
                    update = build_update(row, derived, result.classifications, now)
            except Exception as exc:
                result = ClassificationResult(
                    error=ClassificationError(record_id=str(record_id), reason=f"{type(exc).__name__}: {exc}")
                )

            if update is not None:
                primary = result.primary
                updates.append(update)
                summary.tier_counts[primary.tier.value] = summary.tier_counts.get(primary.tier.value, 0) + 1
                if self.audit is not None:
                    self.audit.record(record_id, primary)
                continue

            errors += 1
            reason = result.error.reason if result.error else "no classification produced"
            self._log(f"Error processing record {record_id}: {reason}", level="ERROR", record_id=record_id)
            updates.append(default_update(row, reason, now))
            summary.tier_counts["error"] = summary.tier_counts.get("error", 0) + 1
            if self.audit is not None:
                self.audit.record(record_id, None, error=reason)
        return updates, errors

    def _evaluate(
        self,
        row: dict,
        matcher: RecordMatcher,
        now: datetime,
    ) -> tuple[ClassificationResult, DerivedFields | None]:
        derived, error = derive_fields(row, now)
        if error:
            return ClassificationResult(error=ClassificationError(record_id=str(row.get("id")), reason=error)), None
        return matcher.classify_row(row), derived

    def _commit(self, updates: list[dict], batch_number: int) -> None:
        @retry(
            stop=stop_after_attempt(self.schedule.write_attempts),
            wait=wait_exponential_jitter(
                initial=self.schedule.retry_initial_wait,
                max=self.schedule.retry_max_wait,
                jitter=self.schedule.retry_initial_wait,
            ),
            retry=retry_if_exception_type(TransientStoreError),
            reraise=True,
        )
        def _apply() -> int:
            return self.store.apply_batch(updates)

        try:
            _apply()
        except StoreError as exc:
            if self.audit is not None:
                self.audit.discard()
            raise BatchWriteError(f"Failed to update batch {batch_number}: {exc}") from exc
        if self.audit is not None:
            self.audit.flush()

    def _log_summary(self, summary: BackfillSummary) -> None:
        self._log("=" * 60)
        self._log("BACKFILL COMPLETE" if summary.state is BackfillState.DONE else "BACKFILL HALTED")
        self._log(f"Total records processed: {summary.total_processed}")
        self._log(f"Total errors: {summary.total_errors}")
        self._log(f"Records still missing department: {summary.remaining_unclassified}")
        self._log(f"Elapsed: {summary.elapsed_seconds:.2f} seconds")
        if summary.backup_path:
            self._log(f"Backup file: {summary.backup_path}")
        self._log("=" * 60)
