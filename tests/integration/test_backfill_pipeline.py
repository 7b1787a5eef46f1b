import json
from pathlib import Path

import pytest

from lcresolve.common.config_loader import load_all_configs
from lcresolve.common.errors import LedgerLoadError, TransientStoreError
from lcresolve.common.logging import build_logger, close_logger
from lcresolve.common.models import LedgerEntry
from lcresolve.pipeline import backfill
from lcresolve.pipeline.audit import MatchAuditLog
from lcresolve.pipeline.backfill import BackfillPipeline, BackfillState, BatchSchedule
from lcresolve.pipeline.classify import build_matcher_factory
from lcresolve.pipeline.store import JsonRecordStore

CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"

LEDGER = [
    LedgerEntry.from_row(
        {"lcNumber": "7777", "rigLocation": "Thunder Horse Drilling", "projectType": "Drilling", "department": "Drilling"}
    ),
    LedgerEntry.from_row(
        {"lcNumber": "8888", "rigLocation": "Mad Dog Prod", "projectType": "Production", "department": "Production"}
    ),
]

RECORDS = [
    {"id": 1, "vessel": "Fast Leopard", "location": "Thunder Horse Drilling", "costDedicatedTo": "7777", "hours": 10},
    {"id": 2, "vessel": "Fast Leopard", "location": "Thunder Horse", "costDedicatedTo": "7777/8888", "hours": 8},
    {"id": 3, "vessel": "Pelican", "location": "Mad Dog", "hours": 4, "from": "2025-06-01T08:00:00Z"},
    {"id": 4, "vessel": "Pelican", "location": "Fourchon", "parentEvent": "Cargo Ops", "hours": 2},
    {"id": 5, "vessel": "Pelican", "location": "Argos", "costDedicatedTo": ",,;;//", "from": "not a date"},
    {"id": 6, "vessel": "Pelican", "location": "Argos", "department": "Drilling", "hours": 1},
    {"id": 7, "vessel": "Heron", "location": "Dock", "hours": 3},
]

SCHEDULE = BatchSchedule(batch_size=2, inter_batch_delay=0.25, retry_initial_wait=0, retry_max_wait=0)


@pytest.fixture
def records_path(tmp_path: Path) -> Path:
    path = tmp_path / "records.json"
    path.write_text(json.dumps(RECORDS, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def logger(tmp_path: Path):
    logger = build_logger(f"test-{tmp_path.name}", log_file=tmp_path / "backfill.log")
    yield logger
    close_logger(logger)


@pytest.fixture(scope="module")
def matcher_factory():
    return build_matcher_factory(load_all_configs(CONFIG_DIR))


def _pipeline(store, tmp_path, logger, matcher_factory, *, ledger_loader=None, sleeps=None, **kwargs):
    return BackfillPipeline(
        store,
        ledger_loader or (lambda: LEDGER),
        matcher_factory,
        backup_dir=kwargs.pop("backup_dir", tmp_path / "backups"),
        logger=logger,
        run_id="run-test",
        schedule=kwargs.pop("schedule", SCHEDULE),
        page_size=3,
        audit=kwargs.pop("audit", None),
        sleep=(sleeps.append if sleeps is not None else lambda _seconds: None),
    )


def _by_id(path: Path) -> dict:
    return {row["id"]: row for row in json.loads(path.read_text(encoding="utf-8"))}


@pytest.mark.integration
def test_backfill_classifies_every_unclassified_record(tmp_path, records_path, logger, matcher_factory):
    sleeps: list[float] = []
    audit = MatchAuditLog(tmp_path / "audit.jsonl", "run-test")
    pipeline = _pipeline(
        JsonRecordStore(records_path), tmp_path, logger, matcher_factory, sleeps=sleeps, audit=audit
    )

    summary = pipeline.run()

    assert summary.state is BackfillState.DONE
    assert pipeline.history == [
        BackfillState.NOT_STARTED,
        BackfillState.BACKING_UP,
        BackfillState.LOADING_LEDGER,
        BackfillState.PROCESSING,
        BackfillState.VERIFYING,
        BackfillState.DONE,
    ]
    assert summary.initial_unclassified == 6
    assert summary.total_processed == 6
    assert summary.total_errors == 1
    assert summary.remaining_unclassified == 0
    assert summary.batches_committed == 3
    assert summary.tier_counts["exact_lc"] == 2
    assert summary.tier_counts["error"] == 1
    assert summary.status == "partial"
    assert sleeps == [0.25, 0.25, 0.25]

    rows = _by_id(records_path)
    assert rows[1]["department"] == "Drilling"
    assert rows[1]["mappingStatus"] == "LC Mapped"
    assert rows[1]["finalHours"] == 10.0
    assert rows[2]["lcNumber"] == "7777"
    assert rows[2]["lcPercentage"] == 50.0
    assert rows[2]["finalHours"] == 4.0
    assert rows[2]["metadata"]["allocationCount"] == 2
    assert rows[3]["mappingStatus"] == "Location Inferred"
    assert rows[3]["eventDate"].startswith("2025-06-01T08:00:00")
    assert rows[4]["department"] == "Logistics"
    assert rows[5]["department"] == "Operations"
    assert rows[5]["mappingStatus"] == "Error - Default Values"
    assert "unparseable timestamp" in rows[5]["metadata"]["migrationError"]
    assert rows[6] == RECORDS[5]
    assert rows[7]["department"] == "Operations"
    assert rows[7]["dataIntegrity"] == "Inferred"

    backups = list((tmp_path / "backups").glob("voyage_events_backup_*.json"))
    assert len(backups) == 1
    assert json.loads(backups[0].read_text(encoding="utf-8")) == RECORDS

    attempts = [json.loads(line) for line in (tmp_path / "audit.jsonl").read_text(encoding="utf-8").splitlines()]
    assert len(attempts) == 6
    assert {attempt["run_id"] for attempt in attempts} == {"run-test"}
    assert [attempt["error"] is not None for attempt in attempts].count(True) == 1

    log_text = (tmp_path / "backfill.log").read_text(encoding="utf-8")
    assert "Error processing record 5" in log_text
    assert "BACKFILL COMPLETE" in log_text


@pytest.mark.integration
def test_second_run_is_a_no_op(tmp_path, records_path, logger, matcher_factory):
    _pipeline(JsonRecordStore(records_path), tmp_path, logger, matcher_factory).run()
    after_first = records_path.read_bytes()

    loader_calls = []
    summary = _pipeline(
        JsonRecordStore(records_path),
        tmp_path,
        logger,
        matcher_factory,
        ledger_loader=lambda: loader_calls.append(1) or LEDGER,
    ).run()

    assert summary.state is BackfillState.DONE
    assert summary.total_processed == 0
    assert summary.backup_path is None
    assert loader_calls == []
    assert records_path.read_bytes() == after_first
    assert len(list((tmp_path / "backups").glob("*.json"))) == 1


@pytest.mark.integration
def test_backup_failure_aborts_before_any_mutation(tmp_path, records_path, logger, matcher_factory):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    before = records_path.read_bytes()
    loader_calls = []

    summary = _pipeline(
        JsonRecordStore(records_path),
        tmp_path,
        logger,
        matcher_factory,
        ledger_loader=lambda: loader_calls.append(1) or LEDGER,
        backup_dir=blocker / "backups",
    ).run()

    assert summary.state is BackfillState.FAILED
    assert summary.error_code == "BACKUP_ERROR"
    assert not summary.mutated
    assert loader_calls == []
    assert records_path.read_bytes() == before


@pytest.mark.integration
def test_ledger_failure_leaves_records_untouched(tmp_path, records_path, logger, matcher_factory):
    before = records_path.read_bytes()

    def broken_loader():
        raise LedgerLoadError("ledger unreadable")

    summary = _pipeline(
        JsonRecordStore(records_path), tmp_path, logger, matcher_factory, ledger_loader=broken_loader
    ).run()

    assert summary.state is BackfillState.FAILED
    assert summary.error_code == "LEDGER_LOAD_ERROR"
    assert summary.backup_path is not None
    assert records_path.read_bytes() == before


class FlakyStore(JsonRecordStore):
    def __init__(self, path: Path, fail_calls: set[int]) -> None:
        super().__init__(path)
        self.fail_calls = fail_calls
        self.calls = 0

    def apply_batch(self, updates):
        self.calls += 1
        if self.calls in self.fail_calls:
            raise TransientStoreError("connection reset")
        return super().apply_batch(updates)


@pytest.mark.integration
def test_transient_write_failure_is_retried(tmp_path, records_path, logger, matcher_factory):
    store = FlakyStore(records_path, fail_calls={2})

    summary = _pipeline(store, tmp_path, logger, matcher_factory).run()

    assert summary.state is BackfillState.DONE
    assert summary.batches_committed == 3
    assert store.calls == 4
    assert summary.remaining_unclassified == 0


@pytest.mark.integration
def test_persistent_write_failure_stops_the_run(tmp_path, records_path, logger, matcher_factory):
    store = FlakyStore(records_path, fail_calls={2, 3, 4})
    audit = MatchAuditLog(tmp_path / "audit.jsonl", "run-test")

    summary = _pipeline(store, tmp_path, logger, matcher_factory, audit=audit).run()

    assert summary.state is BackfillState.FAILED
    assert summary.error_code == "BATCH_WRITE_ERROR"
    assert summary.mutated
    assert summary.batches_committed == 1
    assert store.calls == 4
    assert summary.remaining_unclassified == 4
    assert summary.to_dict()["remaining_unclassified"] == 4
    assert len((tmp_path / "audit.jsonl").read_text(encoding="utf-8").splitlines()) == 2

    rows = _by_id(records_path)
    assert rows[1]["department"] == "Drilling"
    assert "department" not in rows[3]


@pytest.mark.integration
def test_one_failing_record_does_not_stop_its_batch(tmp_path, records_path, logger, matcher_factory):
    def factory(entries):
        matcher = matcher_factory(entries)
        original = matcher.classify_row

        def classify_row(row):
            if row["id"] == 3:
                raise RuntimeError("kaboom")
            return original(row)

        matcher.classify_row = classify_row
        return matcher

    summary = _pipeline(JsonRecordStore(records_path), tmp_path, logger, factory).run()

    assert summary.state is BackfillState.DONE
    assert summary.total_errors == 2
    rows = _by_id(records_path)
    assert rows[3]["mappingStatus"] == "Error - Default Values"
    assert "RuntimeError: kaboom" in rows[3]["metadata"]["migrationError"]
    assert rows[4]["department"] == "Logistics"


@pytest.mark.integration
def test_non_mapping_metadata_does_not_stop_the_run(tmp_path, logger, matcher_factory):
    path = tmp_path / "records.json"
    path.write_text(
        json.dumps(
            [
                {"id": 1, "location": "Argos", "hours": 1, "metadata": "legacy"},
                {"id": 2, "location": "Argos", "hours": 2, "metadata": ["a", "b"]},
                {"id": 3, "location": "Argos", "hours": 3},
            ]
        ),
        encoding="utf-8",
    )
    schedule = BatchSchedule(batch_size=1, inter_batch_delay=0, retry_initial_wait=0, retry_max_wait=0)

    summary = _pipeline(JsonRecordStore(path), tmp_path, logger, matcher_factory, schedule=schedule).run()

    assert summary.state is BackfillState.DONE
    assert summary.total_processed == 3
    assert summary.total_errors == 0
    assert summary.remaining_unclassified == 0
    rows = _by_id(path)
    assert rows[1]["metadata"]["legacyMetadata"] == "legacy"
    assert rows[1]["metadata"]["migrationVersion"] == "1.0"
    assert rows[2]["metadata"]["legacyMetadata"] == ["a", "b"]
    assert "legacyMetadata" not in rows[3]["metadata"]


@pytest.mark.integration
def test_failure_building_an_update_falls_back_to_defaults(tmp_path, records_path, logger, matcher_factory, monkeypatch):
    real_build_update = backfill.build_update

    def build_update(row, *args):
        if row["id"] == 4:
            raise KeyError("department")
        return real_build_update(row, *args)

    monkeypatch.setattr(backfill, "build_update", build_update)

    summary = _pipeline(JsonRecordStore(records_path), tmp_path, logger, matcher_factory).run()

    assert summary.state is BackfillState.DONE
    assert summary.total_errors == 2
    rows = _by_id(records_path)
    assert rows[4]["mappingStatus"] == "Error - Default Values"
    assert "KeyError" in rows[4]["metadata"]["migrationError"]


@pytest.mark.integration
def test_unexpected_error_marks_the_run_failed(tmp_path, records_path, logger):
    before = records_path.read_bytes()

    def broken_factory(_entries):
        raise RuntimeError("index exploded")

    summary = _pipeline(JsonRecordStore(records_path), tmp_path, logger, broken_factory).run()

    assert summary.state is BackfillState.FAILED
    assert summary.error_code == "UNEXPECTED_ERROR"
    assert "RuntimeError: index exploded" in summary.failure
    assert summary.remaining_unclassified == 6
    assert not summary.mutated
    assert records_path.read_bytes() == before
    assert "BACKFILL HALTED" in (tmp_path / "backfill.log").read_text(encoding="utf-8")
