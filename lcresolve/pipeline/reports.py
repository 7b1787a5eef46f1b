"""Run report output."""

from __future__ import annotations

from pathlib import Path

from lcresolve.common.fs import write_json
from lcresolve.pipeline.backfill import BackfillSummary


def write_run_summary(data_dir: Path, summary: BackfillSummary, *, run_date: str) -> Path:
    summary_path = data_dir / "out" / "reports" / f"{summary.run_id}_backfill.json"
    payload = {"run_date": run_date, **summary.to_dict()}
    write_json(summary_path, payload)
    return summary_path
