"""Pre-mutation snapshot of the record store."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from lcresolve.common.errors import BackupError, PipelineError
from lcresolve.common.fs import ensure_dir
from lcresolve.common.logging import log_event
from lcresolve.common.time_utils import backup_stamp
from lcresolve.pipeline.store import RecordStore


def write_backup(
    store: RecordStore,
    backup_dir: Path,
    *,
    page_size: int,
    label: str = "voyage_events",
    logger: logging.Logger | None = None,
    run_id: str | None = None,
) -> Path:
    """Stream every record to a timestamped JSON file, page by page.

    The file only appears under its final name once fully written.
    """
    path = backup_dir / f"{label}_backup_{backup_stamp()}.json"
    tmp_path = path.with_name(f".{path.name}.partial")
    total = 0
    try:
        ensure_dir(backup_dir)
        expected = store.count()
        with tmp_path.open("w", encoding="utf-8") as f:
            f.write("[")
            for page in store.iter_pages(page_size):
                for record in page:
                    f.write("\n" if total == 0 else ",\n")
                    f.write(json.dumps(record, ensure_ascii=False, sort_keys=True, default=str))
                    total += 1
                if logger is not None:
                    log_event(
                        logger,
                        f"Backed up {total} / {expected} records",
                        run_id=run_id,
                        stage="backup",
                        rows_out=total,
                    )
            f.write("\n]\n")
        os.replace(tmp_path, path)
    except (OSError, PipelineError, TypeError, ValueError) as exc:
        if tmp_path.exists():
            tmp_path.unlink()
        raise BackupError(f"Failed to create backup: {exc}") from exc
    return path
