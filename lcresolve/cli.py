"""CLI entrypoint for location/LC resolution and department backfill."""

from __future__ import annotations

import argparse
import sys
from functools import partial
from pathlib import Path
from typing import Callable

from lcresolve.common.config_loader import ConfigBundle, load_all_configs
from lcresolve.common.constants import COMMANDS, EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from lcresolve.common.errors import PipelineError
from lcresolve.common.logging import build_logger, close_logger, log_event
from lcresolve.common.time_utils import generate_run_id, utc_today_iso
from lcresolve.engine.aggregate import AggregationSettings
from lcresolve.pipeline.audit import MatchAuditLog
from lcresolve.pipeline.backfill import BackfillPipeline, BackfillState, BatchSchedule
from lcresolve.pipeline.classify import build_matcher_factory, run_classify, run_summarize
from lcresolve.pipeline.inputs import load_ledger, load_records
from lcresolve.pipeline.reports import write_run_summary
from lcresolve.pipeline.store import JsonRecordStore


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--records", required=True)
    parser.add_argument("--ledger", required=True)
    parser.add_argument("--output", default=None)
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--backup-dir", default=None)
    parser.add_argument("--log-file", default=None)
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARN", "ERROR"])
    parser.add_argument("--yes", action="store_true", help="skip the interactive confirmation")
    args = parser.parse_args(argv)
    if args.batch_size is not None and args.batch_size < 1:
        parser.error("--batch-size must be a positive integer")
    return args


def _resolve(data_dir: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else data_dir / path


def confirm(prompt: str, input_fn: Callable[[str], str] = input) -> bool:
    try:
        answer = input_fn(prompt)
    except EOFError:
        return False
    return answer.strip().lower() in ("yes", "y")


def _print_plan(args: argparse.Namespace, schedule: BatchSchedule, log_file: Path, backup_dir: Path) -> None:
    print("Department backfill")
    print("This will:")
    print("1. Back up every record before anything is modified")
    print("2. Build the ledger index from the cost-allocation data")
    print("3. Backfill department, finalHours, lcNumber, lcPercentage, mappedLocation,")
    print("   mappingStatus and dataIntegrity on records missing a department")
    print(f"Records: {args.records}")
    print(f"Batch size: {schedule.batch_size}")
    print(f"Log file: {log_file}")
    print(f"Backup directory: {backup_dir}")


def run_backfill(
    args: argparse.Namespace,
    bundle: ConfigBundle,
    run_id: str,
    data_dir: Path,
    input_fn: Callable[[str], str] = input,
) -> int:
    backfill_cfg = bundle.backfill
    log_file = Path(args.log_file) if args.log_file else _resolve(data_dir, backfill_cfg["log_file"])
    backup_dir = Path(args.backup_dir) if args.backup_dir else _resolve(data_dir, backfill_cfg["backup_dir"])
    schedule = BatchSchedule.from_config(backfill_cfg, batch_size=args.batch_size)

    logger = build_logger(run_id, log_file=log_file, level=args.log_level)
    try:
        store = JsonRecordStore(Path(args.records))
        _print_plan(args, schedule, log_file, backup_dir)
        if not args.yes and not confirm(
            "\nThis will modify existing records. Do you want to continue? (yes/no): ", input_fn
        ):
            log_event(logger, "Backfill cancelled by operator", run_id=run_id, event="CANCELLED")
            return EXIT_SUCCESS

        pipeline = BackfillPipeline(
            store,
            partial(load_ledger, Path(args.ledger)),
            build_matcher_factory(bundle),
            backup_dir=backup_dir,
            logger=logger,
            run_id=run_id,
            schedule=schedule,
            page_size=int(backfill_cfg["page_size"]),
            audit=MatchAuditLog(_resolve(data_dir, backfill_cfg["audit_file"]), run_id),
        )
        summary = pipeline.run()
        write_run_summary(data_dir, summary, run_date=utc_today_iso())

        if summary.state is BackfillState.FAILED:
            return EXIT_PARTIAL if summary.mutated else EXIT_HARD_FAIL
        return EXIT_SUCCESS
    except PipelineError as exc:
        log_event(logger, f"Backfill aborted: {exc}", level="ERROR", run_id=run_id, error_code=exc.error_code)
        return EXIT_HARD_FAIL
    finally:
        close_logger(logger)


def run_stage(args: argparse.Namespace, bundle: ConfigBundle, run_id: str, data_dir: Path) -> int:
    out_path = Path(args.output) if args.output else data_dir / "out" / f"{args.command}_{run_id}.json"
    log_file = Path(args.log_file) if args.log_file else _resolve(data_dir, bundle.backfill["log_file"])
    logger = build_logger(run_id, log_file=log_file, level=args.log_level)
    try:
        matcher = build_matcher_factory(bundle)(load_ledger(Path(args.ledger)))
        rows = load_records(Path(args.records))
        log_event(logger, f"Loaded {len(rows)} records", run_id=run_id, stage=args.command, rows_in=len(rows))
        if args.command == "classify":
            payload = run_classify(rows, matcher, out_path)
        else:
            payload = run_summarize(rows, matcher, AggregationSettings.from_config(bundle.aggregation), out_path)

        statistics = payload["statistics"]
        tiers = " ".join(f"{tier}={count}" for tier, count in statistics["tiers"].items())
        log_event(
            logger,
            f"Match statistics: {tiers or 'none'}; ledger share {statistics['ledger_share_percent']}%",
            run_id=run_id,
            stage=args.command,
            event="STAGE_DONE",
            rows_out=statistics["total"] - statistics["errors"],
        )
        log_event(logger, f"Wrote {out_path}", run_id=run_id, stage=args.command)
        return EXIT_SUCCESS
    finally:
        close_logger(logger)


def run_command(args: argparse.Namespace, input_fn: Callable[[str], str] = input) -> int:
    run_id = args.run_id or generate_run_id()
    data_dir = Path(args.data_dir)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None
    bundle = load_all_configs(Path(args.config_dir), overlay_config_dir=overlay_config_dir)

    if args.command == "backfill":
        return run_backfill(args, bundle, run_id, data_dir, input_fn)
    return run_stage(args, bundle, run_id, data_dir)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        return run_command(args)
    except PipelineError as exc:
        print(f"{exc.error_code}: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL
    except Exception as exc:
        print(f"UNEXPECTED_ERROR: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
