"""Core glassline command-line execution logic.

This module contains the actual command implementations, separated from
argument parsing. Scripts are thin wrappers; this is the real implementation.

Usage::

    glassline setup  [--config scripts/user_config.py] [--base-dir DIR]
    glassline ingest events.jsonl [more.jsonl ...]
    glassline backfill --start-time 2024-03-01T12:00:00Z --end-time 2024-03-04T06:00:00Z \\
        --mirror /mnt/mirror/glassline.db [--dry-run] [--retry-failed]
    glassline verify [--freshness-minutes 60]
"""

import sys
import json
import argparse
import logging
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from glassline.backfill import BackfillRunner, BackfillTracker
from glassline.contracts import SetupError
from glassline.pipeline import PipelineOrchestrator, build_engine, open_store, verify_setup
from glassline.schemas.initialization import init_runtime_config
from glassline.store import TableStore

logger = logging.getLogger(__name__)


def _banner(title: str, config) -> None:
    print(f"\n{'='*60}")
    print(f"glassline {title}")
    print('='*60)
    print(f"Mode:   {config.mode}")
    print(f"Output: {config.base_dir}")
    print(f"Run ID: {config.run_id}")
    print('='*60)


def _configure_console_logging(config) -> None:
    logging.basicConfig(
        level=getattr(logging, config.logging.level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def run_setup(config) -> int:
    """Apply the setup script to the configured store."""
    _configure_console_logging(config)
    store = open_store(config)
    try:
        engine = build_engine(config, store)
        print(f"Tables:    {', '.join(store.tables())}")
        print(f"Functions: {', '.join(engine.functions())}")
        for policy in engine.policies():
            print(f"Policy:    {policy.describe()}")
    except SetupError as exc:
        print(f"Setup failed: {exc}", file=sys.stderr)
        return 1
    finally:
        store.close()
    return 0


def run_ingest(config, inputs: List[str]) -> int:
    """Ingest raw event files through the live cascade."""
    orchestrator = PipelineOrchestrator(config)
    try:
        stats = orchestrator.start(inputs)
    except SetupError as exc:
        logger.error("Setup failed: %s", exc)
        return 1
    print(json.dumps({k: v for k, v in stats.items() if k != "failures"}, indent=2))
    return 1 if stats.get("batches_failed") else 0


def run_backfill(config, dry_run: bool = False, retry_failed: bool = False) -> int:
    """Replay the configured range from the mirror store, or print its commands."""
    _configure_console_logging(config)
    cfg = config.backfill

    if dry_run:
        # Only the window plan is needed; no store is opened
        runner = BackfillRunner(engine=None, mirror=None, config=config)
        for command in runner.commands(runner.plan()):
            print(command)
            print()
        return 0

    if not cfg.mirror_path:
        print("Backfill needs a mirror store (--mirror or MIRROR_PATH)", file=sys.stderr)
        return 2

    tracker_dir = Path((config.output_dirs or {}).get("backfill", config.base_dir or "."))
    store = open_store(config)
    mirror = TableStore(cfg.mirror_path)
    tracker = BackfillTracker(tracker_dir / cfg.tracker_filename)
    try:
        engine = build_engine(config, store)
        runner = BackfillRunner(engine, mirror, config, tracker)
        results = runner.retry_failed() if retry_failed else runner.run()
        stats = tracker.get_statistics(runner.table)
    except SetupError as exc:
        logger.error("Setup failed: %s", exc)
        return 1
    finally:
        tracker.close()
        mirror.close()
        store.close()

    for result in results:
        detail = f"{result.rows} rows" if result.ok else result.error
        print(f"{result.window.day} {result.window.label}: {result.status} ({detail})")
    print(json.dumps(stats, indent=2))
    return 0 if all(r.ok for r in results) else 1


def run_verify(config, freshness_minutes: int = 60) -> int:
    """Check tables, functions and policies; report counts and freshness."""
    _configure_console_logging(config)
    store = open_store(config)
    try:
        engine = build_engine(config, store, apply_setup=False)
        report = verify_setup(engine, config, timedelta(minutes=freshness_minutes))
    finally:
        store.close()

    for line in report.summary():
        print(line)
    return 0 if report.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="glassline",
        description="Update-policy pipeline for glass-container inspection telemetry",
    )
    parser.add_argument("--config", help="Path to user config file (Python file with CONFIG)")
    parser.add_argument("--base-dir", help="Output directory")
    parser.add_argument("--rerun", action="store_true", help="Delete output directories before running")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("setup", help="Create tables, functions and update policies")

    ingest = sub.add_parser("ingest", help="Ingest raw event JSON-lines files")
    ingest.add_argument("inputs", nargs="+", help="JSON-lines files of raw events")

    backfill = sub.add_parser("backfill", help="Replay history from a mirror store")
    backfill.add_argument("--start-time", help="Start time (ISO format)")
    backfill.add_argument("--end-time", help="End time (ISO format)")
    backfill.add_argument("--mirror", help="Path to the mirror store database")
    backfill.add_argument("--dry-run", action="store_true", help="Print window commands only")
    backfill.add_argument("--retry-failed", action="store_true",
                          help="Resubmit windows that failed in an earlier run")

    verify = sub.add_parser("verify", help="Check the deployment")
    verify.add_argument("--freshness-minutes", type=int, default=60,
                        help="Trailing window for the freshness check")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "backfill":
        args.mode = "backfill"

    config = init_runtime_config(args)
    _banner(args.command, config)

    if args.command == "setup":
        return run_setup(config)
    if args.command == "ingest":
        return run_ingest(config, args.inputs)
    if args.command == "backfill":
        return run_backfill(config, dry_run=args.dry_run, retry_failed=args.retry_failed)
    return run_verify(config, args.freshness_minutes)


if __name__ == "__main__":
    sys.exit(main())
