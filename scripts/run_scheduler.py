#!/usr/bin/env python3
"""
Run the registry batch scheduler.

Usage:
    python scripts/run_scheduler.py [--config registry.yaml] [--create-tables]
    python scripts/run_scheduler.py --run-now accrual_cycle
    python scripts/run_scheduler.py --status

Without --run-now or --status the scheduler starts every enabled job and
blocks until interrupted (Ctrl+C / SIGTERM).  --run-now runs one job
immediately and prints its JobResult as JSON; the exit code is 1 when the
job failed.
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from registry_batch.orchestrator import BatchOrchestrator
from registry_config import load_config
from registry_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from registry_kernel.exceptions import SchedulerError


def _print_status(scheduler) -> None:
    for status in scheduler.status():
        state = "scheduled" if status.scheduled else "manual"
        cron = status.cron_expression or "-"
        print(f"  {status.job_name:<22} {state:<10} {cron:<14} {status.timezone or ''}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Registry batch scheduler")
    parser.add_argument("--config", type=Path, help="YAML file merged over the packaged defaults")
    parser.add_argument("--run-now", metavar="JOB", help="Run one job immediately and exit")
    parser.add_argument("--status", action="store_true", help="Print the job table and exit")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    db = config.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
    )
    if args.create_tables:
        create_tables()

    orchestrator = BatchOrchestrator.from_config(config, get_session_factory())
    scheduler = orchestrator.create_scheduler()

    if args.status:
        _print_status(scheduler)
        return 0

    if args.run_now:
        try:
            result = scheduler.run_now(args.run_now)
        except SchedulerError as exc:
            print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
            return 2
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0 if result.success else 1

    stop = threading.Event()

    def _handle_signal(signum, frame):
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    print("Starting scheduler:")
    scheduler.start_all()
    _print_status(scheduler)
    try:
        stop.wait()
    finally:
        print("Stopping scheduler...")
        scheduler.stop_all()
    return 0


if __name__ == "__main__":
    sys.exit(main())
