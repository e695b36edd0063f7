"""
run_jobs.py

Run one scheduled job from cron or a systemd timer.

Usage:
  python -m run_jobs sync
  python -m run_jobs reports --window-days 7
  python -m run_jobs init-db
"""
import argparse
import json
import logging
import sys

import config
from database.db import init_db
from errors import StoreUnavailableError
from reports import generate_all
from sync import sync_all

logger = logging.getLogger("run_jobs")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-5s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Classroom sync and progress report jobs",
    )
    parser.add_argument("job", choices=["sync", "reports", "init-db"], help="Job to run")
    parser.add_argument(
        "--window-days",
        type=int,
        default=config.REPORT_WINDOW_DAYS,
        help="Reporting window for the reports job",
    )
    parser.add_argument(
        "--log-level",
        default=config.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        if args.job == "init-db":
            init_db()
            return 0
        if args.job == "sync":
            summary = sync_all()
        else:
            summary = generate_all(args.window_days)
    except StoreUnavailableError as exc:
        logger.error("Job %s aborted: %s", args.job, exc)
        return 1
    except Exception:
        logger.exception("Job %s failed", args.job)
        return 1

    print(json.dumps(summary.to_dict(), indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
