"""
把超时未回调的生成任务标记为 failed，供 cron 定时调用。

Usage:
  PYTHONPATH=src python scripts/reap_stale_predictions.py
  PYTHONPATH=src python scripts/reap_stale_predictions.py --timeout-minutes 120 --dry-run
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timedelta

from course_images.core import get_logger, get_settings, setup_logging
from course_images.core.database import init_db
from course_images.services.reaper_service import ReaperService

logger = get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Mark stale image predictions as failed.")
    parser.add_argument(
        "--timeout-minutes",
        type=int,
        default=settings.stale_prediction_timeout_minutes,
        help="Predictions still 'starting' after this many minutes are failed.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List stale predictions without modifying them.",
    )
    args = parser.parse_args(argv)

    if args.timeout_minutes <= 0:
        parser.error("--timeout-minutes must be positive")

    setup_logging(settings.log_level)
    init_db()

    timeout = timedelta(minutes=args.timeout_minutes)
    reaper = ReaperService(timeout=timeout)

    if args.dry_run:
        stale = reaper.find_stale(now=datetime.now())
        for prediction in stale:
            print(f"{prediction.prediction_id}\t{prediction.prediction_type}\t{prediction.created_at.isoformat()}")
        print(f"stale={len(stale)} (dry run)")
        return 0

    reaped = reaper.reap_stale()
    for prediction_id in reaped:
        print(prediction_id)
    print(f"reaped={len(reaped)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
