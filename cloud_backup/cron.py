"""Blocking scheduler loop that fires a profile's backups on its schedule."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

from cloud_backup.schedule import Schedule, next_run

logger = logging.getLogger(__name__)


def run_scheduler(
    schedule: Schedule,
    callback: Callable[[], None],
    *,
    clock: Callable[[], datetime] = datetime.now,
    sleep: Callable[[float], None] = time.sleep,
    max_runs: int | None = None,
) -> int:
    """Run a blocking scheduler loop.

    Sleeps until the next run instant, runs the callback, then recalculates
    from the instant just served so one slot never fires twice. Returns the
    number of runs, which is 0 for a disabled schedule.
    """
    if not schedule.enabled:
        logger.info("Schedule is disabled, nothing to run")
        return 0

    runs = 0
    cursor = clock()

    while max_runs is None or runs < max_runs:
        target = next_run(schedule, cursor)
        if target is None:
            logger.info("Schedule has no further runs")
            return runs
        wait_seconds = (target - clock()).total_seconds()

        if wait_seconds > 0:
            logger.info(f"Next backup scheduled at {target.strftime('%Y-%m-%d %H:%M')}")
            sleep(wait_seconds)

        logger.info("Schedule trigger: starting backup")
        try:
            callback()
        except Exception:
            logger.exception("Scheduled backup failed")

        runs += 1
        cursor = max(clock(), target)

    return runs
