"""Watch mode: run sync passes on a fixed interval."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from scheduler.jobs.sync_pass import SyncContext, run_sync_pass

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "catalog_sync_pass"


def _sync_tick(context: SyncContext) -> None:
    try:
        run_sync_pass(context)
    except Exception:
        logger.exception("[SYNC] pass crashed")


def build_scheduler(context: SyncContext, *, run_now: bool = True) -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone="UTC")
    job_options = {}
    if run_now:
        job_options["next_run_time"] = datetime.now(timezone.utc)
    scheduler.add_job(
        _sync_tick,
        trigger=IntervalTrigger(seconds=context.settings.poll_interval_seconds),
        args=[context],
        id=SYNC_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
        **job_options,
    )
    return scheduler


def run_forever(context: SyncContext) -> None:
    scheduler = build_scheduler(context)
    logger.info("[SYNC] watching every %ss", context.settings.poll_interval_seconds)
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("[SYNC] scheduler stopped")
