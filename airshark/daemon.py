"""
APScheduler driver for the long-running feed: periodic fetch and sweep jobs.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler

from .config_schema import SchedulingConfig
from .ingest import IngestionOrchestrator
from .store import FeedStore

if TYPE_CHECKING:
    from .run_log import RunLogger

FETCH_JOB_ID = "fetch_posts"
SWEEP_JOB_ID = "sweep_store"


def build_scheduler(
    orchestrator: IngestionOrchestrator,
    store: FeedStore,
    *,
    scheduling: SchedulingConfig,
    scheduler: BaseScheduler | None = None,
    logger: RunLogger | None = None,
) -> BaseScheduler:
    """
    Register the fetch and sweep jobs. The fetch job fires immediately, then on every interval.
    """
    sched = scheduler or BlockingScheduler(timezone="UTC")

    # The interval trigger is the throttle here.
    def job_fetch() -> None:
        accepted = orchestrator.run_pass()
        if logger is not None:
            logger.info("fetch_job_completed", accepted=accepted, retained=len(store))

    def job_sweep() -> None:
        store.sweep()

    sched.add_job(
        job_fetch,
        "interval",
        minutes=scheduling.fetch_interval_minutes,
        id=FETCH_JOB_ID,
        next_run_time=datetime.now(timezone.utc),
        max_instances=1,
        coalesce=True,
    )
    sched.add_job(
        job_sweep,
        "interval",
        minutes=scheduling.sweep_interval_minutes,
        id=SWEEP_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    return sched


def run_daemon(
    orchestrator: IngestionOrchestrator,
    store: FeedStore,
    *,
    scheduling: SchedulingConfig,
    logger: RunLogger | None = None,
) -> None:
    """Block until interrupted."""
    sched = build_scheduler(orchestrator, store, scheduling=scheduling, logger=logger)
    if logger is not None:
        logger.info(
            "daemon_started",
            fetch_interval_minutes=scheduling.fetch_interval_minutes,
            sweep_interval_minutes=scheduling.sweep_interval_minutes,
        )
    try:
        sched.start()
    finally:
        if sched.running:
            sched.shutdown(wait=False)
        if logger is not None:
            logger.info("daemon_stopped")
