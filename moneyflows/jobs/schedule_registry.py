from __future__ import annotations

import logging
from datetime import datetime, timezone

from rq_scheduler import Scheduler

from moneyflows.core.config import settings
from moneyflows.jobs.automations import process_scheduled_rules_job
from moneyflows.services.task_queue import task_queue

TICK_JOB_ID = "automations:process_scheduled_rules"
TICK_RESULT_TTL_SECONDS = 3600

logger = logging.getLogger("moneyflows.jobs.schedule_registry")


def _schedule_entries() -> list[dict]:
    lane = "automations" if "automations" in task_queue.queue_names else task_queue.queue_names[0]
    return [
        {
            "id": TICK_JOB_ID,
            "func": process_scheduled_rules_job,
            "interval": settings.tick_interval_seconds,
            "queue_name": lane,
        }
    ]


def _register(scheduler: Scheduler, entry: dict) -> None:
    if entry["id"] in scheduler:
        existing = scheduler.job_class.fetch(entry["id"], connection=scheduler.connection)
        # rq-scheduler keeps the interval in job.meta.
        if existing.meta.get("interval") == entry["interval"]:
            return
        # Interval changed since the last deploy.
        scheduler.cancel(existing)
        logger.info("Rescheduling %s with a new interval", entry["id"])
    scheduler.schedule(
        scheduled_time=datetime.now(timezone.utc),
        func=entry["func"],
        interval=entry["interval"],
        repeat=None,
        id=entry["id"],
        queue_name=entry["queue_name"],
        result_ttl=TICK_RESULT_TTL_SECONDS,
    )
    logger.info("Clock tick %s runs every %ss on lane %s", entry["id"], entry["interval"], entry["queue_name"])


def ensure_schedules() -> bool:
    """Register the clock tick with rq-scheduler once per interval setting.

    Returns False when the tick has to be driven in-process instead.
    """
    if settings.environment.lower() == "test":
        return False
    if settings.rule_store_backend != "sql":
        logger.info("Worker ticks need the sql rule store; ticking in-process")
        return False
    if task_queue.connection is None:
        logger.info("No queue connection; ticking in-process")
        return False
    scheduler = Scheduler(connection=task_queue.connection, queue_name=task_queue.queue_names[0])
    for entry in _schedule_entries():
        _register(scheduler, entry)
    return True
