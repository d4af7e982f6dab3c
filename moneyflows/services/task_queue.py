"""Redis/RQ lanes for automation cycles, with inline execution when Redis is absent."""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue
from rq.job import Job
from rq.registry import FailedJobRegistry, ScheduledJobRegistry, StartedJobRegistry
from rq.results import Result
from rq.worker import Worker
from rq_scheduler import Scheduler

from moneyflows.core.config import settings
from moneyflows.utils.redaction import redact_secrets

logger = logging.getLogger("moneyflows.services.task_queue")


class QueueJobFailed(RuntimeError):
    """A cycle job finished on a worker without producing a result."""


async def _call_inline(target: Callable[[], Any]) -> Any:
    outcome = target()
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return outcome


def _await_job(job: Job, timeout_seconds: int) -> Any:
    result = job.latest_result(timeout=timeout_seconds)
    if result is None:
        raise QueueJobFailed(f"job {job.id} produced no result within {timeout_seconds}s")
    if result.type != Result.Type.SUCCESSFUL:
        raise QueueJobFailed(f"job {job.id} failed: {redact_secrets(result.exc_string or 'unknown error')}")
    return result.return_value


def _lane(queue: Queue) -> dict[str, Any]:
    return {
        "name": queue.name,
        "waiting": queue.count,
        "running": len(StartedJobRegistry(queue=queue)),
        "scheduled": len(ScheduledJobRegistry(queue=queue)),
        "failed": len(FailedJobRegistry(queue=queue)),
    }


class TaskQueue:
    """Routes cycle jobs to RQ workers when Redis answers, otherwise runs them in-process."""

    def __init__(self, redis_url: str | None = None, queue_names: list[str] | None = None) -> None:
        self.redis_url = redis_url or settings.redis_url
        self.queue_names: list[str] = list(queue_names or settings.worker_queue_names or ["automations"])
        self._connection: Redis | None = None
        self._enabled = False
        if settings.environment.lower() == "test":
            logger.info("Cycle queue disabled in test environment; cycles run inline")
        else:
            self._connect()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def connection(self) -> Redis | None:
        return self._connection

    def _connect(self) -> None:
        try:
            connection = Redis.from_url(self.redis_url)
            connection.ping()
        except Exception as exc:  # pragma: no cover - network/redis specific
            logger.warning("Redis unavailable; running jobs inline: %s", redact_secrets(str(exc)))
            return
        self._connection = connection
        self._enabled = True
        logger.info("Cycle queue connected; lanes: %s", ", ".join(self.queue_names))

    def lane(self, queue_name: str | None = None) -> Queue:
        if self._connection is None:
            raise RuntimeError("Queue connection not initialized")
        name = queue_name if queue_name in self.queue_names else self.queue_names[0]
        return Queue(name, connection=self._connection)

    async def enqueue_or_run(
        self,
        func: Callable[..., Any],
        *,
        fallback: Callable[[], Any] | None = None,
        queue_name: str | None = None,
        timeout_seconds: int = 60,
        description: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """Run ``func`` on a worker and block until it reports back.

        RQ never retries these jobs; retry and backoff belong to the engine.
        Without Redis, or when the round trip breaks, ``fallback`` (or ``func``
        itself) runs in-process instead.
        """
        inline = fallback or (lambda: func(**kwargs))
        if not self._enabled or self._connection is None:
            return await _call_inline(inline)

        def _round_trip() -> Any:
            job = self.lane(queue_name).enqueue(
                func, kwargs=kwargs, job_timeout=timeout_seconds, description=description
            )
            return _await_job(job, timeout_seconds)

        try:
            return await asyncio.to_thread(_round_trip)
        except (RedisError, QueueJobFailed) as exc:
            logger.warning("Queue round trip failed; running %s inline: %s", func.__name__, redact_secrets(str(exc)))
            return await _call_inline(inline)

    def snapshot(self) -> dict[str, Any]:
        """Summarize lanes, workers and the tick scheduler for the health endpoint."""
        checked_at = datetime.now(timezone.utc).isoformat()
        if self._connection is None:
            return {"status": "offline", "lanes": [], "workers": [], "checkedAt": checked_at}

        problems: list[str] = []
        lanes: list[dict[str, Any]] = []
        workers: list[dict[str, Any]] = []
        scheduled_jobs: int | None = None
        try:
            lanes = [_lane(Queue(name, connection=self._connection)) for name in self.queue_names]
            workers = [
                {"name": worker.name, "state": worker.get_state(), "lanes": worker.queue_names()}
                for worker in Worker.all(connection=self._connection)
            ]
            scheduler = Scheduler(connection=self._connection, queue_name=self.queue_names[0])
            scheduled_jobs = sum(1 for _ in scheduler.get_jobs())
        except RedisError as exc:  # pragma: no cover - network/redis specific
            logger.warning("Queue snapshot incomplete: %s", redact_secrets(str(exc)))
            problems.append("redis_error")
        if not workers:
            problems.append("no_workers")
        return {
            "status": "degraded" if problems else "online",
            "lanes": lanes,
            "workers": workers,
            "scheduledJobs": scheduled_jobs,
            "problems": problems,
            "checkedAt": checked_at,
        }


task_queue = TaskQueue()
