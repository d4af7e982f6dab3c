"""Entry point for the RQ worker that runs automation cycles off the API process."""

from __future__ import annotations

import logging
import sys

from redis import Redis
from rq import Queue, Worker

from moneyflows.core.config import settings

logger = logging.getLogger("moneyflows.worker")


def build_worker(connection: Redis) -> Worker | None:
    """Return a worker bound to every configured lane, or None if it could not share state."""
    if settings.rule_store_backend != "sql":
        logger.error("Worker needs MONEYFLOWS_RULE_STORE_BACKEND=sql; an in-memory store is private to the API.")
        return None
    lanes = [Queue(name, connection=connection) for name in settings.worker_queue_names]
    if not lanes:
        logger.error("MONEYFLOWS_WORKER_QUEUE_NAMES is empty; nothing to listen on.")
        return None
    return Worker(lanes, connection=connection, name=f"moneyflows-{settings.environment}")


def main() -> int:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(name)s [%(levelname)s] %(message)s",
        force=True,
    )
    worker = build_worker(Redis.from_url(settings.redis_url))
    if worker is None:
        return 1
    logger.info("Worker listening on %s", ", ".join(worker.queue_names()))
    try:
        # The periodic tick itself is enqueued by the separate `rqscheduler` process.
        worker.work(with_scheduler=True)
    except KeyboardInterrupt:
        logger.info("Worker stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
