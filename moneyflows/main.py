"""FastAPI application entrypoint and clock-tick bootstrap.

Invariants:
- Exactly one tick driver runs: rq-scheduler when the SQL store and Redis are
  available, otherwise an in-process asyncio loop (never in tests).
"""

import asyncio
import contextlib
import logging
from typing import Any

from fastapi import FastAPI

from moneyflows.api.router import api_router
from moneyflows.core.config import settings
from moneyflows.jobs.schedule_registry import ensure_schedules
from moneyflows.services.money_flow_service import MoneyFlowEngine, build_engine
from moneyflows.services.task_queue import task_queue

logger = logging.getLogger("moneyflows.main")

app = FastAPI(title=settings.app_name)
app.include_router(api_router, prefix=settings.api_prefix)


async def _tick_loop(engine: MoneyFlowEngine, interval_seconds: int) -> None:
    """Drive the clock tick in-process when no scheduler is available."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await engine.process_scheduled_rules()
        except Exception:  # noqa: BLE001
            logger.exception("In-process clock tick failed")


@app.on_event("startup")
async def _start_engine() -> None:
    """Build the engine, seed templates and register the clock tick."""
    engine = getattr(app.state, "engine", None)
    if engine is None:
        engine = build_engine()
        app.state.engine = engine
    if settings.rule_store_backend == "sql":
        from moneyflows.db.session import init_models

        await init_models()
    if settings.seed_default_rules:
        await engine.seed_templates()
    app.state.tick_task = None
    if not ensure_schedules() and settings.environment.lower() != "test":
        app.state.tick_task = asyncio.create_task(_tick_loop(engine, settings.tick_interval_seconds))
        logger.info("Driving clock tick in-process every %ss", settings.tick_interval_seconds)


@app.on_event("shutdown")
async def _stop_ticker() -> None:
    task = getattr(app.state, "tick_task", None)
    if task is None:
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@app.get("/health", tags=["internal"])
@app.get(f"{settings.api_prefix}/health", tags=["internal"])
async def health() -> dict[str, Any]:
    """Return engine and queue status."""
    engine = getattr(app.state, "engine", None)
    queue = task_queue.snapshot()
    return {
        "status": "ok" if engine is not None else "starting",
        "cycleInProgress": bool(engine and engine.busy),
        "ruleStore": settings.rule_store_backend,
        "queue": queue["status"],
    }
