"""Worker job entrypoints for money flow cycles."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from moneyflows.services.money_flow_service import build_engine

logger = logging.getLogger("moneyflows.jobs.automations")


def process_scheduled_rules_job() -> dict[str, Any]:
    """Run one clock tick against the shared rule store."""

    async def _run() -> dict[str, Any]:
        engine = build_engine()
        report = await engine.process_scheduled_rules()
        return report.to_payload()

    result = asyncio.run(_run())
    logger.info(
        "Scheduled rule tick complete (%s, %s executions)",
        result.get("status"),
        len(result.get("executionIds", [])),
    )
    return result


def process_event_job(*, event: dict[str, Any]) -> dict[str, Any]:
    """Evaluate event-driven rules for a transaction pushed through the queue."""

    async def _run() -> dict[str, Any]:
        engine = build_engine()
        report = await engine.process_event(event)
        return report.to_payload()

    result = asyncio.run(_run())
    logger.info("Event cycle complete for %s (%s)", event.get("id"), result.get("status"))
    return result
