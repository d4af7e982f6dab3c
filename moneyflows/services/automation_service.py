"""Dispatch helpers that route cycles through the worker queue when it can share state."""

from __future__ import annotations

from typing import Any

from moneyflows.core.config import settings
from moneyflows.jobs.automations import process_event_job, process_scheduled_rules_job
from moneyflows.schema.automation import FinancialEvent
from moneyflows.services.money_flow_service import MoneyFlowEngine
from moneyflows.services.task_queue import task_queue


def _uses_worker() -> bool:
    # Workers build their own engine, so only a shared SQL store keeps them in sync.
    return settings.rule_store_backend == "sql" and task_queue.enabled


async def run_tick(engine: MoneyFlowEngine) -> dict[str, Any]:
    """Run one clock tick on a worker, or inline on the given engine."""

    async def _fallback() -> dict[str, Any]:
        report = await engine.process_scheduled_rules()
        return report.to_payload()

    if not _uses_worker():
        return await _fallback()
    return await task_queue.enqueue_or_run(
        process_scheduled_rules_job,
        fallback=_fallback,
        queue_name="automations",
        timeout_seconds=120,
        description="automations:tick",
    )


async def submit_event(engine: MoneyFlowEngine, event: FinancialEvent) -> dict[str, Any]:
    """Evaluate an inbound event on a worker, or inline on the given engine."""

    async def _fallback() -> dict[str, Any]:
        report = await engine.process_event(event)
        return report.to_payload()

    if not _uses_worker():
        return await _fallback()
    return await task_queue.enqueue_or_run(
        process_event_job,
        fallback=_fallback,
        queue_name="automations",
        timeout_seconds=120,
        description=f"automations:event:{event.id}",
        event=event.to_payload(),
    )
