"""In-memory and SQL rule store tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from moneyflows.core.config import settings
from moneyflows.schema.automation import (
    ActionResult,
    Execution,
    ExecutionStatus,
    Rule,
    RuleStatus,
    ScheduleEntry,
)
from moneyflows.services.money_flow_service import MoneyFlowEngine
from moneyflows.services.rule_store import InMemoryRuleStore, compute_stats
from moneyflows.services.sql_rule_store import SqlRuleStore
from moneyflows.tests.utils import salary_event, salary_rule

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _rule(rule_id: str, *, priority: int = 1, category: str = "savings", is_active: bool = True) -> Rule:
    return Rule.model_validate(
        {
            "id": rule_id,
            "name": rule_id,
            "priority": priority,
            "category": category,
            "isActive": is_active,
            "trigger": {"type": "elapsed-time", "frequency": "weekly"},
            "action": {
                "type": "savings",
                "sourceAccountId": "acct-main",
                "amount": {"type": "fixed", "value": 1000},
            },
        }
    )


def _execution(
    execution_id: str,
    rule_id: str,
    *,
    at: datetime = NOW,
    status: ExecutionStatus = ExecutionStatus.COMPLETED,
    amount: str | None = "1000",
    action_type: str = "savings",
) -> Execution:
    result = None
    if status == ExecutionStatus.COMPLETED:
        result = ActionResult(type=action_type, amount=Decimal(amount) if amount else None, status="completed")
    return Execution(
        id=execution_id,
        rule_id=rule_id,
        rule_name=rule_id,
        status=status,
        action_result=result,
        execution_time=at,
    )


@pytest_asyncio.fixture(params=["memory", "sql"])
async def any_store(request, session_factory):
    if request.param == "memory":
        return InMemoryRuleStore()
    return SqlRuleStore(session_factory)


@pytest.mark.asyncio
async def test_rules_sort_by_priority_then_insertion(any_store):
    for rule in (_rule("late", priority=3), _rule("b", priority=1), _rule("c", priority=1), _rule("a", priority=2)):
        await any_store.upsert_rule(rule)

    rules = await any_store.list_rules()
    assert [rule.id for rule in rules] == ["b", "c", "a", "late"]

    # Updating a rule keeps its original insertion position.
    rule_b = await any_store.get_rule("b")
    rule_b.name = "renamed"
    await any_store.upsert_rule(rule_b)
    assert [rule.id for rule in await any_store.list_rules()] == ["b", "c", "a", "late"]


@pytest.mark.asyncio
async def test_list_filters(any_store):
    await any_store.upsert_rule(_rule("saver"))
    await any_store.upsert_rule(_rule("investor", category="investment"))
    await any_store.upsert_rule(_rule("idle", is_active=False))
    paused = _rule("paused")
    paused.execution.status = RuleStatus.PAUSED
    await any_store.upsert_rule(paused)

    assert {rule.id for rule in await any_store.list_rules(category="investment")} == {"investor"}
    assert {rule.id for rule in await any_store.list_rules(is_active=False)} == {"idle"}
    assert {rule.id for rule in await any_store.list_rules(status=RuleStatus.PAUSED)} == {"paused"}


@pytest.mark.asyncio
async def test_reads_return_copies(any_store):
    await any_store.upsert_rule(_rule("copy"))
    fetched = await any_store.get_rule("copy")
    fetched.execution.execution_count = 99
    assert (await any_store.get_rule("copy")).execution.execution_count == 0


@pytest.mark.asyncio
async def test_executions_newest_first_with_limit(any_store):
    await any_store.upsert_execution(_execution("e1", "r1", at=NOW - timedelta(hours=2)))
    await any_store.upsert_execution(_execution("e2", "r2", at=NOW))
    await any_store.upsert_execution(_execution("e3", "r1", at=NOW))
    await any_store.upsert_execution(_execution("e4", "r1", at=NOW - timedelta(hours=1)))

    assert [execution.id for execution in await any_store.list_executions()] == ["e3", "e2", "e4", "e1"]
    assert [execution.id for execution in await any_store.list_executions(rule_id="r1", limit=2)] == ["e3", "e4"]
    assert await any_store.get_execution("missing") is None


@pytest.mark.asyncio
async def test_execution_upsert_replaces_in_place(any_store):
    pending = _execution("e1", "r1", status=ExecutionStatus.EXECUTING)
    await any_store.upsert_execution(pending)
    await any_store.upsert_execution(_execution("e1", "r1"))

    stored = await any_store.get_execution("e1")
    assert stored.status == ExecutionStatus.COMPLETED
    assert stored.action_result.amount == Decimal("1000")
    assert len(await any_store.list_executions()) == 1


@pytest.mark.asyncio
async def test_schedule_queue(any_store):
    await any_store.upsert_rule(_rule("r1"))
    await any_store.set_schedule(ScheduleEntry(rule_id="r1", due_at=NOW))
    await any_store.set_schedule(ScheduleEntry(rule_id="r2", due_at=NOW + timedelta(minutes=5)))
    await any_store.set_schedule(
        ScheduleEntry(
            rule_id="r2",
            due_at=NOW - timedelta(minutes=1),
            kind="retry",
            trigger_data={"event": {"id": "txn_1"}},
        )
    )

    due = await any_store.due_schedules(NOW)
    assert {entry.rule_id for entry in due} == {"r1", "r2"}
    retry = await any_store.get_schedule("r2")
    assert retry.kind == "retry"
    assert retry.trigger_data == {"event": {"id": "txn_1"}}
    assert retry.due_at == NOW - timedelta(minutes=1)

    assert await any_store.remove_schedule("r2") is True
    assert await any_store.remove_schedule("r2") is False

    assert await any_store.delete_rule("r1") is True
    assert await any_store.get_schedule("r1") is None
    assert await any_store.due_schedules(NOW + timedelta(days=1)) == []


@pytest.mark.asyncio
async def test_executions_survive_rule_deletion(any_store):
    await any_store.upsert_rule(_rule("gone"))
    await any_store.upsert_execution(_execution("e1", "gone"))
    await any_store.delete_rule("gone")
    assert (await any_store.get_execution("e1")).rule_id == "gone"


def test_stats_on_empty_history():
    stats = compute_stats([], [], now=NOW)
    assert stats.total_executions == 0
    assert stats.efficiency == 0
    assert stats.total_amount_processed == Decimal("0")


def test_stats_aggregate_amounts_and_savings_window():
    rules = [_rule("r1"), _rule("r2", is_active=False)]
    executions = [
        _execution("e1", "r1", amount="1000"),
        _execution("e2", "r1", amount="500", at=NOW - timedelta(days=45)),
        _execution("e3", "r2", amount="2000", action_type="transfer"),
        _execution("e4", "r2", status=ExecutionStatus.FAILED),
        _execution("e5", "r1", amount=None, action_type="notification"),
    ]

    stats = compute_stats(rules, executions, now=NOW)

    assert stats.total_rules == 2
    assert stats.active_rules == 1
    assert stats.total_executions == 5
    assert stats.successful_executions == 4
    assert stats.failed_executions == 1
    assert stats.total_amount_processed == Decimal("3500")
    assert stats.monthly_savings == Decimal("1000")
    assert stats.efficiency == 80.0


@pytest.mark.asyncio
async def test_engine_runs_against_sql_store(sql_store, bank, clock):
    engine = MoneyFlowEngine(sql_store, bank, bank, clock=clock, config=settings)
    rule = await engine.create_rule(salary_rule())

    report = await engine.process_event(salary_event())

    execution = await engine.get_execution(report.execution_ids[0])
    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.action_result.amount == Decimal("200000")
    stored = await engine.get_rule(rule.id)
    assert stored.execution.execution_count == 1
    assert stored.execution.status == RuleStatus.ACTIVE
