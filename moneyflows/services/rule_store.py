"""Rule and execution storage plus fleet statistics.

Invariants:
- Reads return copies; callers never alias stored records.
- Rules list by ascending priority, ties in insertion order.
- Executions list newest first.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Protocol

from moneyflows.schema.automation import (
    ActionType,
    AutomationStats,
    Execution,
    ExecutionStatus,
    Rule,
    RuleCategory,
    RuleStatus,
    ScheduleEntry,
)


class RuleStore(Protocol):
    """Storage contract the engine depends on."""

    async def get_rule(self, rule_id: str) -> Rule | None: ...

    async def list_rules(
        self,
        *,
        category: RuleCategory | str | None = None,
        is_active: bool | None = None,
        status: RuleStatus | str | None = None,
    ) -> list[Rule]: ...

    async def upsert_rule(self, rule: Rule) -> Rule: ...

    async def delete_rule(self, rule_id: str) -> bool: ...

    async def upsert_execution(self, execution: Execution) -> Execution: ...

    async def get_execution(self, execution_id: str) -> Execution | None: ...

    async def list_executions(self, *, rule_id: str | None = None, limit: int | None = None) -> list[Execution]: ...

    async def set_schedule(self, entry: ScheduleEntry) -> None: ...

    async def get_schedule(self, rule_id: str) -> ScheduleEntry | None: ...

    async def remove_schedule(self, rule_id: str) -> bool: ...

    async def due_schedules(self, now: datetime) -> list[ScheduleEntry]: ...


def matches_filters(
    rule: Rule,
    *,
    category: RuleCategory | str | None = None,
    is_active: bool | None = None,
    status: RuleStatus | str | None = None,
) -> bool:
    """Apply the optional category/activation/status filters to a rule."""
    if category is not None and rule.category != RuleCategory(category):
        return False
    if is_active is not None and rule.is_active != is_active:
        return False
    if status is not None and rule.execution.status != RuleStatus(status):
        return False
    return True


class InMemoryRuleStore:
    """Dict-backed store; insertion order doubles as the priority tie-breaker."""

    def __init__(self) -> None:
        self._rules: dict[str, Rule] = {}
        self._executions: dict[str, Execution] = {}
        self._schedule: dict[str, ScheduleEntry] = {}

    async def get_rule(self, rule_id: str) -> Rule | None:
        rule = self._rules.get(rule_id)
        return rule.model_copy(deep=True) if rule else None

    async def list_rules(
        self,
        *,
        category: RuleCategory | str | None = None,
        is_active: bool | None = None,
        status: RuleStatus | str | None = None,
    ) -> list[Rule]:
        rules = [
            rule
            for rule in self._rules.values()
            if matches_filters(rule, category=category, is_active=is_active, status=status)
        ]
        return [rule.model_copy(deep=True) for rule in sorted(rules, key=lambda item: item.priority)]

    async def upsert_rule(self, rule: Rule) -> Rule:
        self._rules[rule.id] = rule.model_copy(deep=True)
        return rule

    async def delete_rule(self, rule_id: str) -> bool:
        self._schedule.pop(rule_id, None)
        return self._rules.pop(rule_id, None) is not None

    async def upsert_execution(self, execution: Execution) -> Execution:
        self._executions[execution.id] = execution.model_copy(deep=True)
        return execution

    async def get_execution(self, execution_id: str) -> Execution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def list_executions(self, *, rule_id: str | None = None, limit: int | None = None) -> list[Execution]:
        indexed = [
            (position, execution)
            for position, execution in enumerate(self._executions.values())
            if rule_id is None or execution.rule_id == rule_id
        ]
        indexed.sort(key=lambda pair: (pair[1].execution_time, pair[0]), reverse=True)
        selected = [execution for _, execution in indexed]
        if limit is not None:
            selected = selected[: max(limit, 0)]
        return [execution.model_copy(deep=True) for execution in selected]

    async def set_schedule(self, entry: ScheduleEntry) -> None:
        self._schedule[entry.rule_id] = entry.model_copy(deep=True)

    async def get_schedule(self, rule_id: str) -> ScheduleEntry | None:
        entry = self._schedule.get(rule_id)
        return entry.model_copy(deep=True) if entry else None

    async def remove_schedule(self, rule_id: str) -> bool:
        return self._schedule.pop(rule_id, None) is not None

    async def due_schedules(self, now: datetime) -> list[ScheduleEntry]:
        return [entry.model_copy(deep=True) for entry in self._schedule.values() if entry.due_at <= now]


def compute_stats(
    rules: Iterable[Rule],
    executions: Iterable[Execution],
    *,
    now: datetime,
    savings_window_days: int = 30,
) -> AutomationStats:
    """Aggregate fleet-wide totals; efficiency is 0 when nothing has run."""
    rules = list(rules)
    executions = list(executions)
    completed = [execution for execution in executions if execution.status == ExecutionStatus.COMPLETED]
    failed = [execution for execution in executions if execution.status == ExecutionStatus.FAILED]

    total_amount = Decimal("0")
    monthly_savings = Decimal("0")
    window_start = now - timedelta(days=savings_window_days)
    for execution in completed:
        result = execution.action_result
        if result is None or result.amount is None:
            continue
        total_amount += result.amount
        if result.type == ActionType.SAVINGS.value and execution.execution_time >= window_start:
            monthly_savings += result.amount

    total = len(executions)
    efficiency = (len(completed) / total) * 100 if total > 0 else 0.0
    return AutomationStats(
        total_rules=len(rules),
        active_rules=sum(1 for rule in rules if rule.is_active),
        total_executions=total,
        successful_executions=len(completed),
        failed_executions=len(failed),
        total_amount_processed=total_amount,
        monthly_savings=monthly_savings,
        efficiency=efficiency,
    )
