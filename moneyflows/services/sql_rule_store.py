"""SQLAlchemy-backed rule store.

Drop-in replacement for InMemoryRuleStore; each call runs in its own session
so the engine never holds a transaction open across an action call.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from moneyflows.models.automation import AutomationExecutionRecord, AutomationRuleRecord, AutomationScheduleRecord
from moneyflows.schema.automation import Execution, Rule, RuleCategory, RuleStatus, ScheduleEntry


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def _next_position(session: AsyncSession, column) -> int:
    current = await session.scalar(select(func.max(column)))
    return (current or 0) + 1


class SqlRuleStore:
    """Persist rules, executions and schedule entries as JSON rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_rule(self, rule_id: str) -> Rule | None:
        async with self._session_factory() as session:
            record = await session.get(AutomationRuleRecord, rule_id)
            return Rule.model_validate(record.payload) if record else None

    async def list_rules(
        self,
        *,
        category: RuleCategory | str | None = None,
        is_active: bool | None = None,
        status: RuleStatus | str | None = None,
    ) -> list[Rule]:
        query = select(AutomationRuleRecord)
        if category is not None:
            query = query.where(AutomationRuleRecord.category == RuleCategory(category).value)
        if is_active is not None:
            query = query.where(AutomationRuleRecord.is_active.is_(is_active))
        if status is not None:
            query = query.where(AutomationRuleRecord.status == RuleStatus(status).value)
        query = query.order_by(AutomationRuleRecord.priority.asc(), AutomationRuleRecord.position.asc())
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [Rule.model_validate(record.payload) for record in result.scalars().all()]

    async def upsert_rule(self, rule: Rule) -> Rule:
        payload = rule.model_dump(mode="json", by_alias=True)
        async with self._session_factory() as session:
            record = await session.get(AutomationRuleRecord, rule.id)
            if record is None:
                record = AutomationRuleRecord(
                    id=rule.id,
                    position=await _next_position(session, AutomationRuleRecord.position),
                )
                session.add(record)
            record.name = rule.name
            record.created_by = rule.created_by
            record.category = rule.category.value
            record.is_active = rule.is_active
            record.priority = rule.priority
            record.status = rule.execution.status.value
            record.trigger_type = rule.trigger.type
            record.action_type = rule.action.type
            record.payload = payload
            await session.commit()
        return rule

    async def delete_rule(self, rule_id: str) -> bool:
        async with self._session_factory() as session:
            await session.execute(delete(AutomationScheduleRecord).where(AutomationScheduleRecord.rule_id == rule_id))
            result = await session.execute(delete(AutomationRuleRecord).where(AutomationRuleRecord.id == rule_id))
            await session.commit()
            return bool(result.rowcount)

    async def upsert_execution(self, execution: Execution) -> Execution:
        payload = execution.model_dump(mode="json", by_alias=True)
        async with self._session_factory() as session:
            record = await session.get(AutomationExecutionRecord, execution.id)
            if record is None:
                record = AutomationExecutionRecord(
                    id=execution.id,
                    position=await _next_position(session, AutomationExecutionRecord.position),
                )
                session.add(record)
            record.rule_id = execution.rule_id
            record.status = execution.status.value
            record.execution_time = _as_utc(execution.execution_time)
            record.payload = payload
            await session.commit()
        return execution

    async def get_execution(self, execution_id: str) -> Execution | None:
        async with self._session_factory() as session:
            record = await session.get(AutomationExecutionRecord, execution_id)
            return Execution.model_validate(record.payload) if record else None

    async def list_executions(self, *, rule_id: str | None = None, limit: int | None = None) -> list[Execution]:
        query = select(AutomationExecutionRecord)
        if rule_id is not None:
            query = query.where(AutomationExecutionRecord.rule_id == rule_id)
        query = query.order_by(
            AutomationExecutionRecord.execution_time.desc(), AutomationExecutionRecord.position.desc()
        )
        if limit is not None:
            query = query.limit(max(limit, 0))
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [Execution.model_validate(record.payload) for record in result.scalars().all()]

    async def set_schedule(self, entry: ScheduleEntry) -> None:
        async with self._session_factory() as session:
            record = await session.get(AutomationScheduleRecord, entry.rule_id)
            if record is None:
                record = AutomationScheduleRecord(rule_id=entry.rule_id)
                session.add(record)
            record.due_at = _as_utc(entry.due_at)
            record.kind = entry.kind
            record.payload = entry.model_dump(mode="json", by_alias=True)
            await session.commit()

    async def get_schedule(self, rule_id: str) -> ScheduleEntry | None:
        async with self._session_factory() as session:
            record = await session.get(AutomationScheduleRecord, rule_id)
            return ScheduleEntry.model_validate(record.payload) if record else None

    async def remove_schedule(self, rule_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(AutomationScheduleRecord).where(AutomationScheduleRecord.rule_id == rule_id)
            )
            await session.commit()
            return bool(result.rowcount)

    async def due_schedules(self, now: datetime) -> list[ScheduleEntry]:
        query = select(AutomationScheduleRecord).where(AutomationScheduleRecord.due_at <= _as_utc(now))
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [ScheduleEntry.model_validate(record.payload) for record in result.scalars().all()]
