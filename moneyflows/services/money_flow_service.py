"""Money flow engine: rule CRUD plus event and clock-tick execution cycles.

Invariants:
- At most one cycle runs at a time; events arriving mid-cycle are dropped
  (or queued when ``queue_events_while_busy`` is set), ticks are skipped.
- Candidates run sequentially in ascending priority, so a rule never runs
  concurrently with itself.
- Each fire produces exactly one Execution record, written even if the rule is
  deleted while its action is in flight.
- retry_count never exceeds max_retries; exhausting retries marks the rule
  failed and removes its schedule entry.
- A single rule's failure never propagates out of a cycle.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from moneyflows.core.config import Settings, settings as default_settings
from moneyflows.schema.automation import (
    CLOCK_TRIGGER_TYPES,
    EVENT_TRIGGER_TYPES,
    ActionResult,
    AutomationStats,
    CycleReport,
    ElapsedTimeTrigger,
    Execution,
    ExecutionState,
    ExecutionStatus,
    FinancialEvent,
    Frequency,
    Rule,
    RuleCategory,
    RuleCreate,
    RuleStatus,
    RuleUpdate,
    ScheduleEntry,
)
from moneyflows.services.amounts import AmountContext, AmountResolver, AmountStrategy, CycleLedger
from moneyflows.services.automation_engine import MONEY_MOVING_ACTIONS, ActionExecutor
from moneyflows.services.banking import BalanceProvider, MoneyMovementGateway
from moneyflows.services.errors import (
    ActionExecutionError,
    RuleNotFoundError,
    UnsupportedActionError,
    UnsupportedTriggerError,
    ValidationError,
)
from moneyflows.services.rule_store import RuleStore, compute_stats
from moneyflows.services.templates import AUTOMATION_TEMPLATES, seed_default_rules
from moneyflows.services.triggers import is_evaluable, next_due, should_fire
from moneyflows.utils.redaction import truncate_error

logger = logging.getLogger("moneyflows.services.money_flow_service")

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def retry_delay(attempt: int) -> timedelta:
    """Exponential backoff: attempt n waits 2**n minutes."""
    return timedelta(minutes=2**attempt)


def _error_message(exc: BaseException) -> str:
    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    return truncate_error(message) or "Unknown error"


def _parse(model: type, payload: Any) -> Any:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(f"invalid_{model.__name__.lower()}: {exc.errors()[0]['msg']}") from exc


class MoneyFlowEngine:
    """Evaluates rules against events and clock ticks and runs their actions."""

    def __init__(
        self,
        store: RuleStore,
        balances: BalanceProvider,
        gateway: MoneyMovementGateway,
        *,
        clock: Clock | None = None,
        config: Settings | None = None,
        strategies: dict[str, AmountStrategy] | None = None,
    ) -> None:
        self.store = store
        self.balances = balances
        self.config = config or default_settings
        self.executor = ActionExecutor(gateway, resolver=AmountResolver(strategies), config=self.config)
        self._clock = clock or _utcnow
        self._cycle_lock = asyncio.Lock()
        self._pending_events: deque[FinancialEvent] = deque()

    @property
    def busy(self) -> bool:
        return self._cycle_lock.locked()

    def now(self) -> datetime:
        return self._clock()

    # Rule CRUD ---------------------------------------------------------------

    def _validate_definition(self, rule: Rule) -> None:
        action = rule.action
        if action.type in MONEY_MOVING_ACTIONS and not action.source_account_id:
            raise ValidationError(f"{action.type} actions require sourceAccountId")

    async def create_rule(self, payload: RuleCreate | dict[str, Any]) -> Rule:
        """Create a rule in ``pending`` state and schedule it when active."""
        data = _parse(RuleCreate, payload)
        now = self.now()
        action = data.action.model_copy(deep=True)
        action.amount.currency = action.amount.currency or self.config.default_currency
        rule = Rule(
            id=_new_id("rule"),
            name=data.name,
            description=data.description,
            is_active=data.is_active,
            priority=data.priority,
            category=data.category,
            trigger=data.trigger,
            action=action,
            execution=ExecutionState(
                max_executions=data.max_executions,
                max_retries=(
                    data.max_retries if data.max_retries is not None else self.config.default_max_retries
                ),
            ),
            created_at=now,
            updated_at=now,
            created_by=data.created_by,
            tags=data.tags,
        )
        self._validate_definition(rule)
        await self._reschedule(rule, now=now)
        await self.store.upsert_rule(rule)
        logger.info("Created automation rule %s (%s, trigger=%s)", rule.id, rule.name, rule.trigger.type)
        return rule

    async def update_rule(self, rule_id: str, payload: RuleUpdate | dict[str, Any]) -> Rule:
        """Apply a partial update; trigger, action or activation changes reschedule."""
        updates = _parse(RuleUpdate, payload)
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        fields = updates.model_fields_set
        for name in ("name", "description", "priority", "category", "tags"):
            if name in fields and getattr(updates, name) is not None:
                setattr(rule, name, getattr(updates, name))
        if "is_active" in fields and updates.is_active is not None:
            rule.is_active = updates.is_active
        if "trigger" in fields and updates.trigger is not None:
            rule.trigger = updates.trigger
        if "action" in fields and updates.action is not None:
            action = updates.action.model_copy(deep=True)
            action.amount.currency = action.amount.currency or self.config.default_currency
            rule.action = action
        if "max_executions" in fields:
            rule.execution.max_executions = updates.max_executions
        if "max_retries" in fields and updates.max_retries is not None:
            rule.execution.max_retries = updates.max_retries
            rule.execution.retry_count = min(rule.execution.retry_count, updates.max_retries)
        if rule.is_active:
            self._validate_definition(rule)

        now = self.now()
        rule.updated_at = now
        if fields & {"trigger", "action", "is_active"}:
            await self._reschedule(rule, now=now)
        await self.store.upsert_rule(rule)
        logger.info("Updated automation rule %s (fields=%s)", rule.id, ",".join(sorted(fields)))
        return rule

    async def delete_rule(self, rule_id: str) -> bool:
        """Remove a rule and purge its schedule entry; in-flight runs still record."""
        deleted = await self.store.delete_rule(rule_id)
        if deleted:
            logger.info("Deleted automation rule %s", rule_id)
        return deleted

    async def _set_status(self, rule_id: str, status: RuleStatus) -> Rule:
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        if rule.is_terminal:
            raise ValidationError(f"rule {rule_id} is {rule.execution.status.value}")
        now = self.now()
        rule.execution.status = status
        rule.updated_at = now
        await self._reschedule(rule, now=now)
        await self.store.upsert_rule(rule)
        logger.info("Automation rule %s moved to %s", rule_id, status.value)
        return rule

    async def pause_rule(self, rule_id: str) -> Rule:
        return await self._set_status(rule_id, RuleStatus.PAUSED)

    async def resume_rule(self, rule_id: str) -> Rule:
        rule = await self.store.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        target = RuleStatus.ACTIVE if rule.execution.execution_count else RuleStatus.PENDING
        return await self._set_status(rule_id, target)

    async def cancel_rule(self, rule_id: str) -> Rule:
        return await self._set_status(rule_id, RuleStatus.CANCELLED)

    # Queries -----------------------------------------------------------------

    async def get_rules(
        self,
        *,
        category: RuleCategory | str | None = None,
        is_active: bool | None = None,
        status: RuleStatus | str | None = None,
    ) -> list[Rule]:
        return await self.store.list_rules(category=category, is_active=is_active, status=status)

    async def get_rule(self, rule_id: str) -> Rule | None:
        return await self.store.get_rule(rule_id)

    async def get_execution(self, execution_id: str) -> Execution | None:
        return await self.store.get_execution(execution_id)

    async def get_execution_history(self, rule_id: str | None = None, limit: int | None = None) -> list[Execution]:
        if limit is None:
            limit = self.config.history_default_limit
        return await self.store.list_executions(rule_id=rule_id, limit=limit)

    async def get_stats(self) -> AutomationStats:
        rules = await self.store.list_rules()
        executions = await self.store.list_executions()
        return compute_stats(
            rules,
            executions,
            now=self.now(),
            savings_window_days=self.config.monthly_savings_window_days,
        )

    def get_templates(self) -> list[dict[str, Any]]:
        return [dict(template) for template in AUTOMATION_TEMPLATES]

    async def seed_templates(self) -> int:
        added = await seed_default_rules(self.store, self.config)
        if added:
            logger.info("Seeded %s default automation rules", added)
        return added

    # Scheduling --------------------------------------------------------------

    async def _reschedule(self, rule: Rule, *, now: datetime, include_current: bool = True) -> None:
        """Place a clock-driven rule on the schedule queue, or take it off."""
        due = None
        if is_evaluable(rule) and rule.trigger.type in CLOCK_TRIGGER_TYPES:
            due = next_due(rule, now=now, config=self.config, include_current=include_current)
        rule.execution.next_execution = due
        if due is None:
            await self.store.remove_schedule(rule.id)
            return
        await self.store.set_schedule(ScheduleEntry(rule_id=rule.id, due_at=due, kind="run"))

    # Cycles ------------------------------------------------------------------

    async def process_event(self, event: FinancialEvent | dict[str, Any]) -> CycleReport:
        """Evaluate event-driven rules against an inbound transaction."""
        event = _parse(FinancialEvent, event)
        if self._cycle_lock.locked():
            if self.config.queue_events_while_busy:
                self._pending_events.append(event)
                logger.info("Cycle in progress; queued event %s", event.id)
                return CycleReport(trigger="event", status="queued")
            logger.warning("Cycle in progress; dropped event %s", event.id)
            return CycleReport(trigger="event", status="dropped")

        async with self._cycle_lock:
            report = await self._run_event_cycle(event)
            await self._drain_pending_events()
        return report

    async def process_scheduled_rules(self) -> CycleReport:
        """Run due schedule entries; called by the clock tick."""
        if self._cycle_lock.locked():
            logger.info("Cycle in progress; skipping clock tick")
            return CycleReport(trigger="tick", status="skipped")
        async with self._cycle_lock:
            report = await self._run_tick_cycle()
            await self._drain_pending_events()
        return report

    async def _drain_pending_events(self) -> None:
        # Must run while the cycle lock is still held.
        while self._pending_events:
            queued = self._pending_events.popleft()
            logger.info("Processing queued event %s", queued.id)
            await self._run_event_cycle(queued)

    async def _run_event_cycle(self, event: FinancialEvent) -> CycleReport:
        now = self.now()
        ledger = CycleLedger()
        trigger_data = {"event": event.to_payload()}
        candidates = [
            rule
            for rule in await self.store.list_rules(is_active=True)
            if rule.trigger.type in EVENT_TRIGGER_TYPES and is_evaluable(rule)
        ]
        report = CycleReport(trigger="event", evaluated=len(candidates))
        for candidate in candidates:
            rule = await self.store.get_rule(candidate.id)
            if rule is None or not is_evaluable(rule):
                continue
            try:
                fires = should_fire(rule, event, now=now, config=self.config)
            except UnsupportedTriggerError as exc:
                execution = await self._record_unsupported(rule, trigger_data, exc, now=now)
                report.execution_ids.append(execution.id)
                continue
            except Exception:  # noqa: BLE001
                logger.exception("Trigger evaluation failed for rule %s", rule.id)
                continue
            if not fires:
                continue
            execution = await self._execute_rule(rule, trigger_data, ledger, event=event)
            report.execution_ids.append(execution.id)
        self._log_cycle(report, ledger, subject=event.id)
        return report

    async def _run_tick_cycle(self) -> CycleReport:
        now = self.now()
        ledger = CycleLedger()
        due = {entry.rule_id: entry for entry in await self.store.due_schedules(now)}
        candidates: list[tuple[Rule, ScheduleEntry]] = []
        for rule in await self.store.list_rules(is_active=True):
            entry = due.pop(rule.id, None)
            if entry is not None:
                candidates.append((rule, entry))
        for orphan in due:
            await self.store.remove_schedule(orphan)

        report = CycleReport(trigger="tick", evaluated=len(candidates))
        for candidate, entry in candidates:
            rule = await self.store.get_rule(candidate.id)
            current_entry = await self.store.get_schedule(candidate.id)
            if rule is None or current_entry is None or current_entry.due_at > now:
                continue
            if not is_evaluable(rule):
                await self.store.remove_schedule(rule.id)
                continue
            if current_entry.kind == "retry":
                event = self._event_from(current_entry.trigger_data)
                execution = await self._execute_rule(rule, current_entry.trigger_data or {}, ledger, event=event)
                report.execution_ids.append(execution.id)
                continue
            trigger_data = {"tick": now.isoformat(), "dueAt": current_entry.due_at.isoformat()}
            try:
                fires = should_fire(rule, None, now=now, config=self.config)
            except UnsupportedTriggerError as exc:
                execution = await self._record_unsupported(rule, trigger_data, exc, now=now)
                report.execution_ids.append(execution.id)
                continue
            except Exception:  # noqa: BLE001
                logger.exception("Trigger evaluation failed for rule %s", rule.id)
                continue
            if fires:
                execution = await self._execute_rule(rule, trigger_data, ledger)
                report.execution_ids.append(execution.id)
            else:
                await self._reschedule(rule, now=now, include_current=False)
                await self.store.upsert_rule(rule)
        self._log_cycle(report, ledger, subject="tick")
        return report

    @staticmethod
    def _event_from(trigger_data: dict[str, Any] | None) -> FinancialEvent | None:
        payload = (trigger_data or {}).get("event")
        if not payload:
            return None
        return FinancialEvent.model_validate(payload)

    # Execution ---------------------------------------------------------------

    async def _execute_rule(
        self,
        rule: Rule,
        trigger_data: dict[str, Any],
        ledger: CycleLedger,
        *,
        event: FinancialEvent | None = None,
    ) -> Execution:
        started_at = self.now()
        execution = Execution(
            id=_new_id("exec"),
            rule_id=rule.id,
            rule_name=rule.name,
            status=ExecutionStatus.EXECUTING,
            trigger_data=trigger_data,
            execution_time=started_at,
            attempt=rule.execution.retry_count,
        )
        await self.store.upsert_execution(execution)

        context = AmountContext(balances=self.balances, ledger=ledger, event=event, trigger_data=trigger_data)
        start = time.monotonic()
        result: ActionResult | None = None
        failure: BaseException | None = None
        try:
            result = await self.executor.execute(rule.action, context, rule_id=rule.id)
        except (UnsupportedActionError, ActionExecutionError) as exc:
            failure = exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Automation execution failed for %s", rule.id)
            failure = exc
        execution.processing_time = round((time.monotonic() - start) * 1000, 3)

        if failure is None:
            execution.status = ExecutionStatus.COMPLETED
            execution.action_result = result
        else:
            execution.status = ExecutionStatus.FAILED
            execution.error_message = _error_message(failure)
        await self.store.upsert_execution(execution)

        current = await self.store.get_rule(rule.id)
        if current is None:
            logger.info("Rule %s was deleted mid-execution; recorded %s only", rule.id, execution.id)
            return execution

        finished_at = self.now()
        if failure is None:
            await self._apply_success(current, now=finished_at)
        elif isinstance(failure, UnsupportedActionError):
            await self._apply_unsupported(current, execution.error_message)
        else:
            await self._apply_failure(current, execution.error_message, trigger_data, now=finished_at)
        current.updated_at = finished_at
        await self.store.upsert_rule(current)
        return execution

    def _reached_limit(self, rule: Rule) -> bool:
        state = rule.execution
        if state.max_executions is not None and state.execution_count >= state.max_executions:
            return True
        trigger = rule.trigger
        return isinstance(trigger, ElapsedTimeTrigger) and trigger.frequency == Frequency.ONCE

    async def _apply_success(self, rule: Rule, *, now: datetime) -> None:
        state = rule.execution
        state.execution_count += 1
        state.last_executed = now
        state.retry_count = 0
        state.last_error = None
        if state.status in {RuleStatus.PAUSED, RuleStatus.CANCELLED}:
            return
        if self._reached_limit(rule):
            state.status = RuleStatus.COMPLETED
            state.next_execution = None
            await self.store.remove_schedule(rule.id)
            return
        state.status = RuleStatus.ACTIVE
        await self._reschedule(rule, now=now, include_current=False)

    async def _apply_failure(
        self,
        rule: Rule,
        message: str | None,
        trigger_data: dict[str, Any],
        *,
        now: datetime,
    ) -> None:
        state = rule.execution
        state.last_error = message
        if state.retry_count < state.max_retries:
            state.retry_count += 1
            due = now + retry_delay(state.retry_count)
            state.next_execution = due
            if is_evaluable(rule):
                await self.store.set_schedule(
                    ScheduleEntry(rule_id=rule.id, due_at=due, kind="retry", trigger_data=trigger_data)
                )
            logger.warning(
                "Rule %s failed (%s); retry %s/%s at %s",
                rule.id,
                message,
                state.retry_count,
                state.max_retries,
                due.isoformat(),
            )
            return
        state.status = RuleStatus.FAILED
        state.next_execution = None
        await self.store.remove_schedule(rule.id)
        logger.error("Rule %s failed after %s retries: %s", rule.id, state.max_retries, message)

    async def _apply_unsupported(self, rule: Rule, message: str | None) -> None:
        rule.execution.last_error = message
        rule.execution.next_execution = None
        await self.store.remove_schedule(rule.id)
        logger.error("Rule %s is misconfigured and was unscheduled: %s", rule.id, message)

    async def _record_unsupported(
        self,
        rule: Rule,
        trigger_data: dict[str, Any],
        exc: UnsupportedTriggerError,
        *,
        now: datetime,
    ) -> Execution:
        execution = Execution(
            id=_new_id("exec"),
            rule_id=rule.id,
            rule_name=rule.name,
            status=ExecutionStatus.FAILED,
            trigger_data=trigger_data,
            error_message=_error_message(exc),
            execution_time=now,
            attempt=rule.execution.retry_count,
        )
        await self.store.upsert_execution(execution)
        await self._apply_unsupported(rule, execution.error_message)
        rule.updated_at = now
        await self.store.upsert_rule(rule)
        return execution

    def _log_cycle(self, report: CycleReport, ledger: CycleLedger, *, subject: str) -> None:
        payload = {
            "event": "money_flow_cycle",
            "trigger": report.trigger,
            "subject": subject,
            "evaluated": report.evaluated,
            "executions": len(report.execution_ids),
            "committed": ledger.snapshot(),
        }
        logger.info(json.dumps(payload))


def build_engine(config: Settings | None = None, *, clock: Clock | None = None) -> MoneyFlowEngine:
    """Wire an engine from settings: store backend and banking gateway."""
    config = config or default_settings
    if config.rule_store_backend == "sql":
        from moneyflows.db.session import async_session
        from moneyflows.services.sql_rule_store import SqlRuleStore

        store: RuleStore = SqlRuleStore(async_session)
    else:
        from moneyflows.services.rule_store import InMemoryRuleStore

        store = InMemoryRuleStore()

    if config.banking_api_url:
        from moneyflows.services.banking import HttpBankingGateway

        gateway = HttpBankingGateway.from_settings(config)
    else:
        from moneyflows.services.banking import StaticBankingGateway

        logger.warning("MONEYFLOWS_BANKING_API_URL is unset; using in-memory balances")
        gateway = StaticBankingGateway()
    return MoneyFlowEngine(store, gateway, gateway, clock=clock, config=config)
