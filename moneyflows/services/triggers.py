"""Trigger classification for event-driven and clock-driven rules.

Invariants:
- Inactive, paused and terminal rules never fire.
- Monthly and yearly frequencies are fixed 30/365 day spans, not calendar aware.
- Schedule days and times are evaluated in the schedule's timezone.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from moneyflows.core.config import Settings, settings as default_settings
from moneyflows.schema.automation import (
    ElapsedTimeTrigger,
    EventTrigger,
    FinancialEvent,
    Frequency,
    IncomeHeuristicTrigger,
    Rule,
    RuleStatus,
    Schedule,
    ScheduleTrigger,
    TERMINAL_STATUSES,
)
from moneyflows.services.conditions import evaluate_conditions
from moneyflows.services.errors import UnsupportedTriggerError

FREQUENCY_DURATIONS: dict[Frequency, timedelta] = {
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.MONTHLY: timedelta(days=30),
    Frequency.YEARLY: timedelta(days=365),
}

# Longest search for a day-of-week/day-of-month combination (e.g. Friday the 31st).
_MAX_SCHEDULE_LOOKAHEAD_DAYS = 366 * 7


def is_evaluable(rule: Rule) -> bool:
    """Return True if a rule may be considered by any cycle."""
    if not rule.is_active:
        return False
    status = rule.execution.status
    return status not in TERMINAL_STATUSES and status != RuleStatus.PAUSED


def _zone(schedule: Schedule, config: Settings) -> ZoneInfo:
    name = schedule.timezone or config.default_timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise UnsupportedTriggerError(f"unknown_timezone:{name}") from exc


def _parse_time(value: str) -> time:
    hours, minutes = (int(part) for part in value.split(":"))
    return time(hour=hours, minute=minutes)


def _day_matches(schedule: Schedule, local: datetime) -> bool:
    # Sunday is day 0, matching the stored day_of_week convention.
    if schedule.day_of_week is not None and (local.weekday() + 1) % 7 != schedule.day_of_week:
        return False
    if schedule.day_of_month is not None and local.day != schedule.day_of_month:
        return False
    return True


def _fires_by_elapsed_time(rule: Rule, trigger: ElapsedTimeTrigger, now: datetime) -> bool:
    if trigger.frequency == Frequency.ONCE:
        return rule.execution.execution_count == 0
    last = rule.execution.last_executed
    if last is None:
        return True
    return now - last >= FREQUENCY_DURATIONS[trigger.frequency]


def _window_on(schedule: Schedule, day: date, zone: ZoneInfo, config: Settings) -> tuple[datetime, datetime]:
    """Return the [start, end] occurrence window of a schedule on a local day."""
    if schedule.time:
        scheduled = datetime.combine(day, _parse_time(schedule.time), tzinfo=zone)
        window = timedelta(minutes=config.schedule_window_minutes)
        return scheduled - window, scheduled + window
    midnight = datetime.combine(day, time(0, 0), tzinfo=zone)
    return midnight, midnight + timedelta(days=1)


def _ran_within(rule: Rule, start: datetime, end: datetime) -> bool:
    last = rule.execution.last_executed
    return last is not None and start <= last <= end


def _fires_by_schedule(rule: Rule, trigger: ScheduleTrigger, now: datetime, config: Settings) -> bool:
    schedule = trigger.schedule
    zone = _zone(schedule, config)
    local = now.astimezone(zone)
    if not _day_matches(schedule, local):
        return False
    start, end = _window_on(schedule, local.date(), zone, config)
    if not start <= local <= end:
        return False
    # One run per occurrence, even if the rule was rescheduled inside the window.
    return not _ran_within(rule, start, end)


def is_income(event: FinancialEvent | None, config: Settings) -> bool:
    """Detect salary deposits or unusually large income on an event."""
    if event is None:
        return False
    description = (event.description or "").lower()
    is_salary = event.category == config.salary_category or any(
        keyword in description for keyword in config.income_keywords
    )
    return is_salary or Decimal(event.amount) > config.large_income_threshold


def should_fire(
    rule: Rule,
    event: FinancialEvent | None = None,
    *,
    now: datetime,
    config: Settings | None = None,
) -> bool:
    """Decide whether a rule's trigger fires for this event or moment."""
    config = config or default_settings
    if not is_evaluable(rule):
        return False
    trigger = rule.trigger
    if isinstance(trigger, EventTrigger):
        if event is None:
            return False
        return evaluate_conditions(trigger.conditions, event)
    if isinstance(trigger, ElapsedTimeTrigger):
        return _fires_by_elapsed_time(rule, trigger, now)
    if isinstance(trigger, ScheduleTrigger):
        return _fires_by_schedule(rule, trigger, now, config)
    if isinstance(trigger, IncomeHeuristicTrigger):
        return is_income(event, config)
    raise UnsupportedTriggerError(f"unsupported_trigger:{trigger.type}")


def _next_schedule_window(
    rule: Rule, trigger: ScheduleTrigger, now: datetime, config: Settings, *, include_current: bool
) -> datetime | None:
    schedule = trigger.schedule
    zone = _zone(schedule, config)
    local_now = now.astimezone(zone)
    for offset in range(_MAX_SCHEDULE_LOOKAHEAD_DAYS):
        day = local_now.date() + timedelta(days=offset)
        if not _day_matches(schedule, datetime.combine(day, time(0, 0), tzinfo=zone)):
            continue
        start, end = _window_on(schedule, day, zone, config)
        if _ran_within(rule, start, end):
            continue
        if include_current and end > local_now:
            return max(start, local_now).astimezone(now.tzinfo)
        if start > local_now:
            return start.astimezone(now.tzinfo)
    return None


def next_due(
    rule: Rule,
    *,
    now: datetime,
    config: Settings | None = None,
    include_current: bool = True,
) -> datetime | None:
    """Return when a clock tick should next consider the rule, if ever.

    ``include_current`` keeps a schedule window that is already open; pass
    False after a run so the same occurrence is not executed twice.
    """
    config = config or default_settings
    trigger = rule.trigger
    if isinstance(trigger, ElapsedTimeTrigger):
        if trigger.frequency == Frequency.ONCE:
            return now if rule.execution.execution_count == 0 else None
        last = rule.execution.last_executed
        if last is None:
            return now
        return last + FREQUENCY_DURATIONS[trigger.frequency]
    if isinstance(trigger, ScheduleTrigger):
        return _next_schedule_window(rule, trigger, now, config, include_current=include_current)
    if trigger.type == "balance-threshold":
        return now
    return None
