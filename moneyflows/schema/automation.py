"""Automation rule, trigger, action and execution schemas.

Triggers and amounts are discriminated unions keyed on ``type`` so every kind
carries only its own payload.
"""

from __future__ import annotations

import enum
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import Field, field_validator, model_validator

from moneyflows.schema.base import CamelModel

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RuleCategory(str, enum.Enum):
    """User-facing grouping for automation rules."""
    SAVINGS = "savings"
    INVESTMENT = "investment"
    BILL_PAYMENT = "bill-payment"
    DEBT_REPAYMENT = "debt-repayment"
    EMERGENCY_FUND = "emergency-fund"
    CUSTOM = "custom"


class RuleStatus(str, enum.Enum):
    """Lifecycle states of a rule's execution state machine."""
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({RuleStatus.COMPLETED, RuleStatus.CANCELLED})


class ExecutionStatus(str, enum.Enum):
    """Statuses of a single audited execution attempt."""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ConditionField(str, enum.Enum):
    AMOUNT = "amount"
    CATEGORY = "category"
    VENDOR = "vendor"
    DESCRIPTION = "description"
    BALANCE = "balance"
    DATE = "date"
    TYPE = "type"


class ConditionOperator(str, enum.Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not-equals"
    GREATER_THAN = "greater-than"
    LESS_THAN = "less-than"
    CONTAINS = "contains"
    STARTS_WITH = "starts-with"
    ENDS_WITH = "ends-with"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "not-in"


class Frequency(str, enum.Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ActionType(str, enum.Enum):
    TRANSFER = "transfer"
    SAVINGS = "savings"
    INVESTMENT = "investment"
    BILL_PAYMENT = "bill-payment"
    NOTIFICATION = "notification"


class AmountType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    REMAINING = "remaining"
    CALCULATED = "calculated"


class Condition(CamelModel):
    """A single field/operator/value predicate over a financial event."""
    field: ConditionField
    operator: str
    value: Any = None
    secondary_value: Any = None

    @model_validator(mode="after")
    def _require_secondary_for_between(self) -> "Condition":
        if self.operator == ConditionOperator.BETWEEN.value and self.secondary_value is None:
            raise ValueError("between conditions require secondaryValue")
        return self


class Schedule(CamelModel):
    """Wall-clock constraints; absent fields always match."""
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    time: str | None = None
    timezone: str | None = None

    @field_validator("time")
    @classmethod
    def _validate_time(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if not _TIME_RE.match(value.strip()):
            raise ValueError("schedule time must be HH:MM")
        return value.strip()


class EventTrigger(CamelModel):
    type: Literal["event"] = "event"
    conditions: list[Condition] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class ElapsedTimeTrigger(CamelModel):
    type: Literal["elapsed-time"] = "elapsed-time"
    frequency: Frequency

    model_config = {"extra": "forbid"}


class ScheduleTrigger(CamelModel):
    type: Literal["wall-clock-schedule"] = "wall-clock-schedule"
    schedule: Schedule

    model_config = {"extra": "forbid"}


class BalanceThresholdTrigger(CamelModel):
    type: Literal["balance-threshold"] = "balance-threshold"
    account_id: str | None = None
    threshold: Decimal | None = None

    model_config = {"extra": "forbid"}


class IncomeHeuristicTrigger(CamelModel):
    type: Literal["income-heuristic"] = "income-heuristic"

    model_config = {"extra": "forbid"}


Trigger = Annotated[
    Union[
        EventTrigger,
        ElapsedTimeTrigger,
        ScheduleTrigger,
        BalanceThresholdTrigger,
        IncomeHeuristicTrigger,
    ],
    Field(discriminator="type"),
]

EVENT_TRIGGER_TYPES = frozenset({"event", "income-heuristic"})
CLOCK_TRIGGER_TYPES = frozenset({"elapsed-time", "wall-clock-schedule", "balance-threshold"})


class AmountSpec(CamelModel):
    """How much money an action moves."""
    type: AmountType
    value: Decimal = Decimal("0")
    currency: str | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "AmountSpec":
        if self.type == AmountType.PERCENTAGE and not (Decimal("0") <= self.value <= Decimal("100")):
            raise ValueError("percentage amounts must be between 0 and 100")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            raise ValueError("minAmount cannot exceed maxAmount")
        return self


class Action(CamelModel):
    """Effect performed when a rule fires."""
    type: str
    source_account_id: str = ""
    destination_account_id: str | None = None
    amount: AmountSpec = Field(default_factory=lambda: AmountSpec(type=AmountType.FIXED))
    description: str = ""
    metadata: dict[str, Any] | None = None


class ExecutionState(CamelModel):
    """Scheduling, retry and lifecycle state embedded in a rule."""
    last_executed: datetime | None = None
    next_execution: datetime | None = None
    execution_count: int = 0
    max_executions: int | None = Field(default=None, ge=1)
    retry_count: int = 0
    max_retries: int = Field(default=3, ge=0)
    status: RuleStatus = RuleStatus.PENDING
    last_error: str | None = None


class Rule(CamelModel):
    """A user-owned trigger/action automation definition."""
    id: str
    name: str
    description: str = ""
    is_active: bool = True
    priority: int = 1
    category: RuleCategory = RuleCategory.CUSTOM
    trigger: Trigger
    action: Action
    execution: ExecutionState = Field(default_factory=ExecutionState)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    created_by: str = "system"
    tags: list[str] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.execution.status in TERMINAL_STATUSES


class RuleCreate(CamelModel):
    """Payload for creating an automation rule."""
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    is_active: bool = True
    priority: int = 1
    category: RuleCategory = RuleCategory.CUSTOM
    trigger: Trigger
    action: Action
    max_executions: int | None = Field(default=None, ge=1)
    max_retries: int | None = Field(default=None, ge=0)
    created_by: str = "system"
    tags: list[str] | None = None


class RuleUpdate(CamelModel):
    """Payload for updating an automation rule; unset fields are left alone."""
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    is_active: bool | None = None
    priority: int | None = None
    category: RuleCategory | None = None
    trigger: Trigger | None = None
    action: Action | None = None
    max_executions: int | None = Field(default=None, ge=1)
    max_retries: int | None = Field(default=None, ge=0)
    tags: list[str] | None = None


class FinancialEvent(CamelModel):
    """Inbound transaction record pushed by the ingestion collaborator."""
    id: str
    amount: Decimal
    type: Literal["credit", "debit"]
    category: str | None = None
    description: str = ""
    date: datetime | None = None
    bank: str | None = None
    account_id: str | None = None
    balance: Decimal | None = None
    metadata: dict[str, Any] | None = None


class ActionResult(CamelModel):
    """Outcome of one action handler."""
    type: str
    amount: Decimal | None = None
    source_account: str | None = None
    destination_account: str | None = None
    message: str | None = None
    reference: str | None = None
    status: str
    timestamp: datetime = Field(default_factory=_utcnow)


class Execution(CamelModel):
    """Audit record for one attempt to run a rule's action."""
    id: str
    rule_id: str
    rule_name: str
    status: ExecutionStatus = ExecutionStatus.EXECUTING
    trigger_data: dict[str, Any] | None = None
    action_result: ActionResult | None = None
    error_message: str | None = None
    execution_time: datetime = Field(default_factory=_utcnow)
    processing_time: float = 0.0
    attempt: int = 0


class ScheduleEntry(CamelModel):
    """Pending clock-driven work for a rule."""
    rule_id: str
    due_at: datetime
    kind: Literal["run", "retry"] = "run"
    trigger_data: dict[str, Any] | None = None


class AutomationStats(CamelModel):
    """Fleet-wide execution statistics."""
    total_rules: int = 0
    active_rules: int = 0
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    total_amount_processed: Decimal = Decimal("0")
    monthly_savings: Decimal = Decimal("0")
    efficiency: float = 0.0


class CycleReport(CamelModel):
    """Summary of one event or clock-tick cycle."""
    trigger: Literal["event", "tick"]
    status: Literal["processed", "dropped", "queued", "skipped"] = "processed"
    evaluated: int = 0
    execution_ids: list[str] = Field(default_factory=list)
