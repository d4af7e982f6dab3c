"""Shared helpers for engine and API tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from moneyflows.services.banking import MoneyMovement, MovementReceipt, StaticBankingGateway

# Sunday, 1 March 2026.
START = datetime(2026, 3, 1, 8, 50, tzinfo=timezone.utc)


@dataclass(slots=True)
class FakeClock:
    """Manually advanced clock injected into engines under test."""

    current: datetime = START

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


class FailingGateway(StaticBankingGateway):
    """Reports balances but refuses every money movement."""

    def __init__(self, balances: dict[str, Any] | None = None, *, error: str = "bank offline") -> None:
        super().__init__(balances)
        self.error = error
        self.attempts = 0

    async def perform(self, movement: MoneyMovement) -> MovementReceipt:
        self.attempts += 1
        raise RuntimeError(self.error)


class BlockingGateway(StaticBankingGateway):
    """Holds every movement until the test releases it."""

    def __init__(self, balances: dict[str, Any] | None = None) -> None:
        super().__init__(balances or {"acct-main": Decimal("1000000")})
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def perform(self, movement: MoneyMovement) -> MovementReceipt:
        self.entered.set()
        await self.release.wait()
        return await super().perform(movement)


def salary_event(event_id: str = "txn_salary", amount: int | str = 450000, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": event_id,
        "amount": amount,
        "type": "credit",
        "category": "income-salary",
        "description": "ACME LTD SALARY MARCH",
    }
    payload.update(overrides)
    return payload


def salary_rule(name: str = "Salary savings", *, priority: int = 1, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": name,
        "category": "savings",
        "priority": priority,
        "trigger": {
            "type": "event",
            "conditions": [
                {"field": "category", "operator": "equals", "value": "income-salary"},
                {"field": "amount", "operator": "greater-than", "value": 100000},
            ],
        },
        "action": {
            "type": "transfer",
            "sourceAccountId": "acct-main",
            "destinationAccountId": "acct-savings",
            "amount": {"type": "percentage", "value": 20},
            "description": "Save a fifth of salary",
        },
    }
    payload.update(overrides)
    return payload


def fixed_action(amount: int | str, /, *, action_type: str = "transfer", **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": action_type,
        "sourceAccountId": "acct-main",
        "destinationAccountId": "acct-savings",
        "amount": {"type": "fixed", "value": amount},
    }
    payload.update(overrides)
    return payload


def clock_rule(trigger: dict[str, Any], *, name: str = "Clock rule", **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": name,
        "category": "emergency-fund",
        "trigger": trigger,
        "action": fixed_action(50000),
    }
    payload.update(overrides)
    return payload
