"""Amount resolution for money-moving actions.

Invariants:
- Balance lookups that fail raise BalanceUnavailableError, never a silent zero.
- The ledger lives for a single cycle and is discarded afterwards.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Any, Awaitable, Callable, DefaultDict

from moneyflows.schema.automation import Action, AmountSpec, AmountType, FinancialEvent
from moneyflows.services.banking import BalanceProvider
from moneyflows.services.errors import BalanceUnavailableError, UnsupportedAmountError

logger = logging.getLogger("moneyflows.services.amounts")

CENT = Decimal("0.01")
ZERO = Decimal("0")


class CycleLedger:
    """Running total of withdrawals committed per source account in one cycle."""

    def __init__(self) -> None:
        self._committed: DefaultDict[str, Decimal] = defaultdict(lambda: ZERO)

    def committed(self, account_id: str) -> Decimal:
        return self._committed.get(account_id, ZERO)

    def commit(self, account_id: str, amount: Decimal) -> None:
        if not account_id or amount <= ZERO:
            return
        self._committed[account_id] += amount

    def snapshot(self) -> dict[str, str]:
        return {account: str(amount) for account, amount in self._committed.items()}


@dataclass(slots=True)
class AmountContext:
    """Collaborators and cycle state available while resolving an amount."""
    balances: BalanceProvider
    ledger: CycleLedger = field(default_factory=CycleLedger)
    event: FinancialEvent | None = None
    trigger_data: dict[str, Any] | None = None


AmountStrategy = Callable[[Action, AmountContext], Decimal | Awaitable[Decimal]]


def _round_up_strategy(action: Action, context: AmountContext) -> Decimal:
    """Spare-change saver: round the event amount up to the next multiple of value."""
    if context.event is None:
        raise UnsupportedAmountError("round_up_requires_event")
    step = action.amount.value
    if step <= ZERO:
        raise UnsupportedAmountError("round_up_requires_positive_value")
    spent = abs(Decimal(context.event.amount))
    rounded = (spent / step).to_integral_value(rounding=ROUND_CEILING) * step
    change = rounded - spent
    return change if change > ZERO else step


def _percentage_of_event_strategy(action: Action, context: AmountContext) -> Decimal:
    """Take a percentage of the triggering event's amount."""
    if context.event is None:
        raise UnsupportedAmountError("percentage_of_event_requires_event")
    return abs(Decimal(context.event.amount)) * action.amount.value / Decimal("100")


DEFAULT_STRATEGIES: dict[str, AmountStrategy] = {
    "round-up": _round_up_strategy,
    "percentage-of-event": _percentage_of_event_strategy,
}


async def fetch_balance(context: AmountContext, account_id: str) -> Decimal:
    """Fetch a source balance, normalizing every failure into BalanceUnavailableError."""
    if not account_id:
        raise BalanceUnavailableError("<missing>")
    try:
        balance = await context.balances.get_balance(account_id)
    except BalanceUnavailableError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise BalanceUnavailableError(account_id, cause=exc) from exc
    if balance is None:
        raise BalanceUnavailableError(account_id)
    return Decimal(balance)


def _clamp(amount: Decimal, spec: AmountSpec) -> Decimal:
    if spec.min_amount is not None and amount < spec.min_amount:
        amount = spec.min_amount
    if spec.max_amount is not None and amount > spec.max_amount:
        amount = spec.max_amount
    return amount


class AmountResolver:
    """Turn an action's AmountSpec into a concrete amount."""

    def __init__(self, strategies: dict[str, AmountStrategy] | None = None) -> None:
        self.strategies: dict[str, AmountStrategy] = dict(DEFAULT_STRATEGIES)
        if strategies:
            self.strategies.update(strategies)

    async def resolve(self, action: Action, context: AmountContext) -> Decimal:
        """Resolve the amount an action should move, clamped and rounded to cents.

        For ``remaining`` amounts, ``value`` is the balance to leave behind: the
        result is the balance minus what this cycle already committed from the
        account, minus ``value``, floored at zero.
        """
        spec = action.amount
        if spec.type == AmountType.FIXED:
            amount = spec.value
        elif spec.type == AmountType.PERCENTAGE:
            balance = await fetch_balance(context, action.source_account_id)
            amount = balance * spec.value / Decimal("100")
        elif spec.type == AmountType.REMAINING:
            balance = await fetch_balance(context, action.source_account_id)
            available = balance - context.ledger.committed(action.source_account_id)
            amount = max(available - spec.value, ZERO)
        else:
            amount = await self._calculate(action, context)
        amount = _clamp(Decimal(amount), spec).quantize(CENT, rounding=ROUND_HALF_UP)
        logger.debug(
            "Resolved %s amount %s for account %s", spec.type.value, amount, action.source_account_id
        )
        return amount

    async def _calculate(self, action: Action, context: AmountContext) -> Decimal:
        name = (action.metadata or {}).get("strategy")
        strategy = self.strategies.get(name) if name else None
        if strategy is None:
            raise UnsupportedAmountError(f"unsupported_amount_strategy:{name or 'unset'}")
        result = strategy(action, context)
        if inspect.isawaitable(result):
            result = await result
        return Decimal(result)
