"""Action execution for matched automation rules.

Invariants:
- Every money-moving handler resolves its amount before calling the gateway.
- Gateway failures surface as ActionExecutionError carrying the cause.
- Committed withdrawals are recorded on the cycle ledger only after success.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable

from moneyflows.core.config import Settings, settings as default_settings
from moneyflows.schema.automation import Action, ActionResult, ActionType
from moneyflows.services.amounts import AmountContext, AmountResolver
from moneyflows.services.banking import MoneyMovement, MoneyMovementGateway
from moneyflows.services.errors import ActionExecutionError, UnsupportedActionError

logger = logging.getLogger("moneyflows.services.automation_engine")

ActionHandler = Callable[["ActionExecutor", Action, AmountContext, "str | None"], Awaitable[ActionResult]]

MONEY_MOVING_ACTIONS = frozenset(
    {ActionType.TRANSFER.value, ActionType.SAVINGS.value, ActionType.INVESTMENT.value, ActionType.BILL_PAYMENT.value}
)


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


async def _execute_money_movement(
    executor: "ActionExecutor",
    action: Action,
    context: AmountContext,
    rule_id: str | None,
) -> ActionResult:
    if not action.source_account_id:
        raise ActionExecutionError(f"{action.type}_missing_source_account")
    amount = await executor.resolver.resolve(action, context)
    reference: str | None = None
    if amount > Decimal("0"):
        movement = MoneyMovement(
            action_type=action.type,
            amount=amount,
            currency=action.amount.currency or executor.config.default_currency,
            source_account_id=action.source_account_id,
            destination_account_id=action.destination_account_id,
            description=action.description,
            rule_id=rule_id,
            metadata=dict(action.metadata or {}),
        )
        try:
            receipt = await executor.gateway.perform(movement)
        except Exception as exc:  # noqa: BLE001
            raise ActionExecutionError(f"{action.type}_failed: {exc}", cause=exc) from exc
        if not receipt.success:
            raise ActionExecutionError(f"{action.type}_rejected: {receipt.error or 'unknown'}")
        reference = receipt.reference
        context.ledger.commit(action.source_account_id, amount)
    else:
        logger.info("Skipping %s movement for rule %s; resolved amount is zero", action.type, rule_id)
    return ActionResult(
        type=action.type,
        amount=amount,
        source_account=action.source_account_id,
        destination_account=action.destination_account_id,
        reference=reference,
        status="completed",
        timestamp=_utcnow(),
    )


async def _execute_notification(
    executor: "ActionExecutor",
    action: Action,
    context: AmountContext,
    rule_id: str | None,
) -> ActionResult:
    logger.info("Automation notification for rule %s: %s", rule_id, action.description)
    return ActionResult(
        type=ActionType.NOTIFICATION.value,
        message=action.description,
        status="sent",
        timestamp=_utcnow(),
    )


ACTION_HANDLERS: dict[str, ActionHandler] = {
    ActionType.TRANSFER.value: _execute_money_movement,
    ActionType.SAVINGS.value: _execute_money_movement,
    ActionType.INVESTMENT.value: _execute_money_movement,
    ActionType.BILL_PAYMENT.value: _execute_money_movement,
    ActionType.NOTIFICATION.value: _execute_notification,
}


class ActionExecutor:
    """Dispatch an action to its handler and return the handler's result."""

    def __init__(
        self,
        gateway: MoneyMovementGateway,
        *,
        resolver: AmountResolver | None = None,
        config: Settings | None = None,
    ) -> None:
        self.gateway = gateway
        self.resolver = resolver or AmountResolver()
        self.config = config or default_settings

    async def execute(
        self,
        action: Action,
        context: AmountContext,
        *,
        rule_id: str | None = None,
    ) -> ActionResult:
        handler = ACTION_HANDLERS.get(action.type)
        if not handler:
            raise UnsupportedActionError(f"Unsupported action type: {action.type}")
        return await handler(self, action, context, rule_id)
