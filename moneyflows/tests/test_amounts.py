"""Amount resolution tests."""

from __future__ import annotations

from decimal import Decimal

import pytest

from moneyflows.schema.automation import Action, FinancialEvent
from moneyflows.services.amounts import AmountContext, AmountResolver, CycleLedger
from moneyflows.services.banking import StaticBankingGateway
from moneyflows.services.errors import BalanceUnavailableError, UnsupportedAmountError


def _action(amount: dict, **overrides) -> Action:
    payload = {"type": "transfer", "sourceAccountId": "acct-main", "amount": amount}
    payload.update(overrides)
    return Action.model_validate(payload)


def _context(balance: int | str = 1000000, **kwargs) -> AmountContext:
    return AmountContext(balances=StaticBankingGateway({"acct-main": balance}), **kwargs)


@pytest.mark.asyncio
async def test_percentage_of_balance():
    resolver = AmountResolver()
    amount = await resolver.resolve(_action({"type": "percentage", "value": 20}), _context())
    assert amount == Decimal("200000.00")


@pytest.mark.asyncio
async def test_fixed_amount_is_clamped_and_rounded():
    resolver = AmountResolver()
    capped = _action({"type": "fixed", "value": "750.555", "maxAmount": 500})
    assert await resolver.resolve(capped, _context()) == Decimal("500.00")
    floored = _action({"type": "fixed", "value": "10", "minAmount": 25})
    assert await resolver.resolve(floored, _context()) == Decimal("25.00")
    assert await resolver.resolve(_action({"type": "fixed", "value": "10.005"}), _context()) == Decimal("10.01")


@pytest.mark.asyncio
async def test_remaining_accounts_for_cycle_commitments():
    resolver = AmountResolver()
    ledger = CycleLedger()
    ledger.commit("acct-main", Decimal("300"))
    context = _context(1000, ledger=ledger)

    sweep = await resolver.resolve(_action({"type": "remaining", "value": 0}), context)
    assert sweep == Decimal("700.00")

    keep_buffer = await resolver.resolve(_action({"type": "remaining", "value": 200}), context)
    assert keep_buffer == Decimal("500.00")

    overdrawn = await resolver.resolve(_action({"type": "remaining", "value": 5000}), context)
    assert overdrawn == Decimal("0.00")


@pytest.mark.asyncio
async def test_unknown_account_is_balance_unavailable():
    resolver = AmountResolver()
    action = _action({"type": "percentage", "value": 10}, sourceAccountId="acct-missing")
    with pytest.raises(BalanceUnavailableError) as excinfo:
        await resolver.resolve(action, _context())
    assert excinfo.value.account_id == "acct-missing"
    assert excinfo.value.message.startswith("balance_unavailable:acct-missing")


@pytest.mark.asyncio
async def test_calculated_round_up_strategy():
    resolver = AmountResolver()
    event = FinancialEvent(id="txn_pos", amount=Decimal("2340"), type="debit")
    action = _action({"type": "calculated", "value": 100}, metadata={"strategy": "round-up"})
    assert await resolver.resolve(action, _context(event=event)) == Decimal("60.00")

    exact = FinancialEvent(id="txn_exact", amount=Decimal("2400"), type="debit")
    assert await resolver.resolve(action, _context(event=exact)) == Decimal("100.00")


@pytest.mark.asyncio
async def test_calculated_without_strategy_is_unsupported():
    resolver = AmountResolver()
    with pytest.raises(UnsupportedAmountError):
        await resolver.resolve(_action({"type": "calculated", "value": 5}), _context())
    with pytest.raises(UnsupportedAmountError):
        await resolver.resolve(
            _action({"type": "calculated", "value": 5}, metadata={"strategy": "moon-phase"}), _context()
        )


@pytest.mark.asyncio
async def test_registered_async_strategy():
    async def half_balance(action, context):
        balance = await context.balances.get_balance(action.source_account_id)
        return balance / 2

    resolver = AmountResolver({"half-balance": half_balance})
    action = _action({"type": "calculated"}, metadata={"strategy": "half-balance"})
    assert await resolver.resolve(action, _context(1001)) == Decimal("500.50")


def test_ledger_ignores_non_positive_commits():
    ledger = CycleLedger()
    ledger.commit("acct-main", Decimal("0"))
    ledger.commit("", Decimal("50"))
    ledger.commit("acct-main", Decimal("12.5"))
    assert ledger.committed("acct-main") == Decimal("12.5")
    assert ledger.committed("acct-other") == Decimal("0")
    assert ledger.snapshot() == {"acct-main": "12.5"}
