"""HTTP banking gateway tests against a mocked transport."""

from __future__ import annotations

import json
import logging
from decimal import Decimal

import httpx
import pytest

from moneyflows.services.banking import HttpBankingGateway, MoneyMovement


def _gateway(handler) -> HttpBankingGateway:
    return HttpBankingGateway(
        "https://bank.test/v1/",
        api_key="sk_live_abc123",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_get_balance_reads_account_endpoint():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"accountId": "acct-main", "balance": "1250.75"})

    balance = await _gateway(handler).get_balance("acct-main")

    assert balance == Decimal("1250.75")
    assert seen[0].url.path == "/v1/accounts/acct-main/balance"
    assert seen[0].headers["Authorization"] == "Bearer sk_live_abc123"


@pytest.mark.asyncio
async def test_perform_posts_movement_payload():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(json.loads(request.content))
        return httpx.Response(201, json={"success": True, "reference": "mv_bank_1"})

    movement = MoneyMovement(
        action_type="transfer",
        amount=Decimal("200000.00"),
        currency="NGN",
        source_account_id="acct-main",
        destination_account_id="acct-savings",
        rule_id="rule_1",
    )
    receipt = await _gateway(handler).perform(movement)

    assert receipt.success is True
    assert receipt.reference == "mv_bank_1"
    assert captured["amount"] == "200000.00"
    assert captured["sourceAccountId"] == "acct-main"
    assert captured["ruleId"] == "rule_1"


@pytest.mark.asyncio
async def test_perform_rejection_is_not_retried(caplog):
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(502, text="upstream said token=abc123 was rejected")

    caplog.set_level(logging.WARNING, logger="moneyflows.services.banking")
    movement = MoneyMovement(
        action_type="savings",
        amount=Decimal("10"),
        currency="NGN",
        source_account_id="acct-main",
    )
    receipt = await _gateway(handler).perform(movement)

    assert calls == 1
    assert receipt.success is False
    assert receipt.error == "http_502"
    assert "abc123" not in caplog.text
