"""Account balance and money-movement collaborators.

The engine only depends on the two protocols below. ``HttpBankingGateway``
talks to a banking backend over HTTP; ``StaticBankingGateway`` keeps balances
in memory for local runs and tests.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Protocol

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from moneyflows.core.config import Settings, settings as default_settings
from moneyflows.utils.redaction import redact_secrets

logger = logging.getLogger("moneyflows.services.banking")


class BankingAPIError(Exception):
    pass


@dataclass(slots=True)
class MoneyMovement:
    """Structured payload describing one irreversible money movement."""
    action_type: str
    amount: Decimal
    currency: str
    source_account_id: str
    destination_account_id: str | None = None
    description: str = ""
    rule_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    requested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        return {
            "actionType": self.action_type,
            "amount": str(self.amount),
            "currency": self.currency,
            "sourceAccountId": self.source_account_id,
            "destinationAccountId": self.destination_account_id,
            "description": self.description,
            "ruleId": self.rule_id,
            "metadata": self.metadata,
            "requestedAt": self.requested_at.isoformat(),
        }


@dataclass(slots=True)
class MovementReceipt:
    success: bool
    reference: str | None = None
    error: str | None = None


class BalanceProvider(Protocol):
    async def get_balance(self, account_id: str) -> Decimal: ...


class MoneyMovementGateway(Protocol):
    async def perform(self, movement: MoneyMovement) -> MovementReceipt: ...


class StaticBankingGateway:
    """Reported balances held in memory; movements are recorded, not settled.

    Balances stay as reported until the host updates them, the way a data
    provider lags behind pending transfers. The per-cycle ledger covers the gap.
    """

    def __init__(self, balances: dict[str, Decimal | int | str] | None = None) -> None:
        self.balances: dict[str, Decimal] = {
            account: Decimal(str(amount)) for account, amount in (balances or {}).items()
        }
        self.movements: list[MoneyMovement] = []

    async def get_balance(self, account_id: str) -> Decimal:
        if account_id not in self.balances:
            raise BankingAPIError(f"unknown_account:{account_id}")
        return self.balances[account_id]

    async def perform(self, movement: MoneyMovement) -> MovementReceipt:
        self.movements.append(movement)
        return MovementReceipt(success=True, reference=f"mv_{uuid.uuid4().hex[:12]}")


class HttpBankingGateway:
    """Banking backend client; only balance reads are retried."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._timeout = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "HttpBankingGateway":
        config = config or default_settings
        if not config.banking_api_url:
            raise RuntimeError("MONEYFLOWS_BANKING_API_URL must be set for the HTTP banking gateway")
        return cls(
            config.banking_api_url,
            api_key=config.banking_api_key,
            timeout_seconds=config.banking_timeout_seconds,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def get_balance(self, account_id: str) -> Decimal:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential_jitter(initial=1, max=8),
            retry=retry_if_exception_type((httpx.TransportError, BankingAPIError)),
            reraise=True,
        ):
            with attempt:
                async with self._client() as client:
                    response = await client.get(f"/accounts/{account_id}/balance")
                    if response.status_code >= 500:
                        raise BankingAPIError(f"Server error {response.status_code}")
                    response.raise_for_status()
                    payload = response.json()
                    return Decimal(str(payload["balance"]))
        raise BankingAPIError("Unreachable")

    async def perform(self, movement: MoneyMovement) -> MovementReceipt:
        # Not retried: a timeout may hide a movement that already happened.
        async with self._client() as client:
            response = await client.post("/movements", json=movement.to_payload())
        if response.status_code >= 400:
            detail = redact_secrets(response.text[:200])
            logger.warning("Money movement rejected (%s): %s", response.status_code, detail)
            return MovementReceipt(success=False, error=f"http_{response.status_code}")
        payload = response.json()
        return MovementReceipt(
            success=bool(payload.get("success", True)),
            reference=payload.get("reference"),
            error=payload.get("error"),
        )
