"""Typed failures raised by the money flow engine.

Invariants:
- ActionExecutionError (and subclasses) consume a retry.
- Unsupported* errors are configuration bugs and never consume a retry.
- ValidationError is surfaced to the caller and never retried.
"""

from __future__ import annotations


class MoneyFlowError(RuntimeError):
    """Base class for engine errors carrying a short, UI-safe message."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MoneyFlowError):
    """Malformed rule definition or reference to an unknown rule."""


class RuleNotFoundError(ValidationError):
    """Raised when a rule id does not exist in the store."""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Rule with ID {rule_id} not found")
        self.rule_id = rule_id


class ActionExecutionError(MoneyFlowError):
    """The action handler or the money-movement backend failed."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class BalanceUnavailableError(ActionExecutionError):
    """Account balance lookup failed while resolving an amount."""

    def __init__(self, account_id: str, *, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause else ""
        super().__init__(f"balance_unavailable:{account_id}{detail}", cause=cause)
        self.account_id = account_id


class UnsupportedActionError(MoneyFlowError):
    """Unknown action type; fails the attempt without consuming a retry."""


class UnsupportedAmountError(UnsupportedActionError):
    """Calculated amount without a registered strategy."""


class UnsupportedTriggerError(MoneyFlowError):
    """Unknown or reserved trigger type."""
