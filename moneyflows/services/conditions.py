"""Pure evaluation of trigger conditions against financial events."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping

from moneyflows.schema.automation import Condition, FinancialEvent

EventLike = FinancialEvent | Mapping[str, Any]


def _get(event: EventLike, key: str) -> Any:
    if isinstance(event, Mapping):
        return event.get(key)
    return getattr(event, key, None)


def _merchant_name(event: EventLike) -> Any:
    metadata = _get(event, "metadata") or {}
    if not isinstance(metadata, Mapping):
        return None
    return metadata.get("merchant_name") or metadata.get("merchantName")


def resolve_field(event: EventLike, field: str) -> Any:
    """Map a condition field onto the event value it inspects."""
    if field == "vendor":
        return _merchant_name(event) or _get(event, "description")
    if field in {"amount", "category", "description", "balance", "date", "type"}:
        return _get(event, field)
    return None


def _to_number(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if number.is_nan() or number.is_infinite():
        return None
    return number


def _text(value: Any) -> str:
    return "" if value is None else str(value).lower()


def _normalize(value: Any) -> Any:
    """Compare enums and numbers by their plain values."""
    raw = getattr(value, "value", value)
    number = _to_number(raw) if isinstance(raw, (int, float, Decimal)) else None
    return number if number is not None else raw


def _equals(actual: Any, condition: Condition) -> bool:
    return _normalize(actual) == _normalize(condition.value)


def _greater_than(actual: Any, condition: Condition) -> bool:
    left, right = _to_number(actual), _to_number(condition.value)
    return left is not None and right is not None and left > right


def _less_than(actual: Any, condition: Condition) -> bool:
    left, right = _to_number(actual), _to_number(condition.value)
    return left is not None and right is not None and left < right


def _between(actual: Any, condition: Condition) -> bool:
    value = _to_number(actual)
    low, high = _to_number(condition.value), _to_number(condition.secondary_value)
    if value is None or low is None or high is None:
        return False
    return low <= value <= high


def _members(condition: Condition) -> list[Any] | None:
    if not isinstance(condition.value, (list, tuple, set, frozenset)):
        return None
    return [_normalize(item) for item in condition.value]


def _in(actual: Any, condition: Condition) -> bool:
    members = _members(condition)
    return members is not None and _normalize(actual) in members


def _not_in(actual: Any, condition: Condition) -> bool:
    members = _members(condition)
    return members is not None and _normalize(actual) not in members


OPERATORS: dict[str, Callable[[Any, Condition], bool]] = {
    "equals": _equals,
    "not-equals": lambda actual, condition: not _equals(actual, condition),
    "greater-than": _greater_than,
    "less-than": _less_than,
    "contains": lambda actual, condition: _text(condition.value) in _text(actual),
    "starts-with": lambda actual, condition: _text(actual).startswith(_text(condition.value)),
    "ends-with": lambda actual, condition: _text(actual).endswith(_text(condition.value)),
    "between": _between,
    "in": _in,
    "not-in": _not_in,
}


def evaluate_condition(condition: Condition, event: EventLike) -> bool:
    """Evaluate one condition; unknown operators fail closed."""
    operator = OPERATORS.get(condition.operator)
    if operator is None:
        return False
    field = getattr(condition.field, "value", condition.field)
    return operator(resolve_field(event, field), condition)


def evaluate_conditions(conditions: Iterable[Condition], event: EventLike) -> bool:
    """Return True iff every condition holds for the event (empty → True)."""
    results = [evaluate_condition(condition, event) for condition in conditions]
    return all(results)
