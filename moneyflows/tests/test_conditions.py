"""Condition evaluator tests."""

from __future__ import annotations

from decimal import Decimal

import pytest

from moneyflows.schema.automation import Condition, FinancialEvent
from moneyflows.services.conditions import evaluate_condition, evaluate_conditions, resolve_field


def _event(**overrides) -> FinancialEvent:
    payload = {
        "id": "txn_1",
        "amount": "450000",
        "type": "credit",
        "category": "income-salary",
        "description": "ACME Ltd Salary",
    }
    payload.update(overrides)
    return FinancialEvent.model_validate(payload)


def _condition(field: str, operator: str, value=None, secondary=None) -> Condition:
    return Condition(field=field, operator=operator, value=value, secondary_value=secondary)


def test_salary_conditions_match_scenario_event():
    conditions = [
        _condition("category", "equals", "income-salary"),
        _condition("amount", "greater-than", 100000),
    ]
    assert evaluate_conditions(conditions, _event()) is True
    assert evaluate_conditions(conditions, _event(amount="90000")) is False


def test_empty_condition_list_matches():
    assert evaluate_conditions([], _event()) is True


@pytest.mark.parametrize(
    ("field", "operator", "value", "secondary", "expected"),
    [
        ("amount", "equals", 450000, None, True),
        ("amount", "not-equals", 450000, None, False),
        ("amount", "less-than", "500000", None, True),
        ("amount", "between", 400000, 500000, True),
        ("amount", "between", 450000, 450000, True),
        ("amount", "between", 1, 10, False),
        ("description", "contains", "salary", None, True),
        ("description", "starts-with", "acme", None, True),
        ("description", "ends-with", "SALARY", None, True),
        ("category", "in", ["income-salary", "income-bonus"], None, True),
        ("category", "not-in", ["bills-water"], None, True),
        ("type", "equals", "debit", None, False),
    ],
)
def test_operator_matrix(field, operator, value, secondary, expected):
    assert evaluate_condition(_condition(field, operator, value, secondary), _event()) is expected


def test_unknown_operator_fails_closed():
    assert evaluate_condition(_condition("amount", "approximately", 450000), _event()) is False


def test_membership_requires_a_list():
    assert evaluate_condition(_condition("category", "in", "income-salary"), _event()) is False
    assert evaluate_condition(_condition("category", "not-in", "income-salary"), _event()) is False


def test_non_numeric_values_never_compare():
    event = _event()
    assert evaluate_condition(_condition("amount", "greater-than", "lots"), event) is False
    assert evaluate_condition(_condition("amount", "less-than", "NaN"), event) is False
    assert evaluate_condition(_condition("description", "greater-than", 1), event) is False


def test_missing_field_does_not_raise():
    event = _event(category=None)
    assert evaluate_condition(_condition("category", "contains", "income"), event) is False
    assert evaluate_condition(_condition("balance", "greater-than", 0), event) is False


def test_vendor_prefers_merchant_name():
    event = _event(metadata={"merchantName": "Shoprite"})
    assert resolve_field(event, "vendor") == "Shoprite"
    assert resolve_field(_event(), "vendor") == "ACME Ltd Salary"
    assert evaluate_condition(_condition("vendor", "equals", "Shoprite"), event) is True


def test_every_condition_is_evaluated():
    conditions = [
        _condition("amount", "greater-than", 1_000_000),
        _condition("category", "equals", "income-salary"),
    ]
    assert evaluate_conditions(conditions, _event()) is False
    assert resolve_field(_event(), "amount") == Decimal("450000")


def test_conditions_accept_plain_mappings():
    event = {"amount": 5000, "type": "debit", "description": "POS purchase"}
    assert evaluate_condition(_condition("type", "equals", "debit"), event) is True
    assert evaluate_condition(_condition("amount", "greater-than", 1000), event) is True
