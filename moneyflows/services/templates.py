"""Predefined automation templates offered to new users."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from moneyflows.core.config import Settings, settings as default_settings
from moneyflows.schema.automation import Action, ExecutionState, Rule, RuleCategory
from moneyflows.services.rule_store import RuleStore

AUTOMATION_TEMPLATES: list[dict[str, Any]] = [
    {
        "name": "Salary Savings Rule",
        "description": "Automatically save 20% of salary when received",
        "category": "savings",
        "priority": 1,
        "trigger": {
            "type": "event",
            "conditions": [
                {"field": "category", "operator": "equals", "value": "income-salary"},
                {"field": "amount", "operator": "greater-than", "value": 100000},
            ],
        },
        "action": {
            "type": "transfer",
            "amount": {"type": "percentage", "value": 20},
            "description": "Automatic salary savings",
        },
    },
    {
        "name": "Emergency Fund Builder",
        "description": "Save 50,000 monthly for an emergency fund",
        "category": "emergency-fund",
        "priority": 2,
        "trigger": {"type": "wall-clock-schedule", "schedule": {"dayOfMonth": 1, "time": "09:00"}},
        "action": {
            "type": "transfer",
            "amount": {"type": "fixed", "value": 50000},
            "description": "Emergency fund contribution",
        },
    },
    {
        "name": "Monthly Investment",
        "description": "Invest 100,000 monthly in mutual funds",
        "category": "investment",
        "priority": 3,
        "trigger": {"type": "wall-clock-schedule", "schedule": {"dayOfMonth": 15, "time": "10:00"}},
        "action": {
            "type": "investment",
            "amount": {"type": "fixed", "value": 100000},
            "description": "Monthly investment contribution",
        },
    },
    {
        "name": "Utility Bills Auto-Pay",
        "description": "Automatically pay utility bills when due",
        "category": "bill-payment",
        "priority": 4,
        "trigger": {
            "type": "event",
            "conditions": [
                {
                    "field": "category",
                    "operator": "in",
                    "value": ["bills-electricity", "bills-water", "bills-internet"],
                }
            ],
        },
        "action": {
            "type": "bill-payment",
            "amount": {"type": "remaining", "value": 0},
            "description": "Automatic utility bill payment",
        },
    },
    {
        "name": "Loan Repayment",
        "description": "Automatically pay loan installments",
        "category": "debt-repayment",
        "priority": 5,
        "trigger": {"type": "wall-clock-schedule", "schedule": {"dayOfMonth": 25, "time": "14:00"}},
        "action": {
            "type": "transfer",
            "amount": {"type": "fixed", "value": 75000},
            "description": "Loan installment payment",
        },
    },
    {
        "name": "Spare Change Saver",
        "description": "Save spare change from transactions",
        "category": "savings",
        "priority": 6,
        "trigger": {
            "type": "event",
            "conditions": [
                {"field": "type", "operator": "equals", "value": "debit"},
                {"field": "amount", "operator": "greater-than", "value": 1000},
            ],
        },
        "action": {
            "type": "savings",
            "amount": {"type": "calculated", "value": 100},
            "description": "Spare change savings",
            "metadata": {"strategy": "round-up"},
        },
    },
    {
        "name": "Business Expense Tracking",
        "description": "Separate business expenses automatically",
        "category": "custom",
        "priority": 7,
        "trigger": {
            "type": "event",
            "conditions": [
                {"field": "category", "operator": "in", "value": ["business", "office", "professional"]}
            ],
        },
        "action": {
            "type": "transfer",
            "amount": {"type": "fixed", "value": 0},
            "description": "Business expense categorization",
        },
    },
    {
        "name": "Tax Savings Fund",
        "description": "Save 10% monthly for tax obligations",
        "category": "savings",
        "priority": 8,
        "trigger": {"type": "wall-clock-schedule", "schedule": {"dayOfMonth": 5, "time": "11:00"}},
        "action": {
            "type": "transfer",
            "amount": {"type": "percentage", "value": 10},
            "description": "Tax savings contribution",
        },
    },
]


def template_rules(config: Settings | None = None) -> list[Rule]:
    """Build inactive system rules from the templates."""
    config = config or default_settings
    now = datetime.now(timezone.utc)
    rules: list[Rule] = []
    for index, template in enumerate(AUTOMATION_TEMPLATES, start=1):
        action = Action.model_validate(template["action"])
        action.amount.currency = action.amount.currency or config.default_currency
        rules.append(
            Rule(
                id=f"default_{index}",
                name=template["name"],
                description=template["description"],
                is_active=False,
                priority=template["priority"],
                category=RuleCategory(template["category"]),
                trigger=template["trigger"],
                action=action,
                execution=ExecutionState(max_retries=config.default_max_retries),
                created_at=now,
                updated_at=now,
                created_by="system",
            )
        )
    return rules


async def seed_default_rules(store: RuleStore, config: Settings | None = None) -> int:
    """Insert template rules that are not stored yet; returns how many were added."""
    added = 0
    for rule in template_rules(config):
        if await store.get_rule(rule.id) is None:
            await store.upsert_rule(rule)
            added += 1
    return added
