from . import (
    amounts,
    automation_engine,
    banking,
    conditions,
    errors,
    money_flow_service,
    rule_store,
    sql_rule_store,
    templates,
    triggers,
)

__all__ = [
    "amounts",
    "automation_engine",
    "banking",
    "conditions",
    "errors",
    "money_flow_service",
    "rule_store",
    "sql_rule_store",
    "templates",
    "triggers",
]
"""Service-layer modules for the money flow engine."""
