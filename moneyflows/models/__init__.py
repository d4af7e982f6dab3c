from moneyflows.models.automation import AutomationExecutionRecord, AutomationRuleRecord, AutomationScheduleRecord

__all__ = [
    "AutomationExecutionRecord",
    "AutomationRuleRecord",
    "AutomationScheduleRecord",
]
"""SQLAlchemy ORM models for the Money Flows store."""
