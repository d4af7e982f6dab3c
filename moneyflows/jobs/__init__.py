from .automations import process_event_job, process_scheduled_rules_job

__all__ = [
    "process_event_job",
    "process_scheduled_rules_job",
]
"""Background job modules for RQ workers and schedulers."""
