"""Settings parsing tests."""

from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from moneyflows.core.config import Settings


def test_list_settings_accept_csv_and_json():
    config = Settings(worker_queue_names="default, automations ,", income_keywords='["Salary", "WAGES"]')
    assert config.worker_queue_names == ["default", "automations"]
    assert config.income_keywords == ["salary", "wages"]


def test_blank_lists_fall_back_to_defaults():
    config = Settings(worker_queue_names="", income_keywords=[])
    assert config.worker_queue_names == ["default", "automations"]
    assert config.income_keywords == ["salary", "payroll"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("MONEYFLOWS_RULE_STORE_BACKEND", "SQL")
    monkeypatch.setenv("MONEYFLOWS_LARGE_INCOME_THRESHOLD", "250000")
    monkeypatch.setenv("MONEYFLOWS_QUEUE_EVENTS_WHILE_BUSY", "true")
    config = Settings()
    assert config.rule_store_backend == "sql"
    assert config.large_income_threshold == Decimal("250000")
    assert config.queue_events_while_busy is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"rule_store_backend": "mongo"},
        {"default_max_retries": -1},
        {"schedule_window_minutes": 0},
        {"tick_interval_seconds": 0},
    ],
)
def test_invalid_settings_are_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)
