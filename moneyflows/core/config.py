"""Application settings parsed from environment variables and defaults."""

import json
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_QUEUE_NAMES = ["default", "automations"]
DEFAULT_INCOME_KEYWORDS = ["salary", "payroll"]


def _split_list(value: str | list[str] | None, default: list[str]) -> list[str]:
    """Normalize list settings from JSON, CSV, or list inputs."""
    if isinstance(value, list):
        cleaned = [item.strip() for item in value if isinstance(item, str) and item.strip()]
        return cleaned or default.copy()
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return default.copy()
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            cleaned = [str(item).strip() for item in parsed if str(item).strip()]
            if cleaned:
                return cleaned
        items = [item.strip() for item in stripped.split(",") if item.strip()]
        if items:
            return items
    return default.copy()


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = "Money Flows API"
    environment: str = "development"
    api_prefix: str = "/api"
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./moneyflows.db"
    test_database_url: Optional[str] = None
    rule_store_backend: str = "memory"

    redis_url: str = "redis://redis:6379/0"
    worker_queue_names: list[str] | str = Field(default_factory=lambda: DEFAULT_QUEUE_NAMES.copy())
    tick_interval_seconds: int = 60

    banking_api_url: Optional[str] = None
    banking_api_key: Optional[str] = None
    banking_timeout_seconds: float = 15.0

    default_currency: str = "NGN"
    default_timezone: str = "UTC"
    default_max_retries: int = 3
    schedule_window_minutes: int = 5
    salary_category: str = "income-salary"
    income_keywords: list[str] | str = Field(default_factory=lambda: DEFAULT_INCOME_KEYWORDS.copy())
    large_income_threshold: Decimal = Decimal("100000")
    monthly_savings_window_days: int = 30
    history_default_limit: int = 50
    queue_events_while_busy: bool = False
    seed_default_rules: bool = False

    @field_validator("worker_queue_names", mode="before")
    @classmethod
    def _split_worker_queue_names(cls, value: str | list[str] | None) -> list[str]:
        """Normalize worker queue names from JSON, CSV, or list inputs."""
        return _split_list(value, DEFAULT_QUEUE_NAMES)

    @field_validator("income_keywords", mode="before")
    @classmethod
    def _split_income_keywords(cls, value: str | list[str] | None) -> list[str]:
        """Normalize income keywords and lowercase them for matching."""
        return [keyword.lower() for keyword in _split_list(value, DEFAULT_INCOME_KEYWORDS)]

    @field_validator("rule_store_backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value: str | None) -> str:
        backend = (value or "memory").strip().lower()
        if backend not in {"memory", "sql"}:
            raise ValueError("MONEYFLOWS_RULE_STORE_BACKEND must be 'memory' or 'sql'")
        return backend

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        """Reject retry and window settings that would break the scheduler."""
        if self.default_max_retries < 0:
            raise ValueError("MONEYFLOWS_DEFAULT_MAX_RETRIES must be zero or positive")
        if self.schedule_window_minutes <= 0:
            raise ValueError("MONEYFLOWS_SCHEDULE_WINDOW_MINUTES must be positive")
        if self.tick_interval_seconds <= 0:
            raise ValueError("MONEYFLOWS_TICK_INTERVAL_SECONDS must be positive")
        return self

    model_config = SettingsConfigDict(
        env_prefix="MONEYFLOWS_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings to avoid re-parsing environment variables."""
    return Settings()


settings = get_settings()
