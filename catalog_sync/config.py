"""
Configuration settings for Catalog Sync.

Uses Pydantic Settings to load environment variables for the entity store, the
time-series store, the remote catalog, worker fan-out, and the rollup/retention
windows.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Entity store
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("catalog_sync", alias="DB_NAME")

    # Time-series store; falls back to the entity store when unset
    timescale_url: Optional[str] = Field(None, alias="TIMESCALE_URL")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Remote catalog
    catalog_base_url: str = Field("https://api.pokemontcg.io/v2/cards", alias="CATALOG_BASE_URL")
    page_size: int = Field(250, alias="PAGE_SIZE", ge=1)
    request_timeout_seconds: float = Field(180.0, alias="REQUEST_TIMEOUT_SECONDS", gt=0)
    fetch_max_attempts: int = Field(3, alias="FETCH_MAX_ATTEMPTS", ge=1)
    fetch_base_delay_seconds: float = Field(0.5, alias="FETCH_BASE_DELAY_SECONDS", ge=0)
    probe_max_attempts: int = Field(30, alias="PROBE_MAX_ATTEMPTS", ge=1)
    probe_delay_seconds: float = Field(5.0, alias="PROBE_DELAY_SECONDS", ge=0)
    api_key: Optional[str] = Field(None, alias="X_API_KEY")
    worker_api_keys: Dict[str, str] = Field(default_factory=dict, alias="WORKER_API_KEYS")

    # Fan-out
    worker_count: int = Field(9, alias="WORKER_COUNT", ge=1)
    worker_base_url: str = Field("http://localhost:8000", alias="WORKER_BASE_URL")
    dispatch_timeout_seconds: float = Field(5.0, alias="DISPATCH_TIMEOUT_SECONDS", gt=0)
    db_max_concurrency: int = Field(1, alias="DB_MAX_CONCURRENCY", ge=1)
    db_write_max_attempts: int = Field(3, alias="DB_WRITE_MAX_ATTEMPTS", ge=1)
    db_write_delay_seconds: float = Field(1.0, alias="DB_WRITE_DELAY_SECONDS", ge=0)

    # Rollup / retention
    raw_retention_hours: int = Field(48, alias="RAW_RETENTION_HOURS", ge=1)
    daily_lookback_days: int = Field(35, alias="DAILY_LOOKBACK_DAYS", ge=1)
    daily_retention_days: Optional[int] = Field(30, alias="DAILY_RETENTION_DAYS", ge=1)
    three_day_lookback_days: int = Field(110, alias="THREE_DAY_LOOKBACK_DAYS", ge=1)
    three_day_retention_days: Optional[int] = Field(90, alias="THREE_DAY_RETENTION_DAYS", ge=1)
    monthly_lookback_months: int = Field(48, alias="MONTHLY_LOOKBACK_MONTHS", ge=1)
    monthly_retention_months: Optional[int] = Field(None, alias="MONTHLY_RETENTION_MONTHS", ge=1)
    six_month_lookback_months: Optional[int] = Field(None, alias="SIX_MONTH_LOOKBACK_MONTHS", ge=6)
    six_month_retention_months: Optional[int] = Field(
        None, alias="SIX_MONTH_RETENTION_MONTHS", ge=6
    )
    prune_batch_size: int = Field(10_000, alias="PRUNE_BATCH_SIZE", ge=1)
    terminal_retention_years: Optional[int] = Field(None, alias="TERMINAL_RETENTION_YEARS", ge=1)
    rollup_lock_name: str = Field("price-history-rollup", alias="ROLLUP_LOCK_NAME")
    rollup_max_attempts: int = Field(5, alias="ROLLUP_MAX_ATTEMPTS", ge=1)
    rollup_base_delay_seconds: float = Field(0.5, alias="ROLLUP_BASE_DELAY_SECONDS", ge=0)

    # Schedules
    scheduler_enabled: bool = Field(False, alias="SCHEDULER_ENABLED")
    dispatch_cron: str = Field("0 */3 * * *", alias="DISPATCH_CRON")
    rollup_cron: str = Field("10 */3 * * *", alias="ROLLUP_CRON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _raw_retention_within_lookbacks(self) -> "Settings":
        # Raw rows pruned before any tier has rolled them up would be lost.
        raw_days = self.raw_retention_hours / 24
        if raw_days > self.daily_lookback_days or raw_days > self.three_day_lookback_days:
            raise ValueError(
                "RAW_RETENTION_HOURS must not exceed the daily or 3-day rollup lookback"
            )
        if raw_days > self.monthly_lookback_months * 28:
            raise ValueError("RAW_RETENTION_HOURS must not exceed the monthly rollup lookback")
        return self

    @property
    def dsn(self) -> str:
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def timeseries_dsn(self) -> str:
        return self.timescale_url or self.dsn

    def worker_ids(self) -> list[str]:
        """Stable worker identities, ``worker-1`` .. ``worker-N``."""
        return [f"worker-{index + 1}" for index in range(self.worker_count)]

    def credential_for(self, worker_id: str) -> Optional[str]:
        """Per-worker API key, falling back to the shared key."""
        return self.worker_api_keys.get(worker_id) or self.api_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
