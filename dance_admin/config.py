"""Application configuration using Pydantic Settings."""
import datetime
from functools import lru_cache

from pydantic import BaseModel, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dance_admin.services.fees import FeeTable
from dance_admin.services.retry import RetryPolicy


class ManualHoliday(BaseModel):
    date: datetime.date
    name: str


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    app_name: str = "Dance Studio Admin"
    debug: bool = False
    log_level: str = "INFO"

    # MongoDB
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "dance_admin"

    # Fee table (whole dollars)
    fee_absent: int = 5
    fee_medical_absence: int = 0
    fee_holiday: int = 0
    fee_late: int = 1
    fee_no_shoes: int = 1
    fee_not_in_uniform: int = 1

    # Expected monthly contribution; only read by reporting
    default_contribution_amount: int = 20

    # Optimistic write retries
    retry_attempts: int = 3
    retry_backoff_factor: float = 1.5
    retry_base_delay: float = 0.1  # seconds before the first retry

    # Holidays added by the school on top of the federal calendar, e.g.
    # MANUAL_HOLIDAYS='[{"date": "2025-05-02", "name": "Recital prep"}]'
    manual_holidays: list[ManualHoliday] = []
    holiday_default_name: str = "Manual Holiday"

    # CORS (comma-separated origins, e.g. "https://admin.example.com,http://localhost:3000")
    cors_origins: str = "http://localhost:3000"

    @model_validator(mode="after")
    def _validate_ledger_settings(self):
        fees = (
            self.fee_absent,
            self.fee_medical_absence,
            self.fee_holiday,
            self.fee_late,
            self.fee_no_shoes,
            self.fee_not_in_uniform,
        )
        if any(f < 0 for f in fees):
            raise ValueError("Fee amounts must be non-negative whole dollars")
        if self.retry_attempts < 0:
            raise ValueError("RETRY_ATTEMPTS cannot be negative")
        if self.retry_backoff_factor < 1:
            raise ValueError("RETRY_BACKOFF_FACTOR must be at least 1")
        return self

    def fee_table(self) -> FeeTable:
        return FeeTable(
            absent=self.fee_absent,
            medical_absence=self.fee_medical_absence,
            holiday=self.fee_holiday,
            late=self.fee_late,
            no_shoes=self.fee_no_shoes,
            not_in_uniform=self.fee_not_in_uniform,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.retry_attempts,
            backoff_factor=self.retry_backoff_factor,
            base_delay=self.retry_base_delay,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
