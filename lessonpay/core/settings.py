# lessonpay/core/settings.py
from __future__ import annotations
from typing import Literal, List
from pydantic_settings import BaseSettings
from pydantic import field_validator, ConfigDict


class Settings(BaseSettings):
    # --- App ---
    APP_NAME: str = "Lesson Payments Service"
    ENV: Literal["development", "staging", "production"] = "development"
    LOG_LEVEL: str = "INFO"

    # --- HTTP / CORS ---
    CORS_ORIGINS: str = "*"  # comma-separated list or "*"
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: str = "*"   # comma-separated or "*"
    CORS_ALLOW_HEADERS: str = "*"   # comma-separated or "*"

    # --- Payments ---
    PAYMENTS_BACKEND: Literal["fake", "stripe"] = "fake"
    STRIPE_SECRET_KEY: str = ""          # required if PAYMENTS_BACKEND=stripe
    STRIPE_PUBLISHABLE_KEY: str = ""     # handed to the browser via GET /config
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    CURRENCY: str = "usd"

    # --- Reporting ---
    REPORT_WINDOW_HOURS: int = 36
    REPORT_PAGE_SIZE: int = 100          # Stripe list pages top out at 100
    REPORT_MAX_RECORDS: int = 1000
    REPORT_FETCH_CONCURRENCY: int = 8
    FAILED_PAYMENT_STATUSES: str = "requires_payment_method,canceled"

    # --- Retries (idempotent reads only) ---
    READ_RETRY_ATTEMPTS: int = 3
    READ_RETRY_BACKOFF_SECONDS: float = 0.25

    model_config = ConfigDict(env_file=".env", case_sensitive=False)

    @property
    def DEV_MODE(self) -> bool:
        return self.ENV == "development"

    @property
    def failed_payment_statuses(self) -> List[str]:
        return [s for s in self.FAILED_PAYMENT_STATUSES.split(",") if s]

    @field_validator("CORS_ORIGINS", "CORS_ALLOW_METHODS", "CORS_ALLOW_HEADERS", "FAILED_PAYMENT_STATUSES")
    @classmethod
    def _norm_csv(cls, v: str) -> str:
        return ",".join([piece.strip() for piece in v.split(",")]) if v else v

    @field_validator("CURRENCY")
    @classmethod
    def _norm_currency(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if len(v) != 3:
            raise ValueError("CURRENCY must be a 3-letter ISO code")
        return v

    @field_validator("REPORT_PAGE_SIZE")
    @classmethod
    def _clamp_page_size(cls, v: int) -> int:
        return max(1, min(int(v), 100))

    def validate_payments(self) -> None:
        if self.PAYMENTS_BACKEND == "stripe" and not self.STRIPE_SECRET_KEY:
            raise ValueError("STRIPE_SECRET_KEY is required when PAYMENTS_BACKEND=stripe")


settings = Settings()
# Post init checks that are cross-field aware
settings.validate_payments()
