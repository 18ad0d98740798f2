# settings.py
from __future__ import annotations

from datetime import date

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(...)
    DB_POOL_MAX: int = 10
    DB_STATEMENT_TIMEOUT_MS: int = Field(default=5000, gt=0)
    DB_LOCK_TIMEOUT_MS: int = Field(default=3000, gt=0)

    # -----------------------
    # JWT (issued by the identity provider)
    # -----------------------
    JWT_SECRET: str = Field(default="dev-secret-change-me", min_length=16)
    JWT_ALG: str = Field(default="HS256")
    JWT_ACCESS_MINUTES: int = Field(default=60)

    # -----------------------
    # Program
    # -----------------------
    PROGRAM_LAUNCH_DATE: date = Field(default=date(2024, 1, 1))
    REVENUE_THRESHOLD_CENTS: int = Field(default=10_000_000, ge=0)
    AGE_THRESHOLD_MONTHS: int = Field(default=12, ge=0)
    PAYOUT_AMOUNT_CENTS: int = Field(default=10_000_000, gt=0)
    PAYOUT_CURRENCY: str = "USD"
    MIN_QUALIFYING_PAYMENTS: int = Field(default=12, ge=1)

    # -----------------------
    # Approvals
    # -----------------------
    APPROVAL_THRESHOLD_CENTS: int = Field(default=10_000_000, ge=0)
    APPROVALS_AT_OR_ABOVE_THRESHOLD: int = Field(default=2, ge=1)
    APPROVALS_BELOW_THRESHOLD: int = Field(default=1, ge=1)
    APPROVER_ROLES: str = "admin,finance_manager"

    # -----------------------
    # Payments
    # -----------------------
    RETENTION_FEE_CENTS: int = Field(default=30_000, ge=0)
    TAX_WITHHOLDING_RATE: str = "0.24"
    BANK_DETAILS_KEY: str = ""

    # -----------------------
    # Membership lifecycle
    # -----------------------
    REMOVAL_DELAY_MONTHS: int = Field(default=12, ge=1)

    # -----------------------
    # Collaborators
    # -----------------------
    BILLING_SERVICE_URL: str = "http://localhost:3001"
    BILLING_HTTP_TIMEOUT_S: float = 10.0
    NOTIFICATION_SERVICE_URL: str = "http://localhost:3002"
    NOTIFICATION_HTTP_TIMEOUT_S: float = 5.0
    DOCUMENT_SERVICE_URL: str = "http://localhost:3003"
    DOCUMENT_HTTP_TIMEOUT_S: float = 10.0
    SERVICE_API_KEY: str = ""

    # -----------------------
    # Jobs
    # -----------------------
    ELIGIBILITY_CHECK_INTERVAL_SECONDS: int = 86_400
    REMOVAL_SWEEP_INTERVAL_SECONDS: int = 86_400

    LOG_LEVEL: str = "INFO"

    def approver_roles(self) -> frozenset[str]:
        return frozenset(r.strip().lower() for r in self.APPROVER_ROLES.split(",") if r.strip())


settings = Settings()
