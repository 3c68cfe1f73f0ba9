"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Digital Employee Portal API"
    api_version: str = "0.1.0"
    api_description: str = "Wallet, AI credit, project run and partner commission backend"

    # Apply pending Alembic migrations when the API starts
    run_migrations_on_startup: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "digital-employee-portal"
    trace_sample_rate: float = 1.0  # 1.0 = 100% sampling

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # sk_test_... or sk_live_...
    stripe_webhook_secret: str = ""  # whsec_...
    stripe_publishable_key: str = ""
    # Credit wallets directly when no gateway is configured (demo/staging only)
    payment_simulation_enabled: bool = False

    # Business rules - all money in minor units (paise)
    currency: str = "INR"
    tax_rate_bps: int = 1800  # 18% GST on renewals and cart totals
    credit_auto_approve_threshold: int = 1000  # purchases below this are auto-approved
    min_top_up_minor: int = 10_000  # 100 INR
    min_payout_minor: int = 100_000  # 1000 INR
    referral_rate_bps: int = 1000  # 10%
    channel_rate_bps: int = 2000  # 20%
    subscription_period_days: int = 30
    max_auto_provisioned_projects: int = 5
    default_ai_credit_cost: int = 10
    default_workflow_count_limit: int = 100

    # Workflow webhook dispatch
    webhook_timeout_seconds: float = 10.0
    webhook_max_attempts: int = 2
    webhook_retry_backoff_seconds: float = 0.5
    # Record unreachable webhooks as simulated successes instead of failures
    webhook_simulation_fallback: bool = True
    # Bill credits and run count for failed runs
    charge_failed_runs: bool = False

    # Outbox delivery (lead processing webhook)
    lead_processing_webhook_url: str = ""
    outbox_max_attempts: int = 5
    outbox_backoff_seconds: int = 30
    outbox_batch_size: int = 50

    # Browser origins allowed to call the API with cookies (referral capture)
    cors_allow_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Referral capture
    referral_cookie_name: str = "referral_code"
    referral_cookie_max_age_seconds: int = 30 * 24 * 3600

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if len(self.currency) != 3:
            errors.append(f"CURRENCY must be a 3-letter code, got: {self.currency}")

        if self.webhook_max_attempts < 1:
            errors.append("WEBHOOK_MAX_ATTEMPTS must be at least 1")

        if self.credit_auto_approve_threshold < 1:
            errors.append("CREDIT_AUTO_APPROVE_THRESHOLD must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def payment_gateway_enabled(self) -> bool:
        """Whether a real payment gateway is configured."""
        return bool(self.stripe_api_key)


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
