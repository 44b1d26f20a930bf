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
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Panel Orders API"
    api_version: str = "0.1.0"
    api_description: str = "Order pricing and fulfillment for subscription plans"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "panel-orders-api"
    tracing_sample_rate: float = 1.0

    # Order limits (minor currency units)
    max_order_amount: int = 2_147_483_647  # int32 max
    max_recharge_amount: int = 2_000_000_000
    max_quantity: int = 1000

    # Platform-wide: at most one live subscription per user
    single_subscription_mode: bool = False

    # Unpaid order expiry
    close_order_minutes: int = 15
    close_order_max_retry: int = 3
    # Periodic sweep for orders whose close task was lost; 0 disables it
    stale_order_sweep_seconds: int = 600
    stale_order_sweep_limit: int = 500

    # Deferred task queue (Celery)
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"
    celery_queue: str = "orders"

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

        if self.max_recharge_amount > self.max_order_amount:
            errors.append("MAX_RECHARGE_AMOUNT cannot exceed MAX_ORDER_AMOUNT")

        if self.max_quantity <= 0:
            errors.append("MAX_QUANTITY must be positive")

        if not 0.0 <= self.tracing_sample_rate <= 1.0:
            errors.append("TRACING_SAMPLE_RATE must be between 0 and 1")

        if self.close_order_minutes <= 0:
            errors.append("CLOSE_ORDER_MINUTES must be positive")

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


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
