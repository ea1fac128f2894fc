"""
Storefront settings, read from the environment (and .env) by pydantic-settings.

Secrets have empty defaults; the validator below refuses to build a
Settings object without a database or a session signing key.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database - no default, PostgreSQL only
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    api_title: str = "Ministerio AI Storefront"
    api_version: str = "0.1.0"
    api_description: str = "One-time purchases of access to Custom GPTs"
    public_base_url: str = "https://ministerioai.com"

    # User sessions (bearer JWT)
    jwt_secret: str = ""  # generate with: openssl rand -hex 32
    jwt_expire_hours: int = 24 * 7
    password_reset_expire_minutes: int = 60

    # Federated login - Google OAuth
    google_client_id: str = ""
    google_client_secret: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "gpt-storefront"
    trace_sample_rate: float = 1.0  # 1.0 = 100% sampling

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # Stripe secret key (sk_test_... or sk_live_...)
    stripe_webhook_secret: str = ""  # Stripe webhook signing secret (whsec_...)
    stripe_publishable_key: str = ""  # Stripe publishable key (pk_test_... or pk_live_...)
    stripe_timeout_seconds: float = 10.0
    stripe_retry_attempts: int = 3

    # Transactional email - SendGrid
    sendgrid_api_key: str = ""
    email_from_address: str = "soporte@ministerioai.com"

    # Support assistant - OpenAI
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"

    # Cross-system verification rate limit (slowapi syntax)
    verify_rate_limit: str = "30/minute"

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

        # Session tokens are signed with this secret; an empty key would sign with ""
        if not self.jwt_secret:
            errors.append("JWT_SECRET is required but empty or missing")

        # A live secret key with a test publishable key (or vice versa) makes
        # every client-side confirmation fail
        if self.stripe_api_key and self.stripe_publishable_key:
            secret_live = self.stripe_api_key.startswith("sk_live_")
            publishable_live = self.stripe_publishable_key.startswith("pk_live_")
            if secret_live != publishable_live:
                errors.append("STRIPE_API_KEY and STRIPE_PUBLISHABLE_KEY are from different modes")

        if self.stripe_retry_attempts < 1:
            errors.append("STRIPE_RETRY_ATTEMPTS must be at least 1")

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


# Global settings instance - validates at import time
settings = Settings()
