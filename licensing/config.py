"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Licensing API"
    api_version: str = "0.1.0"
    api_description: str = "License issuance and device activation service"

    # Identity provider - Google ID tokens
    GOOGLE_CLIENT_ID: str = ""  # Web client ID
    GOOGLE_CLIENT_IDS: str = ""  # Comma-separated list of extra client IDs (Android, iOS)

    @property
    def valid_google_client_ids(self) -> list[str]:
        """Get list of valid Google client IDs for token validation."""
        ids = []
        if self.GOOGLE_CLIENT_ID:
            ids.append(self.GOOGLE_CLIENT_ID)
        if self.GOOGLE_CLIENT_IDS:
            for cid in self.GOOGLE_CLIENT_IDS.split(","):
                cid = cid.strip()
                if cid and cid not in ids:
                    ids.append(cid)
        return ids

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "licensing-api"

    # Payment gateway - Maksekeskus
    mk_env: Literal["test", "live"] = "test"
    mk_shop_id: str = ""
    mk_secret_key: str = ""
    mk_request_timeout: float = 10.0
    mk_country: str | None = None  # None = gateway default ("ee")
    mk_locale: str | None = None  # None = gateway default ("et")

    # Public URLs
    public_api_url: str = "http://localhost:8000"  # Base for the webhook notification URL
    self_service_url: str = "https://minu.tarksober.ee"  # Buyer-facing portal

    # Licensing
    purchase_reference_prefix: str = "TS"
    license_key_max_attempts: int = 5
    payment_methods_cache_ttl_seconds: int = 12 * 60 * 60

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if the store or the payment gateway
        credentials are missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.mk_shop_id:
            errors.append("MK_SHOP_ID is required but empty or missing")
        if not self.mk_secret_key:
            errors.append("MK_SECRET_KEY is required but empty or missing")

        if self.license_key_max_attempts < 1:
            errors.append("LICENSE_KEY_MAX_ATTEMPTS must be at least 1")

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
    def mk_base_url(self) -> str:
        """Maksekeskus API base URL for the configured environment."""
        if self.mk_env == "live":
            return "https://api.maksekeskus.ee"
        return "https://api.test.maksekeskus.ee"

    @property
    def notification_url(self) -> str:
        """Webhook URL the gateway calls with payment status updates."""
        return f"{self.public_api_url.rstrip('/')}/v1/webhooks/maksekeskus"


# Global settings instance - validates at import time
settings = Settings()
