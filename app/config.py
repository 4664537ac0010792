"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings

DEFAULT_EXCLUDED_CATEGORIES = (
    "ATM Withdrawal,Bank Transfer,Internal Transfer,Tax Payment,"
    "Loan Payment,Fee,Refund,Credit Card Payment"
)


class Settings(BaseSettings):
    """Application configuration.

    Values are read from environment variables (or a `.env` file).
    """

    # Supabase
    supabase_url: str
    supabase_anon_key: str
    supabase_service_key: str
    supabase_http_max_connections: int = 100
    supabase_http_max_keepalive_connections: int = 50
    supabase_postgrest_timeout_seconds: int = 30

    # App
    app_name: str = "Kahan Vault API"
    app_version: str = "1.0.0"
    environment: str = "development"
    log_level: str = "INFO"
    allowed_origins: str = "http://localhost:3000"
    enable_scheduler: bool = True
    internal_api_token: str = ""

    # Scheduling
    timezone: str = "UTC"
    sweep_hour: int = 6
    order_sync_interval_minutes: int = 15

    # Vault policy
    default_currency: str = "EUR"
    excluded_categories: str = DEFAULT_EXCLUDED_CATEGORIES
    default_sweep_day: int = 1
    default_monthly_cap: str = "50"
    default_minimum_threshold: str = "10"
    max_monthly_cap: str = "500"
    default_risk_profile: str = "balanced"

    # Providers
    broker_provider: str = "sandbox"
    broker_base_url: str = "https://broker-api.sandbox.alpaca.markets"
    broker_api_key: str = ""
    broker_api_secret: str = ""
    payout_provider: str = "sandbox"
    provider_timeout_seconds: int = 10
    order_pending_sla_minutes: int = 60
    withdrawal_settlement_sla_hours: int = 72

    # Per-user serialization
    user_lock_ttl_seconds: int = 30
    user_lock_attempts: int = 5
    user_lock_retry_delay_ms: int = 50

    # Performance tuning
    auth_token_cache_ttl_seconds: int = 15
    auth_token_cache_max_entries: int = 1024
    slow_request_log_threshold_ms: int = 0
    slow_query_log_threshold_ms: int = 0

    @property
    def is_production(self) -> bool:
        """Return True when running in production."""
        return self.environment == "production"

    @property
    def origins_list(self) -> list[str]:
        """Parse comma-separated ALLOWED_ORIGINS into a list."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def excluded_categories_list(self) -> list[str]:
        """Parse comma-separated EXCLUDED_CATEGORIES into a list."""
        return [c.strip() for c in self.excluded_categories.split(",") if c.strip()]

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()  # type: ignore[call-arg]
