"""Central environment-driven settings for the payment service.

The process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`); the core never reads `settings` directly and
instead receives the policy objects built from it in `main`.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "payments"
    environment: Literal["development", "staging", "production", "test"] = "development"
    log_level: str = "INFO"
    database_dsn: str
    webhook_token: str = Field(min_length=32)
    checkout_base_url: str = "https://checkout.example.com/pay"
    idempotency_ttl_seconds: int = Field(default=86400, gt=0)
    idempotency_strict_persist: bool = False
    idempotency_backend: Literal["database", "redis"] = "database"
    redis_url: str = "redis://redis:6379/0"
    batch_max_concurrent_workers: int = Field(default=5, ge=1, le=20)
    batch_retry_attempts: int = Field(default=3, ge=1, le=10)
    batch_retry_delay_ms: int = Field(default=1000, ge=100, le=10000)
    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
