"""Configuration management using Pydantic Settings.

Loads configuration from environment variables with .env file support.
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration."""

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    environment: str = "development"

    # Dashboard Configuration
    dashboard_api_key: Optional[str] = None

    # GlitchTip Error Monitoring
    glitchtip_dsn: Optional[str] = None

    # Cache Configuration ("redis" or "memory")
    cache_backend: str = "redis"
    cache_key_prefix: str = "fulfillment:"
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_db: int = 0

    # Firestore Order Store
    google_credentials_path: Optional[str] = None
    firestore_project_id: Optional[str] = None
    orders_collection: str = "orders"
    pack_errors_collection: str = "pack_errors"

    # Fill Rate Endpoint
    fill_rate_url: Optional[str] = None
    fill_rate_timeout_seconds: float = 10.0

    # Order Query
    order_query_timeout_seconds: float = 30.0
    order_lookback_days: int = 45
    order_fallback_days: int = 30
    order_fallback_limit: int = 10000

    # Daily Refresh
    refresh_scheduler_enabled: bool = True

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Create a global settings instance
settings = Settings()
