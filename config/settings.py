"""
NYC Open Data MCP Server - Configuration Settings

This module loads configuration from environment variables using Pydantic Settings.
It provides type-safe access to all configuration values and validates them on startup.

Key Features:
- Type-safe configuration with validation
- Automatic loading from .env file
- Socrata app token lookup under several common variable names
- Reliability tuning (hard caps, cache TTLs, retry backoff) exposed as plain data
"""

from typing import Dict, List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.cache import CacheTTL
from core.rate_limits import HardCaps
from core.retry import RetryPolicy


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden by environment variables.
    The .env file is automatically loaded if present.
    """

    # ========================================================================
    # Application Configuration
    # ========================================================================
    environment: str = Field(
        default="development",
        description="Environment: development, staging, or production"
    )

    api_host: str = Field(
        default="0.0.0.0",
        description="Host to bind the HTTP API server to"
    )

    api_port: int = Field(
        default=8000,
        description="Port to bind the HTTP API server to"
    )

    api_reload: bool = Field(
        default=True,
        description="Auto-reload on code changes (dev only)"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="Comma-separated list of allowed CORS origins"
    )

    # ========================================================================
    # Socrata API Configuration
    # ========================================================================
    nyc_data_api_base_url: str = Field(
        default="https://data.cityofnewyork.us/resource",
        description="NYC Open Data (Socrata) resource base URL"
    )

    socrata_app_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "SOCRATA_APP_TOKEN",
            "NYC_OPEN_DATA_APP_TOKEN",
            "NYC_APP_TOKEN",
        ),
        description="Socrata app token (optional, raises rate limits ~50x)"
    )

    request_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single Socrata HTTP request"
    )

    # ========================================================================
    # Hard Caps (pre-flight validation)
    # ========================================================================
    max_days: int = Field(default=365, description="Largest allowed look-back window")
    max_limit: int = Field(default=10000, description="Largest raw result limit")
    max_aggregated_limit: int = Field(
        default=50000,
        description="Largest limit for server-side aggregated queries"
    )
    default_limit: int = Field(default=100, description="Default result limit")
    prefer_aggregation_over: int = Field(
        default=1000,
        description="Suggest aggregation when a query expects more rows than this"
    )

    # ========================================================================
    # Query Cache
    # ========================================================================
    cache_default_ttl_seconds: float = Field(default=300.0, description="Default TTL (5 min)")
    cache_short_ttl_seconds: float = Field(default=60.0, description="TTL for volatile data")
    cache_long_ttl_seconds: float = Field(default=1800.0, description="TTL for stable data")
    cache_max_size: int = Field(default=1000, description="Maximum cached queries")

    # ========================================================================
    # Retry / Rate Tracking
    # ========================================================================
    retry_max_attempts: int = Field(default=3, description="Attempts per request")
    retry_base_delay_seconds: float = Field(default=1.0, description="First backoff delay")
    retry_max_delay_seconds: float = Field(default=30.0, description="Backoff ceiling")
    retry_backoff_factor: float = Field(default=2.0, description="Exponential base")
    retry_jitter_fraction: float = Field(default=0.1, description="+/- random jitter")
    rate_window_seconds: float = Field(
        default=60.0,
        description="Window for the advisory requests-per-minute counter"
    )

    # ========================================================================
    # Model Configuration
    # ========================================================================
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ========================================================================
    # Computed Properties
    # ========================================================================
    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def has_api_token(self) -> bool:
        return bool(self.socrata_app_token)

    @property
    def api_headers(self) -> Dict[str, str]:
        """Headers for Socrata requests, with the app token when configured."""
        if self.socrata_app_token:
            return {"X-App-Token": self.socrata_app_token}
        return {}

    @property
    def hard_caps(self) -> HardCaps:
        return HardCaps(
            max_days=self.max_days,
            max_limit=self.max_limit,
            max_aggregated_limit=self.max_aggregated_limit,
            default_limit=self.default_limit,
            prefer_aggregation_over=self.prefer_aggregation_over,
        )

    @property
    def cache_ttls(self) -> CacheTTL:
        return CacheTTL(
            short=self.cache_short_ttl_seconds,
            default=self.cache_default_ttl_seconds,
            long=self.cache_long_ttl_seconds,
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay_seconds,
            max_delay=self.retry_max_delay_seconds,
            backoff_factor=self.retry_backoff_factor,
            jitter_fraction=self.retry_jitter_fraction,
        )

    # ========================================================================
    # Validators
    # ========================================================================
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v_upper

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        allowed = ["development", "staging", "production"]
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v_lower

    @field_validator("retry_max_attempts", "cache_max_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


# ============================================================================
# Global Settings Instance
# ============================================================================
# Entry points import this; the core modules never read it directly.

try:
    settings = Settings()
except Exception as e:
    print(f"Error loading configuration: {e}")
    print("Check the values in your .env file")
    raise


def print_settings() -> None:
    """Print current settings (useful for debugging)."""
    print("\n" + "=" * 70)
    print("NYC Open Data MCP Server Configuration")
    print("=" * 70)
    print(f"Environment:        {settings.environment}")
    print(f"API Host:           {settings.api_host}:{settings.api_port}")
    print(f"Log Level:          {settings.log_level}")
    print(f"Socrata Base URL:   {settings.nyc_data_api_base_url}")
    print(f"App Token:          {'configured' if settings.has_api_token else 'not set'}")
    print(f"Cache:              {settings.cache_max_size} entries, "
          f"{settings.cache_default_ttl_seconds:.0f}s default TTL")
    print(f"Retry:              {settings.retry_max_attempts} attempts")
    print("=" * 70 + "\n")


if __name__ == "__main__":
    print_settings()
