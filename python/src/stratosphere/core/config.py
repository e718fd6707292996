"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables with validation.
"""

from typing import List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Environment
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")

    # Database (Supabase Postgres in production, SQLite for local runs)
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./stratosphere.db",
        description="Async SQLAlchemy connection URL"
    )

    # Application
    APP_URL: str = Field(default="http://localhost:3000")
    API_V1_PREFIX: str = Field(default="/api/v1")
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:3001"]
    )

    # Monitoring
    SENTRY_DSN: str = Field(default="")

    # Google Search Console OAuth
    GSC_CLIENT_ID: str = Field(default="", description="Google OAuth client ID")
    GSC_CLIENT_SECRET: str = Field(default="", description="Google OAuth client secret")
    OAUTH_STATE_SECRET: str = Field(
        default="development-oauth-state-secret-change-me",
        description="HMAC secret for signing OAuth state tokens (min 32 chars)"
    )
    OAUTH_STATE_MAX_AGE_SECONDS: int = Field(default=3600)

    # Provider selection (fixed once at startup)
    GSC_MOCK_MODE: bool = Field(default=True)
    GSC_FALLBACK_TO_MOCK: bool = Field(
        default=True,
        description="Serve mock data for tenants without a valid token"
    )
    GSC_REQUEST_TIMEOUT_SECONDS: float = Field(default=30.0)

    # Cache
    GSC_CACHE_TTL_HOURS: float = Field(default=24.0)
    CACHE_SWEEP_INTERVAL_MINUTES: int = Field(default=60)

    # Quota
    GSC_DAILY_QUOTA: int = Field(default=25000)
    GSC_QUOTA_THRESHOLD: int = Field(default=10)
    GSC_QUOTA_COOLDOWN_SECONDS: float = Field(default=300.0)
    QUOTA_RETENTION_DAYS: int = Field(default=30)

    # Backoff
    GSC_MAX_RETRIES: int = Field(default=5)
    GSC_BACKOFF_MIN_DELAY_SECONDS: float = Field(default=60.0)
    GSC_BACKOFF_MAX_DELAY_SECONDS: float = Field(default=3600.0)
    GSC_STAGGER_DELAY_SECONDS: float = Field(default=2.0)

    # Circuit breaker
    GSC_CIRCUIT_FAILURE_THRESHOLD: int = Field(default=5)
    GSC_CIRCUIT_RESET_TIMEOUT_SECONDS: float = Field(default=300.0)
    GSC_CIRCUIT_RESTART_WINDOW_ON_TRIAL_FAILURE: bool = Field(default=False)

    # Tokens
    GSC_TOKEN_EXPIRY_BUFFER_SECONDS: int = Field(default=300)

    @field_validator("OAUTH_STATE_SECRET")
    @classmethod
    def validate_oauth_state_secret(cls, v: str) -> str:
        """Ensure the state signing secret is at least 32 characters."""
        if len(v) < 32:
            raise ValueError("OAUTH_STATE_SECRET must be at least 32 characters")
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @property
    def gsc_redirect_uri(self) -> str:
        """OAuth callback URL registered with Google."""
        return f"{self.APP_URL.rstrip('/')}{self.API_V1_PREFIX}/gsc/oauth/callback"

    @property
    def has_gsc_credentials(self) -> bool:
        """Whether the GSC OAuth client is configured."""
        return bool(self.GSC_CLIENT_ID and self.GSC_CLIENT_SECRET)


# Global settings instance
settings = Settings()
