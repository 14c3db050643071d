"""Configuration management for questline."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="data/questline.db", description="Path to the SQLite database file")

    # Session Tokens
    secret_key: str | None = Field(default=None, description="Secret used to sign bearer tokens")
    token_max_age_seconds: int = Field(default=7 * 24 * 3600, description="Bearer token lifetime in seconds")

    # Encrypted secrets (AI provider credentials at rest)
    encryption_key: str | None = Field(
        default=None, description="Process-wide key for AES-256-GCM encryption of stored API keys"
    )

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Redis Configuration (optional)
    redis_url: str | None = Field(default=None, description="Redis connection URL (e.g., redis://localhost:6379)")

    environment: str = Field(default="development", description="Deployment environment name")
    frontend_url: str = Field(default="http://localhost:5173", description="Allowed CORS origin")

    # Streaks
    streak_timezone: str | None = Field(
        default=None,
        description="IANA timezone used to decide calendar days for streaks (server local time when unset)",
    )

    # AI Verification
    ai_verification_timeout_seconds: float = Field(
        default=30.0, description="Upper bound on a single AI judge call, image download included"
    )

    # API Rate Limiting
    api_rate_limit_per_window: int = Field(default=1000, description="Requests allowed per client per window")
    api_rate_limit_window_seconds: int = Field(default=15 * 60, description="Rate limit window length in seconds")

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30

    # Cache TTLs
    CACHE_TTL_LEADERBOARD_SECONDS: int = 60  # 1 minute for leaderboard cache

    # XP & Streaks
    DEFAULT_BASE_XP: int = 50
    STREAK_BONUS_PER_DAY: int = 5
    STREAK_BONUS_CAP: int = 100
    MIN_XP_MULTIPLIER: float = 1.0
    MAX_XP_MULTIPLIER: float = 2.0

    # Verification
    DEFAULT_CONFIDENCE_THRESHOLD: float = 0.8
    MODERATOR_ROLES: frozenset[str] = frozenset({"owner", "admin", "moderator"})

    # Messaging
    MESSAGE_EDIT_WINDOW_SECONDS: int = 15 * 60
    MESSAGE_PAGE_SIZE: int = 50
    NOTIFICATION_PREVIEW_LENGTH: int = 50

    # Leaderboard
    LEADERBOARD_DEFAULT_LIMIT: int = 50

    # Pagination Defaults
    DEFAULT_PER_PAGE_LIMIT: int = 100  # Default pagination limit for list queries

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10  # Maximum connections in Redis connection pool


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
