import os
import sys

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _should_load_env_file() -> str | None:
    """Determine if .env should be loaded.

    Local development loads `.env` automatically. Tests and CI never do, so
    thresholds asserted by the test suite are always the documented defaults.
    """
    if any("pytest" in str(x) for x in sys.argv if x):
        return None
    if os.environ.get("CI") in ("1", "true", "True"):
        return None
    return ".env"


class Settings(BaseSettings):
    # Environment configuration
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: 'development', 'staging', or 'production'",
    )
    LOG_DIR: str | None = Field(
        default="logs",
        description="Directory for the rotating log file, empty to disable",
    )

    DATABASE_URL: str = "sqlite:///./data/fraud_engine.db"

    # Database connection pool settings
    DB_POOL_SIZE: int = Field(
        default=5,
        description="Number of persistent connections in pool",
    )
    DB_MAX_OVERFLOW: int = Field(
        default=10,
        description="Extra connections when pool exhausted",
    )
    DB_POOL_TIMEOUT: int = Field(
        default=30,
        description="Seconds to wait for connection from pool",
    )
    DB_POOL_RECYCLE: int = Field(
        default=1800,
        description="Recycle connections after N seconds (30 min default)",
    )

    # Error reporting
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN, Sentry is disabled when empty",
    )
    SENTRY_RELEASE: str = Field(default="unknown")
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.2, ge=0.0, le=1.0)

    # Transition notifications (ntfy)
    NTFY_URL: str = Field(
        default="",
        description="Ntfy server URL (internal Docker: http://ntfy:80)",
    )
    NTFY_TOPIC_PREFIX: str = Field(
        default="trust-safety",
        description="Prefix for ntfy topics, e.g. trust-safety-reports",
    )
    NTFY_AUTH_TOKEN: str = Field(
        default="",
        description="Bearer token for a protected ntfy server",
    )
    NTFY_ENABLED: bool = Field(
        default=False,
        description="Enable push notifications for case transitions",
    )
    NTFY_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)

    # Identity used for automatic enforcement actions
    SYSTEM_ACTOR_ID: int = Field(
        default=0,
        description="User ID recorded as actor for system-issued suspensions",
    )

    # Detection: rapid listing
    RAPID_LISTING_WINDOW_HOURS: int = Field(default=24, ge=1)
    RAPID_LISTING_THRESHOLD: int = Field(
        default=10,
        ge=1,
        description="Listings per window above which the rule fires",
    )

    # Detection: price manipulation (deviation ratio bands)
    PRICE_RATIO_LOW: float = Field(default=3.0, gt=1.0)
    PRICE_RATIO_MEDIUM: float = Field(default=5.0, gt=1.0)
    PRICE_RATIO_HIGH: float = Field(default=10.0, gt=1.0)
    PRICE_RATIO_CRITICAL: float = Field(default=20.0, gt=1.0)

    # Detection: duplicate images
    IMAGE_MATCH_MAX_DISTANCE: int = Field(
        default=4,
        ge=0,
        le=16,
        description="Max Hamming distance between 64-bit fingerprints to count as a match",
    )

    # Verification thresholds
    VERIFICATION_REJECT_CONFIDENCE: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="A failing check at or above this confidence rejects the listing",
    )
    VERIFICATION_TRUST_CONFIDENCE: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="All checks must pass at or above this confidence to verify",
    )
    VERIFICATION_MIN_ACCOUNT_AGE_DAYS: int = Field(default=7, ge=0)

    # Automatic enforcement
    AUTO_SUSPEND_RESOLVED_REPORTS: int = Field(default=3, ge=1)
    AUTO_SUSPEND_RISK_SCORE: int = Field(default=80, ge=0, le=100)
    AUTO_SUSPEND_REPORT_DAYS: int = Field(default=7, ge=1)
    AUTO_SUSPEND_CRITICAL_HOURS: int = Field(default=24, ge=1)

    # Risk scoring
    RISK_SUSPENSION_HALF_LIFE_DAYS: float = Field(default=90.0, gt=0)

    # Background detection
    DETECTION_SCHEDULER_ENABLED: bool = Field(
        default=True,
        description="Run detection rules off the caller thread; off runs them synchronously (tests, scripts)",
    )

    @field_validator("LOG_DIR", mode="before")
    @classmethod
    def parse_log_dir(cls, v: str | None) -> str | None:
        """Treat an empty LOG_DIR as disabled."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    model_config = SettingsConfigDict(
        env_file=_should_load_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def get_settings() -> Settings:
    """Get the settings instance (for dependency injection)."""
    return settings
