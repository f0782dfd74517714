"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SnapshotBackend(str, Enum):
    """Where the published risk summary lives."""

    MEMORY = "memory"
    REDIS = "redis"


class PostgresSettings(BaseSettings):
    """PostgreSQL database configuration."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    user: str = "contractor_os"
    password: SecretStr = SecretStr("contractor_os_dev_password")
    db: str = "contractor_os"
    pool_size: int = 10
    max_overflow: int = 20

    @property
    def async_url(self) -> str:
        """Generate async SQLAlchemy connection URL."""
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis cache configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = "localhost"
    port: int = 6379
    password: SecretStr = SecretStr("contractor_os_redis_password")
    db: int = 0

    @property
    def url(self) -> str:
        """Generate Redis connection URL."""
        pwd = self.password.get_secret_value()
        return f"redis://:{pwd}@{self.host}:{self.port}/{self.db}"


class ClassificationSettings(BaseSettings):
    """Worker-classification engine configuration."""

    model_config = SettingsConfigDict(env_prefix="CLASSIFICATION_")

    # Trailing window used for derivation, factor applicability and rollups
    trailing_window_days: int = Field(default=90, ge=1)

    # History queries
    history_default_limit: int = Field(default=10, ge=1)
    history_max_limit: int = Field(default=100, ge=1)

    # Dashboard
    top_risk_limit: int = Field(default=10, ge=1)

    # Batch reassessment
    batch_max_concurrent: int = Field(default=8, ge=1)
    batch_time_budget_seconds: float = Field(default=900.0, gt=0)
    # Lower bound on the aggregate rebuild when the fan-out used up the budget
    batch_rebuild_min_seconds: float = Field(default=60.0, gt=0)

    # Sub-score combination weights
    irs_weight: float = Field(default=0.4, ge=0, le=1)
    dol_weight: float = Field(default=0.3, ge=0, le=1)
    abc_weight: float = Field(default=0.3, ge=0, le=1)

    # Aggregate publication
    snapshot_backend: SnapshotBackend = SnapshotBackend.REDIS
    snapshot_key_prefix: str = "classification:risk_summary"
    snapshot_grace_seconds: int = Field(default=300, ge=1)

    @model_validator(mode="after")
    def check_weights(self) -> "ClassificationSettings":
        """Combination weights must sum to 1."""
        total = self.irs_weight + self.dol_weight + self.abc_weight
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"irs/dol/abc weights must sum to 1.0, got {total:.4f}")
        if self.history_default_limit > self.history_max_limit:
            raise ValueError("history_default_limit cannot exceed history_max_limit")
        return self


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO

    # Database connections
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)

    # Scoring engine
    classification: ClassificationSettings = Field(default_factory=ClassificationSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
