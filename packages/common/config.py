"""
Application configuration using Pydantic Settings
Reads from environment variables and .env file
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Hard ceiling on products per AI call, protects the provider quota
AI_BATCH_SIZE_CEILING = 50

DEFAULT_KEYWORDS_PATH = (
    Path(__file__).resolve().parent.parent / "domain" / "classification" / "fodmap_keywords.yaml"
)


class Settings(BaseSettings):
    """Application settings from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    db_user: str = Field(default="fodmap", alias="DB_USER")
    db_password: str = Field(default="fodmap", alias="DB_PASSWORD")
    db_name: str = Field(default="fodmap", alias="DB_NAME")
    db_host: str = Field(default="postgres", alias="DB_HOST")
    db_port: int = Field(default=5432, alias="DB_PORT")
    database_url_override: Optional[str] = Field(default=None, alias="DATABASE_URL")

    @property
    def database_url(self) -> str:
        """Construct database URL (DATABASE_URL wins when set)"""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis / Celery
    redis_url: str = Field(default="redis://redis:6379/0", alias="REDIS_URL")
    celery_broker_url: str = Field(default="redis://redis:6379/1", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(default="redis://redis:6379/2", alias="CELERY_RESULT_BACKEND")

    # Application
    environment: str = Field(default="production", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    # Classifier selection: rules | ai | cached_ai
    classifier: str = Field(default="cached_ai", alias="FODMAP_CLASSIFIER")
    keywords_path: str = Field(default=str(DEFAULT_KEYWORDS_PATH), alias="FODMAP_KEYWORDS_PATH")

    # Anthropic (AI classifier)
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    ai_model: str = Field(default="claude-3-5-haiku-latest", alias="FODMAP_AI_MODEL")
    ai_max_tokens: int = Field(default=2048, ge=64, alias="FODMAP_AI_MAX_TOKENS")
    ai_timeout_seconds: float = Field(default=60.0, gt=0, alias="FODMAP_AI_TIMEOUT_SECONDS")
    ai_batch_size: int = Field(default=AI_BATCH_SIZE_CEILING, ge=1, alias="FODMAP_AI_BATCH_SIZE")

    # External API rate limit (N calls per window)
    rate_limit_max_calls: int = Field(default=15, ge=1, alias="FODMAP_RATE_LIMIT_MAX_CALLS")
    rate_limit_window_seconds: int = Field(default=60, ge=1, alias="FODMAP_RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_wait_attempts: int = Field(default=12, ge=0, alias="FODMAP_RATE_LIMIT_WAIT_ATTEMPTS")
    rate_limit_poll_seconds: float = Field(default=5.0, ge=0, alias="FODMAP_RATE_LIMIT_POLL_SECONDS")

    # Classification cache
    cache_ttl_days: int = Field(default=30, ge=1, alias="FODMAP_CACHE_TTL_DAYS")

    @property
    def cache_ttl_seconds(self) -> int:
        """Cache TTL in seconds"""
        return self.cache_ttl_days * 24 * 60 * 60

    # Background classification job
    job_batch_size: int = Field(default=50, ge=1, alias="FODMAP_JOB_BATCH_SIZE")
    job_continuation_delay_seconds: float = Field(default=2.0, ge=0, alias="FODMAP_JOB_CONTINUATION_DELAY_SECONDS")
    job_lock_ttl_seconds: int = Field(default=300, ge=10, alias="FODMAP_JOB_LOCK_TTL_SECONDS")
    schedule_interval_seconds: float = Field(default=120.0, gt=0, alias="FODMAP_SCHEDULE_INTERVAL_SECONDS")

    # Monitoring
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")

    # Development
    debug: bool = Field(default=False, alias="DEBUG")

    @validator("log_level")
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @validator("log_format")
    def validate_log_format(cls, v):
        """Validate log renderer"""
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"LOG_FORMAT must be one of {valid_formats}")
        return v.lower()

    @validator("environment")
    def validate_environment(cls, v):
        """Validate environment"""
        valid_envs = ["development", "staging", "production", "test"]
        if v.lower() not in valid_envs:
            raise ValueError(f"ENVIRONMENT must be one of {valid_envs}")
        return v.lower()

    @validator("classifier")
    def validate_classifier(cls, v):
        """Validate classifier selection"""
        valid_classifiers = ["rules", "ai", "cached_ai"]
        if v.lower() not in valid_classifiers:
            raise ValueError(f"FODMAP_CLASSIFIER must be one of {valid_classifiers}")
        return v.lower()

    @validator("ai_batch_size")
    def validate_ai_batch_size(cls, v):
        """Clamp AI batch size to the hard ceiling"""
        return min(v, AI_BATCH_SIZE_CEILING)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
