"""
Runtime configuration. Every field maps to an upper-case environment
variable (or a `.env` entry); explicit constructor arguments always
win over these defaults.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Logging
    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Level name for the docforge logger",
    )
    log_timezone: Optional[str] = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="Timezone name for log timestamps, e.g. 'Europe/Berlin'. Defaults to system local time.",
    )
    log_dir: str = Field(
        "logs",
        alias="LOG_DIR",
        description="Directory for the daily application log files",
    )

    # Optional durable storage
    redis_url: str = Field(
        "redis://localhost:6379/0",
        alias="REDIS_URL",
        description="Redis connection URL used by RedisBlobStore, e.g. 'redis://redis:6379/0'",
    )

    # Response cache
    cache_default_ttl: int = Field(
        3600, alias="CACHE_DEFAULT_TTL", description="Default cache entry TTL in seconds", gt=0
    )
    cache_max_size_bytes: int = Field(
        100 * 1024 * 1024,
        alias="CACHE_MAX_SIZE_BYTES",
        description="Upper bound on the cumulative size of cached values",
        gt=0,
    )
    cache_cleanup_interval: float = Field(
        300.0,
        alias="CACHE_CLEANUP_INTERVAL",
        description="Seconds between background sweeps of expired cache entries",
        gt=0,
    )

    # Session store
    session_timeout_seconds: float = Field(
        3600.0,
        alias="SESSION_TIMEOUT_SECONDS",
        description="Idle age after which cleanup_expired_sessions evicts a session",
        gt=0,
    )

    # Provider router
    router_request_timeout: float = Field(
        120.0,
        alias="ROUTER_REQUEST_TIMEOUT",
        description="Per backend call timeout in seconds",
        gt=0,
    )
    router_rate_limit_retries: int = Field(
        3,
        alias="ROUTER_RATE_LIMIT_RETRIES",
        description="Retries against the same candidate after a rate-limit error",
        ge=0,
    )
    router_backoff_base: float = Field(
        1.0,
        alias="ROUTER_BACKOFF_BASE",
        description="Base delay (seconds) of the exponential rate-limit backoff",
        ge=0,
    )
    router_latency_window: int = Field(
        20,
        alias="ROUTER_LATENCY_WINDOW",
        description="Number of latency samples kept per candidate",
        gt=0,
    )

    # Iteration loop defaults
    iteration_max_iterations: int = Field(5, alias="ITERATION_MAX_ITERATIONS", ge=1)
    iteration_convergence_threshold: float = Field(
        0.95, alias="ITERATION_CONVERGENCE_THRESHOLD", ge=0.0, le=1.0
    )
    iteration_improvement_threshold: float = Field(
        0.1, alias="ITERATION_IMPROVEMENT_THRESHOLD", ge=0.0
    )
    iteration_timeout_ms: int = Field(300_000, alias="ITERATION_TIMEOUT_MS", gt=0)
    iteration_max_step_retries: int = Field(1, alias="ITERATION_MAX_STEP_RETRIES", ge=0)

    # Quality score weighting
    quality_weight_rules: float = Field(
        0.6,
        alias="QUALITY_WEIGHT_RULES",
        description="Weight of the rule pass rate in the quality score",
        ge=0.0,
    )
    quality_weight_completeness: float = Field(
        0.4,
        alias="QUALITY_WEIGHT_COMPLETENESS",
        description="Weight of section completeness in the quality score",
        ge=0.0,
    )


settings = Settings()
