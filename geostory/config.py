# geostory/config.py
"""
Centralized application configuration using pydantic-settings.

All settings are read from environment variables or .env file.
Limits, retry policy and sweep schedule can be tuned from .env - no code changes needed.
"""

import os
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# --- Paths (computed, not from env) ---
PROJECT_ROOT: str = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Hard ceiling for MAX_STATE_BYTES, whatever .env says
STATE_BYTES_CEILING = 10_000_000

SUPPORTED_WRITE_CODECS = {"plain", "br64", "gz64"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Priority: environment variables > .env file > defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unknown env vars
    )

    # --- Server ---
    HOST: str = Field(
        default="0.0.0.0",
        description="Server bind host"
    )
    PORT: int = Field(
        default=8080,
        description="Server bind port"
    )
    ENVIRONMENT: str = Field(
        default="development",
        description="Deployment environment name"
    )
    ALLOW_EDITOR_NETWORK: bool = Field(
        default=False,
        description="Allow publishing from non-loopback clients"
    )

    # --- Debug / Logging ---
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    LOGS_PATH: str = Field(
        default=os.path.join(PROJECT_ROOT, "logs"),
        description="Directory for access/error log files"
    )

    # --- Database ---
    DB_PATH: str = Field(
        default=os.path.join(PROJECT_ROOT, "geostory.db"),
        description="SQLite database file"
    )
    DB_BUSY_TIMEOUT_MS: int = Field(
        default=10_000, ge=0,
        description="SQLite busy_timeout before the engine gives up on a lock"
    )
    DB_POOL_SIZE: int = Field(
        default=1, ge=1,
        description="Pooled connections (1 = single shared connection)"
    )
    DB_POOL_TIMEOUT_SECONDS: float = Field(
        default=30.0, gt=0,
        description="Wait for a pooled connection before reporting the store busy"
    )
    DB_WRITE_ATTEMPTS: int = Field(
        default=3, ge=1,
        description="Attempts for writes failing with SQLITE_BUSY"
    )
    RETRY_BASE_DELAY_MS: int = Field(
        default=200, ge=0,
        description="Base backoff per attempt for busy writes"
    )
    RETRY_JITTER_MS: int = Field(
        default=200, ge=0,
        description="Random jitter added to each busy backoff"
    )

    # --- Story limits ---
    MAX_LAYERS: int = Field(default=3, ge=1)
    MAX_TITLE_LEN: int = Field(default=160, ge=1)
    MAX_STATE_BYTES: int = Field(
        default=2_000_000, ge=1,
        description="Limit on the ENCODED (compressed + base64) story size"
    )
    DEFAULT_TTL_DAYS: float = Field(default=7)
    MIN_TTL_DAYS: float = Field(default=1)
    MAX_TTL_DAYS: float = Field(default=60)

    # --- Identifiers / codec ---
    ID_LENGTH: int = Field(default=7, ge=5, le=20)
    ID_COLLISION_RETRIES: int = Field(default=2, ge=0)
    STORY_CODEC: str = Field(
        default="br64",
        description="Encoding used for new stories (plain, br64, gz64)"
    )
    BROTLI_QUALITY: int = Field(default=5, ge=0, le=11)

    # --- Housekeeping ---
    SWEEP_ENABLED: bool = Field(default=True)
    SWEEP_INTERVAL_SECONDS: float = Field(default=24 * 3600, gt=0)
    SWEEP_ATTEMPTS: int = Field(default=3, ge=1)

    # --- Rate limiting (publish only) ---
    RATE_WINDOW_SECONDS: float = Field(default=60, gt=0)
    RATE_MAX_REQUESTS: int = Field(default=30, ge=1)

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v_upper

    @field_validator("STORY_CODEC")
    @classmethod
    def validate_story_codec(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in SUPPORTED_WRITE_CODECS:
            raise ValueError(f"STORY_CODEC must be one of {SUPPORTED_WRITE_CODECS}")
        return v_lower

    @field_validator("MAX_STATE_BYTES")
    @classmethod
    def validate_max_state_bytes(cls, v: int) -> int:
        if v > STATE_BYTES_CEILING:
            raise ValueError(f"MAX_STATE_BYTES cannot exceed {STATE_BYTES_CEILING}")
        return v

    @model_validator(mode="after")
    def validate_ttl_bounds(self) -> "Settings":
        if not (0 < self.MIN_TTL_DAYS <= self.DEFAULT_TTL_DAYS <= self.MAX_TTL_DAYS):
            raise ValueError("TTL bounds must satisfy 0 < MIN_TTL_DAYS <= DEFAULT_TTL_DAYS <= MAX_TTL_DAYS")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance (singleton pattern)."""
    return Settings()
