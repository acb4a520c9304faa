"""Configuration management for Cluster Lens."""

import re
from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cluster_lens.constants import (
    CACHE_MAX_AGE_SECONDS,
    DEFAULT_ADDRESS_PATTERNS,
    DEFAULT_COLLECTION_FIELDS,
    HISTORY_LIMIT,
    MAX_REQUESTS,
    SINK_TIMEOUT_SECONDS,
    SWEEP_INTERVAL_SECONDS,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLUSTER_LENS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Correlation cache
    cache_max_age_seconds: float = Field(
        default=CACHE_MAX_AGE_SECONDS,
        description="Seconds a cached exchange stays alive before the sweep removes it",
    )
    sweep_interval_seconds: float = Field(
        default=SWEEP_INTERVAL_SECONDS,
        description="Seconds between cache sweeps",
    )

    # Classification and extraction
    address_patterns: Annotated[
        list[str],
        Field(
            default_factory=lambda: list(DEFAULT_ADDRESS_PATTERNS),
            description="Ordered regexes that mark an address as GraphQL traffic",
        ),
    ]
    collection_fields: Annotated[
        list[str],
        Field(
            default_factory=lambda: list(DEFAULT_COLLECTION_FIELDS),
            description="Ordered field names holding the cluster connection",
        ),
    ]

    # Bounded in-memory logs
    max_requests: int = Field(default=MAX_REQUESTS, description="Request log capacity")
    history_limit: int = Field(default=HISTORY_LIMIT, description="Payload history capacity")

    # Rendering sink (optional)
    sink_url: str | None = Field(default=None, description="Webhook URL for published graphs")
    sink_timeout_seconds: float = Field(
        default=SINK_TIMEOUT_SECONDS, description="Webhook request timeout"
    )

    @field_validator("cache_max_age_seconds", "sweep_interval_seconds", "sink_timeout_seconds")
    @classmethod
    def _must_be_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("max_requests", "history_limit")
    @classmethod
    def _capacity_must_be_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("address_patterns")
    @classmethod
    def _patterns_must_compile(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"invalid address pattern {pattern!r}: {exc}") from exc
        return value

    @field_validator("collection_fields")
    @classmethod
    def _fields_not_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one collection field is required")
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
