"""
Configuration management for Routewise.

Supports environment variables, .env files, and YAML configuration.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RegistrySettings(BaseSettings):
    """Executor registry and probe settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEWISE_REGISTRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    probe_interval: float = Field(default=5.0, gt=0)
    probe_timeout: float = Field(default=2.0, gt=0)
    eviction_grace: float = Field(default=60.0, ge=0)

    # Raw descriptors, validated one by one at registration time
    executors: list[dict[str, Any]] = Field(default_factory=list)


class ClassifierSettings(BaseSettings):
    """Task classifier settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEWISE_CLASSIFIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    endpoint: str | None = None
    api_key: SecretStr | None = None
    timeout: float = Field(default=0.3, gt=0)

    fallback_domain: str = "general"
    fallback_action: str = "general"
    fallback_confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class PolicySettings(BaseSettings):
    """Policy store settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEWISE_POLICY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Path to a YAML/JSON policy file, or an http(s) URL of a policy service
    source: str | None = None
    cache_ttl: float = Field(default=30.0, ge=0)
    fetch_timeout: float = Field(default=1.0, gt=0)

    # Inline policies used when no source is configured
    policies: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def is_remote(self) -> bool:
        return bool(self.source) and self.source.startswith(("http://", "https://"))


class ScoringSettings(BaseSettings):
    """Scoring engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEWISE_SCORING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    checkpoint_path: str | None = None
    missing_ability_penalty: float = Field(default=1.0, ge=0)

    # Cost divisor: overhead + sensitivity * cost_per_million
    cost_sensitivity: float = Field(default=0.1, ge=0)
    cost_overhead: float = Field(default=1.0, ge=0)
    cost_epsilon: float = Field(default=1e-9, gt=0)


class DecisionLogSettings(BaseSettings):
    """Decision log settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEWISE_DECISIONS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = True
    path: str | None = None
    max_buffer: int = Field(default=10_000, gt=0)
    max_tracked_decisions: int = Field(default=100_000, gt=0)


class RouterSettings(BaseSettings):
    """Core router settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEWISE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_context_turns: int = Field(default=6, ge=0)
    default_deadline: float | None = Field(default=None, gt=0)

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in {"json", "console"}:
            raise ValueError(f"Invalid log format: {v}. Must be 'json' or 'console'")
        return v


class ServerSettings(BaseSettings):
    """API server settings."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEWISE_SERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class Settings(BaseSettings):
    """Combined application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    router: RouterSettings = Field(default_factory=RouterSettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    decisions: DecisionLogSettings = Field(default_factory=DecisionLogSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
