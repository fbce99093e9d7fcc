"""
Pydantic settings model for agentbase configuration.

This module defines the configuration schema using pydantic-settings for
validation and type safety. Each section reads its own environment prefix.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..task_router import normalize_agent_id


class RedisSettings(BaseSettings):
    """Broker connection settings."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    url: str = Field(default="redis://localhost:6379", description="Redis connection URL")
    socket_timeout: Optional[float] = Field(
        default=None, description="Socket timeout in seconds for broker commands"
    )
    poll_interval: float = Field(
        default=1.0, gt=0, description="Subscription poll interval in seconds"
    )


class AgentSettings(BaseSettings):
    """Per-agent coordination settings."""

    model_config = SettingsConfigDict(env_prefix="AGENT_")

    id: Optional[str] = Field(default=None, description="Agent identifier")
    status_interval: float = Field(
        default=10.0, gt=0, description="Seconds between status/heartbeat publications"
    )
    lock_ttl: float = Field(default=30.0, gt=0, description="Default lock TTL in seconds")

    @field_validator("id")
    @classmethod
    def validate_agent_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return normalize_agent_id(v)


class MetricsSettings(BaseSettings):
    """Metrics API configuration settings."""

    model_config = SettingsConfigDict(env_prefix="METRICS_")

    host: str = Field(default="0.0.0.0", description="Metrics API host")
    port: int = Field(default=3001, description="Metrics API port")
    cors_origin: str = Field(default="*", description="Allowed CORS origin(s), comma separated")
    activity_buffer: int = Field(
        default=500, gt=0, description="Number of recent activity events kept in memory"
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format (text or json)")
    file_path: Optional[str] = Field(default=None, description="Log file path")
    rotation: str = Field(default="00:00", description="When to start a new log file")
    retention: str = Field(default="30 days", description="How long rotated files are kept")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        valid_formats = ["text", "json"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(default="development", description="Environment name")

    redis: RedisSettings = Field(default_factory=RedisSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_environments = ["development", "testing", "staging", "production"]
        if v.lower() not in valid_environments:
            raise ValueError(f"Environment must be one of {valid_environments}")
        return v.lower()
