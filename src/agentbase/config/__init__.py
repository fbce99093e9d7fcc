"""
Configuration management for agentbase.

This module provides a centralized configuration system that:
- Loads environment-specific configuration files
- Provides type-safe configuration access
- Supports environment variable overrides
- Parses workforce (fleet) descriptions
"""

from .config_manager import ConfigManager, get_config, reload_config
from .settings import (
    AgentSettings,
    LoggingSettings,
    MetricsSettings,
    RedisSettings,
    Settings,
)
from .workforce import WorkforceConfig, build_compose, parse_workforce_config

__all__ = [
    "AgentSettings",
    "ConfigManager",
    "LoggingSettings",
    "MetricsSettings",
    "RedisSettings",
    "Settings",
    "WorkforceConfig",
    "build_compose",
    "get_config",
    "parse_workforce_config",
    "reload_config",
]
