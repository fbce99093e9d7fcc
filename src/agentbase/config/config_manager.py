"""
Configuration manager for agentbase.

This module provides a centralized way to manage configuration across
environments. Environment-specific values live in ``config/<environment>.env``
at the repository root and are overlaid by the process environment.
"""

import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from .settings import Settings


class ConfigManager:
    """Manages configuration loading and access."""

    def __init__(self, environment: Optional[str] = None, config_dir: Optional[Path] = None):
        """Initialize the configuration manager.

        Args:
            environment: Environment name (development, testing, staging, production).
                        If None, will be determined from ENVIRONMENT env var
            config_dir: Directory holding ``<environment>.env`` files
        """
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        self._settings: Optional[Settings] = None
        self._config_dir = config_dir or Path(__file__).parent.parent.parent.parent / "config"

    def load_config(self) -> Settings:
        """Load configuration for the current environment.

        Values already present in the process environment win over the
        environment file.

        Raises:
            pydantic.ValidationError: If configuration validation fails
        """
        if self._settings is not None:
            return self._settings

        config_file = self._get_config_file_path()
        if config_file.exists():
            load_dotenv(config_file, override=False)

        self._settings = Settings(environment=self.environment)
        return self._settings

    def get_config(self) -> Settings:
        if self._settings is None:
            return self.load_config()
        return self._settings

    def reload_config(self) -> Settings:
        self._settings = None
        return self.load_config()

    def get_redis_url(self) -> str:
        return self.get_config().redis.url

    def get_agent_id(self) -> Optional[str]:
        return self.get_config().agent.id

    def get_logging_config(self) -> dict[str, Any]:
        return self.get_config().logging.model_dump()

    def is_testing(self) -> bool:
        return self.environment == "testing"

    def is_production(self) -> bool:
        return self.environment == "production"

    def _get_config_file_path(self) -> Path:
        return self._config_dir / f"{self.environment}.env"


_config_manager: Optional[ConfigManager] = None


def get_config_manager(environment: Optional[str] = None) -> ConfigManager:
    """Get the shared configuration manager instance.

    Args:
        environment: Environment name (optional)

    Returns:
        ConfigManager instance
    """
    global _config_manager
    if _config_manager is None or (
        environment and _config_manager.environment != environment
    ):
        _config_manager = ConfigManager(environment)
    return _config_manager


def get_config(environment: Optional[str] = None) -> Settings:
    """Get configuration for the specified environment."""
    return get_config_manager(environment).get_config()


def reload_config(environment: Optional[str] = None) -> Settings:
    return get_config_manager(environment).reload_config()
