"""
Workforce configuration.

A workforce file describes the fleet: one entry per agent plus the shared
broker and the metrics service. It is validated on load and can be turned
into a compose file that runs one container per agent.
"""

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import ConfigurationError
from ..task_router import normalize_agent_id

REQUIRED_AGENT_ENV = ("ANTHROPIC_API_KEY", "DISCORD_BOT_TOKEN")


class AgentVolumes(BaseModel):
    workspace: str
    sessions: Optional[str] = None


class WorkforceAgent(BaseModel):
    name: str = Field(..., min_length=1)
    config_path: str = Field(..., min_length=1)
    env: dict[str, str] = Field(default_factory=dict)
    volumes: Optional[AgentVolumes] = None

    @property
    def agent_id(self) -> str:
        return normalize_agent_id(self.name)

    @field_validator("name")
    @classmethod
    def name_is_agent_id(cls, v: str) -> str:
        normalize_agent_id(v)
        return v

    @field_validator("env", mode="before")
    @classmethod
    def stringify_env(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(key): str(value) for key, value in v.items()}
        return v


class WorkforceRedis(BaseModel):
    url: str = "redis://redis:6379"
    port: int = 6379


class WorkforceMetrics(BaseModel):
    port: int = 3001
    enabled: bool = True


class WorkforceConfig(BaseModel):
    version: str = "1"
    agents: list[WorkforceAgent]
    redis: WorkforceRedis = Field(default_factory=WorkforceRedis)
    metrics: WorkforceMetrics = Field(default_factory=WorkforceMetrics)

    @field_validator("agents")
    @classmethod
    def unique_agent_names(cls, v: list[WorkforceAgent]) -> list[WorkforceAgent]:
        seen: set[str] = set()
        for agent in v:
            if agent.agent_id in seen:
                raise ValueError(f"Duplicate agent name: {agent.name}")
            seen.add(agent.agent_id)
        return v


def parse_workforce_config(path: Union[str, Path]) -> WorkforceConfig:
    """
    Load and validate a workforce YAML file.

    Raises:
        ConfigurationError: If the file is missing, not YAML, or fails validation
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to parse workforce config: {e}") from e

    if not isinstance(raw, dict) or not isinstance(raw.get("agents"), list):
        raise ConfigurationError("Failed to parse workforce config: missing agents array")

    try:
        return WorkforceConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Failed to parse workforce config: {e}") from e


def missing_agent_environment(
    agent: WorkforceAgent, environ: Optional[Mapping[str, str]] = None
) -> list[str]:
    """Credentials the agent's external clients need that neither its ``env`` nor ``environ`` provides."""
    environ = environ if environ is not None else {}
    return [name for name in REQUIRED_AGENT_ENV if not (agent.env.get(name) or environ.get(name))]


def validate_agent_environment(
    agent: WorkforceAgent, environ: Optional[Mapping[str, str]] = None
) -> None:
    missing = missing_agent_environment(agent, environ)
    if missing:
        raise ConfigurationError(
            f"Missing required environment variable {missing[0]} for agent {agent.name}"
        )


def build_compose(config: WorkforceConfig) -> dict[str, Any]:
    """Build a compose document: the broker, one service per agent, and metrics."""
    services: dict[str, Any] = {
        "redis": {
            "image": "redis:7-alpine",
            "container_name": "agentbase-redis",
            "ports": [f"{config.redis.port}:6379"],
            "networks": ["agent-network"],
            "healthcheck": {
                "test": ["CMD", "redis-cli", "ping"],
                "interval": "10s",
                "timeout": "5s",
                "retries": 5,
            },
        }
    }

    volumes: dict[str, None] = {}
    for agent in config.agents:
        services[f"agent-{agent.agent_id}"] = {
            "build": {"context": ".", "args": {"AGENT_CONFIG_PATH": agent.config_path}},
            "container_name": f"agentbase-{agent.agent_id}",
            "environment": [
                f"AGENT_ID={agent.agent_id}",
                f"REDIS_URL={config.redis.url}",
                *(f"{key}={value}" for key, value in agent.env.items()),
            ],
            "volumes": [f"{agent.agent_id}-workspace:/agent-workspace"] if agent.volumes else [],
            "networks": ["agent-network"],
            "depends_on": ["redis"],
        }
        volumes[f"{agent.agent_id}-workspace"] = None

    if config.metrics.enabled:
        services["metrics-api"] = {
            "build": {"context": ".", "dockerfile": "Dockerfile.metrics"},
            "container_name": "agentbase-metrics",
            "ports": [f"{config.metrics.port}:3001"],
            "environment": [f"REDIS_URL={config.redis.url}"],
            "networks": ["agent-network"],
            "depends_on": ["redis"],
        }

    return {
        "services": services,
        "volumes": volumes,
        "networks": {"agent-network": {"driver": "bridge"}},
    }


def write_compose(config: WorkforceConfig, output_path: Union[str, Path]) -> Path:
    output_path = Path(output_path)
    output_path.write_text(
        yaml.safe_dump(build_compose(config), sort_keys=False, width=1_000_000),
        encoding="utf-8",
    )
    logger.info(f"Generated compose file at {output_path}")
    return output_path
