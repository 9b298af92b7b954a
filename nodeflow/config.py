from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    prefix: str = "nodeflow"


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class EngineConfig(BaseModel):
    """Run coordinator settings."""

    max_payload_size: int = 50 * 1024
    error_trigger_policy: Literal["per_failure", "per_run"] = "per_failure"


class SchedulerConfig(BaseModel):
    tick_seconds: int = 60
    default_timezone: str = "UTC"


class RetentionConfig(BaseModel):
    """How long finished and stuck runs are kept."""

    completed_days: int = 1
    zombie_days: int = 30


class NodeflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None
    engine: EngineConfig = EngineConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    retention: RetentionConfig = RetentionConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> NodeflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to NODEFLOW_CONFIG env
            variable or 'nodeflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("NODEFLOW_CONFIG", "nodeflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = NodeflowConfig(**data)
    else:
        config = NodeflowConfig()

    env_db_url = os.getenv("NODEFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
