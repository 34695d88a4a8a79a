"""Settings for the shipper: defaults < environment < YAML file < command line"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from docker_log_shipper.core.exceptions import ConfigurationError
from docker_log_shipper.services.error_policy import RelayErrorMode


class Settings(BaseSettings):
    # Docker hosts
    docker_port: int = Field(2375, ge=1, le=65535)
    request_timeout: float = Field(10.0, gt=0)

    # Logstash
    logstash_host: str = "localhost"
    logstash_port: int = Field(5000, ge=1, le=65535)
    relay_connect_timeout: float = Field(5.0, gt=0)
    relay_error_policy: RelayErrorMode = RelayErrorMode.ABORT

    # Loops
    discovery_interval: float = Field(2.0, gt=0)
    sample_interval: float = Field(30.0, gt=0)
    top_enabled: bool = True
    # Consecutive listings a tailed container may be missing from before its
    # pipeline is stopped; 0 keeps pipelines until their log stream ends
    stale_after_ticks: int = Field(5, ge=0)

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="SHIPPER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        level = str(v).upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level


def load_settings(config_path: Optional[str] = None, **overrides: Any) -> Settings:
    """
    Load settings from an optional YAML file plus explicit overrides.

    Overrides whose value is None are ignored so unset CLI options fall
    through to the file, the environment and the defaults.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid
    """
    data: Dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse config file {config_path}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    data.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}", {"errors": e.errors()})
