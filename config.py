"""Configuration management for btagger.

Settings come from an optional JSON file; command line flags override them.
"""

import json
import os
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError, field_validator

from btagger.errors import ConfigurationError
from btagger.object_store import EndpointOverride

DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d.%H-%M"

# $NAME or ${NAME}, with nothing else around it
ENV_REFERENCE = re.compile(r"^\$\{?\w+\}?$")


class ScheduleConfig(BaseModel):
    """When backups run and how closely a run must match a period boundary."""
    every_n_hours: int = 4
    minutes_offset_from_hour: int = 30
    day_offset_in_hours: int = 0
    lag_window_in_minutes: int = 20
    format_timestamp: str = DEFAULT_TIMESTAMP_FORMAT

    @field_validator('lag_window_in_minutes')
    @classmethod
    def non_negative_lag(cls, v):
        if v < 0:
            raise ValueError("lag window cannot be negative")
        return v

    @property
    def lag_window_seconds(self) -> int:
        return self.lag_window_in_minutes * 60


class EndpointConfig(BaseModel):
    """S3-compatible endpoint override and the region for ambient AWS access."""
    url: Optional[str] = None
    access_id: Optional[str] = None
    secret_key: Optional[str] = None
    region: Optional[str] = None

    @field_validator('url', 'access_id', 'secret_key', 'region', mode='before')
    @classmethod
    def expand_env(cls, v):
        """Expand $VARIABLES so secrets can stay out of the file.

        A value that is only an unset variable reference becomes None. Other
        values are kept as written, even when they start with $.
        """
        if isinstance(v, str):
            expanded = os.path.expandvars(v)
            if expanded == v and ENV_REFERENCE.match(v):
                return None
            return expanded
        return v

    def to_override(self) -> EndpointOverride:
        return EndpointOverride(self.url, self.access_id, self.secret_key)


class ToolsConfig(BaseModel):
    """External executables used by the backup pipelines."""
    aws: str = "aws"
    zstd: str = "zstd"
    compression_level: int = 3
    surreal: str = "surreal"
    tikv_br: str = "tikv-br"

    @field_validator('aws', 'zstd', 'surreal', 'tikv_br')
    @classmethod
    def expand_paths(cls, v):
        return os.path.expanduser(os.path.expandvars(v))


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "WARNING"
    file: Optional[str] = None


class Config(BaseModel):
    """Main configuration model."""
    schedule: ScheduleConfig = ScheduleConfig()
    s3: EndpointConfig = EndpointConfig()
    tools: ToolsConfig = ToolsConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from a JSON file, or defaults when no path is given.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    if not config_path:
        return Config()

    config_file = Path(config_path).expanduser()
    if not config_file.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, 'r') as f:
            config_data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e

    # Keys starting with '_' are comments
    if isinstance(config_data, dict):
        config_data = {k: v for k, v in config_data.items() if not k.startswith('_')}

    try:
        return Config.model_validate(config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}:\n{e}") from e


def apply_overrides(config: Config, **overrides) -> Config:
    """Return a copy of ``config`` with non-None schedule values replaced.

    Raises:
        ConfigurationError: If an override is invalid
    """
    values = config.schedule.model_dump()
    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        schedule = ScheduleConfig.model_validate(values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid schedule settings:\n{e}") from e
    return config.model_copy(update={'schedule': schedule})


def create_default_config(config_path: str = "btagger.json") -> None:
    """Write a configuration file holding every default."""
    default_config = {
        "_comment": "Values like $S3_SECRET_KEY are expanded from the environment",
        **Config().model_dump(),
    }
    default_config["s3"]["url"] = "$S3_ENDPOINT"
    default_config["s3"]["access_id"] = "$S3_ACCESS_ID"
    default_config["s3"]["secret_key"] = "$S3_SECRET_KEY"

    with open(config_path, 'w') as f:
        json.dump(default_config, f, indent=2)
