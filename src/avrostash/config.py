"""
Service configuration.

Uses Pydantic Settings for environment variable handling and validation.
A config.yaml file provides defaults, environment variables override it.
The per-source policy tables live in their own file (see core.policy).
"""

import os
import yaml
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config.yaml in common locations
        possible_paths = [
            "config.yaml",  # Current directory
            "../../config.yaml",  # Project root from src/avrostash
        ]

        for path in possible_paths:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class SchemaSettings(BaseSettings):
    """Schema resolution and caching."""

    read_attempts: int = Field(default=10, description="Backing file read attempts before giving up")
    retry_interval_seconds: float = Field(default=0.1, description="Wait between read attempts")
    completed_suffix: str = Field(default=".COMPLETED", description="Suffix appended by the upstream writer")
    cache_size: int = Field(default=1, description="Number of fingerprints kept (1 = single slot)")

    @field_validator("read_attempts", "cache_size")
    def validate_positive(cls, v: int) -> int:
        """Both counts must allow at least one entry."""
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    class Config:
        env_prefix = "AVROSTASH_SCHEMA_"


class PolicySettings(BaseSettings):
    """Locations of the policy tables."""

    config_file: Path = Field(
        default=Path("/opt/flume/conf/FlumeAvroEventDeserializer.xml"),
        description="Include/exclude, truncation and time correction tables (.yaml or legacy .xml)"
    )
    country_map_file: Path = Field(
        default=Path("/opt/flume/conf/CountryMapping.csv"),
        description="Netwitness to Kibana country mapping (semicolon separated)"
    )

    class Config:
        env_prefix = "AVROSTASH_POLICY_"


class Settings(BaseSettings):
    """Main application settings."""

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # Component settings
    resolver: SchemaSettings = Field(default_factory=SchemaSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)

    class Config:
        env_prefix = "AVROSTASH_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    settings = Settings()
    return settings


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("server", "host"): "AVROSTASH_HOST",
        ("server", "port"): "AVROSTASH_PORT",
        ("server", "debug"): "AVROSTASH_DEBUG",
        ("server", "log_level"): "AVROSTASH_LOG_LEVEL",
        ("schema", "read_attempts"): "AVROSTASH_SCHEMA_READ_ATTEMPTS",
        ("schema", "retry_interval_seconds"): "AVROSTASH_SCHEMA_RETRY_INTERVAL_SECONDS",
        ("schema", "completed_suffix"): "AVROSTASH_SCHEMA_COMPLETED_SUFFIX",
        ("schema", "cache_size"): "AVROSTASH_SCHEMA_CACHE_SIZE",
        ("policy", "config_file"): "AVROSTASH_POLICY_CONFIG_FILE",
        ("policy", "country_map_file"): "AVROSTASH_POLICY_COUNTRY_MAP_FILE",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
