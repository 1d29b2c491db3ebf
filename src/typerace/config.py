"""Typerace Configuration Module."""

import os
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """Redis configuration settings."""

    url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL",
    )
    decode_responses: bool = Field(
        default=True, description="Decode Redis responses to strings"
    )
    socket_timeout: Optional[float] = Field(
        default=None, description="Socket timeout in seconds"
    )

    model_config = SettingsConfigDict(env_prefix="TYPERACE_REDIS_")


class ChannelSettings(BaseSettings):
    """Race channel configuration settings."""

    backend: Literal["memory", "redis"] = Field(
        default="redis", description="Channel implementation"
    )
    channel_prefix: str = Field(
        default="typerace", min_length=1, description="Pub/sub channel prefix"
    )
    reconnect_attempts: int = Field(
        default=5, ge=0, description="Reconnection attempts before giving up"
    )
    reconnect_delay: float = Field(
        default=1.0, ge=0, description="Fixed delay between reconnection attempts"
    )
    poll_timeout: float = Field(
        default=1.0, gt=0, description="Receive loop poll timeout in seconds"
    )

    model_config = SettingsConfigDict(env_prefix="TYPERACE_CHANNEL_")


class RaceTimingSettings(BaseSettings):
    """Timing of tests and races."""

    duration_seconds: int = Field(default=60, ge=1, description="Test duration")
    countdown_seconds: float = Field(
        default=3.0, ge=0, description="Delay between game_start and racing"
    )
    tick_seconds: float = Field(
        default=1.0, gt=0, description="Countdown tick interval"
    )
    progress_interval: float = Field(
        default=0.1, ge=0, description="Minimum seconds between progress emits"
    )

    model_config = SettingsConfigDict(env_prefix="TYPERACE_RACE_")


class ResultsSettings(BaseSettings):
    """Result store configuration settings."""

    key_prefix: str = Field(default="typerace", min_length=1)
    ttl_seconds: int = Field(
        default=86_400, ge=1, description="Lifetime of a stored result"
    )
    leaderboard_limit: int = Field(default=10, ge=1, le=100)

    model_config = SettingsConfigDict(env_prefix="TYPERACE_RESULTS_")


class RaceSettings(BaseSettings):
    """
    Typerace client configuration.

    Configuration can be loaded from:
    1. Environment variables (TYPERACE_*)
    2. .env file
    3. YAML config file (via config_file or TYPERACE_CONFIG_FILE)
    4. Direct instantiation with parameters

    Priority (highest to lowest):
    1. Explicitly passed parameters
    2. Environment variables
    3. Config file
    4. Defaults

    Example usage:

        # From environment variables
        settings = RaceSettings()

        # From config file
        settings = RaceSettings(config_file="typerace.yaml")

        # Direct configuration
        settings = RaceSettings(
            redis=RedisSettings(url="redis://prod:6379"),
            race=RaceTimingSettings(duration_seconds=30),
        )
    """

    config_file: Optional[str] = Field(
        default=None,
        description="Path to YAML config file",
    )

    redis: RedisSettings = Field(default_factory=RedisSettings)
    channel: ChannelSettings = Field(default_factory=ChannelSettings)
    race: RaceTimingSettings = Field(default_factory=RaceTimingSettings)
    results: ResultsSettings = Field(default_factory=ResultsSettings)

    model_config = SettingsConfigDict(
        env_prefix="TYPERACE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def __init__(self, **data: Any):
        """
        Initialize settings.

        If config_file is provided or TYPERACE_CONFIG_FILE is set, the YAML
        file is loaded and merged underneath the explicit parameters.
        """
        merged = data.pop("_merged", False)
        if merged:
            super().__init__(**data)
            return

        config_file = self._resolve_config_file(data)
        if config_file:
            super().__init__(**self._merge_yaml(config_file, data))
        else:
            super().__init__(**data)

    @classmethod
    def _resolve_config_file(cls, data: dict[str, Any]) -> Optional[str]:
        """Resolve config file from parameters or environment."""
        return data.get("config_file") or os.getenv("TYPERACE_CONFIG_FILE")

    @classmethod
    def _merge_yaml(cls, config_file: str, data: dict[str, Any]) -> dict[str, Any]:
        """Load YAML config and merge with explicit parameters."""
        yaml_data = cls._load_yaml(config_file)
        merged_data = {**yaml_data, **data}
        merged_data.setdefault("config_file", config_file)
        return merged_data

    @staticmethod
    def _load_yaml(file_path: str) -> dict[str, Any]:
        """
        Load configuration from YAML file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML is invalid
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {file_path}")

        with path.open("r") as f:
            data = yaml.safe_load(f)

        return data or {}

    @classmethod
    def from_yaml(cls, file_path: str) -> "RaceSettings":
        """Create settings from YAML file."""
        merged = cls._merge_yaml(file_path, {})
        return cls(_merged=True, **merged)

    def to_yaml(self, file_path: str) -> None:
        """Export settings to YAML file."""
        data = self.model_dump(exclude_none=True, exclude={"config_file"})

        path = Path(file_path)
        with path.open("w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def summary(self) -> str:
        """Get human-readable configuration summary."""
        lines = [
            "Typerace Configuration:",
            f"  Channel: {self.channel.backend} ({self.channel.channel_prefix})",
            f"  Redis: {self.redis.url}",
            f"  Reconnect: {self.channel.reconnect_attempts}x every {self.channel.reconnect_delay}s",
            "",
            "Race:",
            f"  Duration: {self.race.duration_seconds}s",
            f"  Countdown: {self.race.countdown_seconds}s",
            f"  Progress interval: {self.race.progress_interval}s",
        ]
        return "\n".join(lines)


def load_settings(config_file: Optional[str] = None, **overrides: Any) -> RaceSettings:
    """
    Load typerace settings with optional overrides.

    Example:
        settings = load_settings(
            config_file="typerace.yaml",
            channel={"backend": "memory"},
        )
    """
    if config_file:
        overrides["config_file"] = config_file

    return RaceSettings(**overrides)
