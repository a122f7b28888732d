"""Configuration settings using Pydantic for validation."""

import os
import re
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LIVE_API = "https://api.alpaca.markets"
PAPER_API = "https://paper-api.alpaca.markets"

TRADE_UPDATES = "trade_updates"
ACCOUNT_UPDATES = "account_updates"


class HttpConfig(BaseModel):
    """REST session configuration."""
    request_timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")


class StreamConfig(BaseModel):
    """Streaming connection configuration."""
    streams: List[str] = Field(
        default_factory=lambda: [TRADE_UPDATES, ACCOUNT_UPDATES],
        description="Stream names sent in the listen frame"
    )
    event_queue_size: int = Field(default=0, description="Max buffered events, 0 for unbounded")
    shutdown_timeout_seconds: float = Field(default=5.0, description="Bounded wait used by close()")
    wait_for_authorization: bool = Field(
        default=False,
        description="Hold the listen frame until the server authorizes the connection"
    )
    heartbeat: Optional[float] = Field(default=None, description="Client-side ping interval in seconds")

    @field_validator('streams')
    @classmethod
    def validate_streams(cls, v):
        if not v:
            raise ValueError("At least one stream must be requested")
        return v

    @field_validator('event_queue_size')
    @classmethod
    def validate_queue_size(cls, v):
        if v < 0:
            raise ValueError("event_queue_size must be >= 0")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination")

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v.lower() not in ['json', 'text']:
            raise ValueError("Format must be 'json' or 'text'")
        return v.lower()


class AlpacaSettings(BaseSettings):
    """Client settings, read from ALPACA_* environment variables or a YAML file."""

    model_config = SettingsConfigDict(
        env_prefix="ALPACA_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    key_id: str = Field(default="", description="APCA-API-KEY-ID")
    secret_key: str = Field(default="", description="APCA-API-SECRET-KEY")
    live: bool = Field(default=False, description="Trade against the live API instead of paper")

    # Host override used to point the client at a local test server
    test_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("TEST_URL", "test_url"),
        description="Overrides both live and paper hosts"
    )

    http: HttpConfig = Field(default_factory=HttpConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def host(self) -> str:
        return resolve_host(self.live, self.test_url)


def resolve_host(live: bool, override: Optional[str] = None) -> str:
    """Pick the REST host: override first, then live or paper."""
    if override:
        return override
    return LIVE_API if live else PAPER_API


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in configuration objects.

    Supports syntax:
    - ${VAR_NAME} - Required variable (raises error if not found)
    - ${VAR_NAME:-default} - Optional variable with default value
    """
    if isinstance(obj, dict):
        return {key: substitute_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace_env_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)

            var_name = var_expr.strip()
            value = os.getenv(var_name)
            if value is None:
                raise ValueError(f"Required environment variable '{var_name}' is not set")
            return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def load_settings(config_file: Optional[str] = None) -> AlpacaSettings:
    """
    Load settings from config file and environment variables.

    Args:
        config_file: Path to YAML configuration file

    Returns:
        AlpacaSettings: Validated configuration object

    Raises:
        ValueError: If required environment variables are missing
        FileNotFoundError: If config file doesn't exist
    """
    if config_file and os.path.exists(config_file):
        import yaml

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        config_data = substitute_env_vars(raw_config)
        return AlpacaSettings(**config_data)

    elif config_file:
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    return AlpacaSettings()
