"""
Client configuration for the Venice AI Python SDK.
"""

import os
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import VeniceAuthenticationError

DEFAULT_BASE_URL = "https://api.venice.ai/api/v1"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_CONCURRENT = 5
DEFAULT_REQUESTS_PER_MINUTE = 60


class LogLevel(IntEnum):
    """SDK log verbosity, ordered from quietest to most verbose."""

    NONE = 0
    ERROR = 1
    WARN = 2
    INFO = 3
    DEBUG = 4


class ClientConfig(BaseModel):
    """
    Immutable configuration held by one client instance.

    Example:
        >>> config = ClientConfig(api_key="...", max_concurrent=2)
        >>> client = AsyncVenice(config=config)
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    max_concurrent: int = Field(default=DEFAULT_MAX_CONCURRENT, ge=1)
    requests_per_minute: int = Field(default=DEFAULT_REQUESTS_PER_MINUTE, ge=1)
    max_queued: Optional[int] = Field(default=None, ge=0)
    max_retries: int = Field(default=3, ge=0)
    retry_initial_delay: float = Field(default=1.0, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1)
    retry_max_delay: float = Field(default=30.0, ge=0)
    retry_jitter: float = Field(default=0.25, ge=0, lt=1)
    middleware: Tuple[Any, ...] = ()
    headers: Dict[str, str] = Field(default_factory=dict)
    log_level: LogLevel = LogLevel.INFO

    @field_validator("api_key")
    @classmethod
    def _check_api_key(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("API key cannot be empty")
        return value

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level", mode="before")
    @classmethod
    def _parse_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            name = value.strip().upper()
            if name == "WARNING":
                name = "WARN"
            try:
                return LogLevel[name]
            except KeyError:
                raise ValueError(f"Unknown log level: {value!r}") from None
        return value

    @field_validator("middleware", mode="before")
    @classmethod
    def _tuple_middleware(cls, value: Any) -> Any:
        if isinstance(value, list):
            return tuple(value)
        return value

    def copy_with(self, **changes: Any) -> "ClientConfig":
        """Return a validated copy with ``changes`` applied."""
        data = dict(self)
        data.update(changes)
        return ClientConfig(**data)

    def with_api_key(self, api_key: str) -> "ClientConfig":
        """Return a copy using a different API key."""
        return self.copy_with(api_key=api_key)

    @classmethod
    def from_env(cls, **overrides: Any) -> "ClientConfig":
        """
        Build a configuration from environment variables.

        Reads ``VENICE_API_KEY`` (required), ``VENICE_BASE_URL``,
        ``VENICE_TIMEOUT`` and ``VENICE_LOG_LEVEL``. Keyword arguments take
        precedence over the environment.
        """
        data: Dict[str, Any] = {}
        if os.environ.get("VENICE_API_KEY"):
            data["api_key"] = os.environ["VENICE_API_KEY"]
        if os.environ.get("VENICE_BASE_URL"):
            data["base_url"] = os.environ["VENICE_BASE_URL"]
        if os.environ.get("VENICE_TIMEOUT"):
            data["timeout"] = float(os.environ["VENICE_TIMEOUT"])
        if os.environ.get("VENICE_LOG_LEVEL"):
            data["log_level"] = os.environ["VENICE_LOG_LEVEL"]
        data.update(overrides)
        return cls(**data)


def resolve_config(
    api_key: Optional[str] = None,
    config: Optional[ClientConfig] = None,
    **options: Any,
) -> ClientConfig:
    """
    Build the configuration for a client constructor.

    Explicit keyword arguments override ``config``. Without either an
    ``api_key`` or a ``config`` the environment is consulted.
    """
    options = {name: value for name, value in options.items() if value is not None}
    if api_key is not None:
        if not api_key.strip():
            raise VeniceAuthenticationError("API key cannot be empty", status_code=None)
        options["api_key"] = api_key
    if config is not None:
        return config.copy_with(**options) if options else config
    if "api_key" not in options:
        if not os.environ.get("VENICE_API_KEY", "").strip():
            raise VeniceAuthenticationError(
                "No API key provided. Pass api_key or set VENICE_API_KEY.",
                status_code=None,
            )
        return ClientConfig.from_env(**options)
    return ClientConfig(**options)
