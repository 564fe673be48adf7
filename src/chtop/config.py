"""Environment-based configuration for chtop."""

from datetime import timedelta
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings

from chtop.live.window import parse_duration


class Settings(BaseSettings):
    """chtop configuration.

    All settings can be overridden via environment variables with
    CHTOP_ prefix. For example:
        CHTOP_URLS=http://ch-1:8123,http://ch-2:8123
        CHTOP_CLUSTER=default
        CHTOP_DELAY_INTERVAL=5
    """

    # Connection
    urls: str = "http://localhost:8123"
    cluster: str | None = None
    user: str = "default"
    password: str = ""

    # Refresh
    delay_interval: float = 3.0  # seconds between ticks
    host_timeout: float = 5.0
    fanout_deadline: float = 10.0
    max_in_flight: int = 16
    rediscover_interval: float = 60.0  # cluster membership refresh, 0 disables

    # Views
    series_capacity: int = 60
    top_n: int = 20
    time_span: str = "1h"

    log_level: str = "INFO"

    model_config = {"env_prefix": "CHTOP_"}

    @field_validator("delay_interval", "host_timeout", "fanout_deadline")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("max_in_flight", "top_n")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("series_capacity")
    @classmethod
    def _capacity(cls, value: int) -> int:
        if value < 2:
            raise ValueError("must be >= 2")
        return value

    @field_validator("time_span")
    @classmethod
    def _span(cls, value: str) -> str:
        if parse_duration(value) <= timedelta(0):
            raise ValueError("must be a positive duration")
        return value

    @field_validator("log_level")
    @classmethod
    def _level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value!r}")
        return value

    @property
    def url_list(self) -> list[str]:
        """Host URLs from the comma-separated urls setting."""
        return [u.strip() for u in self.urls.split(",") if u.strip()]

    @property
    def span(self) -> timedelta:
        return parse_duration(self.time_span)


def load_settings(**overrides: Any) -> Settings:
    """Build Settings from the environment; non-None overrides win (CLI options)."""
    return Settings(**{k: v for k, v in overrides.items() if v is not None})
