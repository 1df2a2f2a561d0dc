from __future__ import annotations

import os
import sys
from typing import Literal, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from .api import FAL_QUEUE_BASE_URL
from .types import FABRIC_MODEL

AwaitStrategy = Literal["auto", "poll", "stream"]


def _env(name: str, default: str | None = None):
    return lambda: os.getenv(name, default)


class RunnerSettings(BaseModel):
    """Runner configuration; every field defaults to its environment variable.

    Environment values are validated like explicit ones, so an out-of-range
    FABRIC_POLL_INTERVAL fails at load time.
    """

    model_config = ConfigDict(protected_namespaces=(), validate_default=True)

    api_key: Optional[str] = Field(default_factory=_env("FAL_KEY"), repr=False)
    base_url: str = Field(default_factory=_env("FAL_QUEUE_BASE_URL", FAL_QUEUE_BASE_URL))
    model_id: str = Field(default_factory=_env("FABRIC_MODEL_ID", FABRIC_MODEL), min_length=1)
    polling_interval_seconds: int = Field(default_factory=_env("FABRIC_POLL_INTERVAL", "5"), ge=1, le=30)
    timeout_minutes: int = Field(default_factory=_env("FABRIC_TIMEOUT_MINUTES", "10"), ge=1, le=60)
    strategy: AwaitStrategy = Field(default_factory=_env("FABRIC_AWAIT_STRATEGY", "auto"))
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)
    strict_extensions: bool = Field(default_factory=_env("FABRIC_STRICT_EXTENSIONS", "false"))
    cancel_on_timeout: bool = Field(default_factory=_env("FABRIC_CANCEL_ON_TIMEOUT", "false"))
    continue_on_error: bool = Field(default_factory=_env("FABRIC_CONTINUE_ON_ERROR", "false"))
    log_level: str = Field(default_factory=_env("LOG_LEVEL", "INFO"))

    @property
    def polling_interval(self) -> float:
        return float(self.polling_interval_seconds)

    @property
    def timeout(self) -> float:
        return float(self.timeout_minutes * 60)


def load_settings(**overrides) -> RunnerSettings:
    return RunnerSettings(**overrides)


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stdout, level=level.upper())
