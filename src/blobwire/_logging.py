"""Explicit logging configuration handed to clients at construction time."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Literal, cast

from .errors import ConfigurationError

LogLevel = Literal["verbose", "info", "warning", "error"]

LOG_LEVEL_ENV = "BLOBWIRE_LOG_LEVEL"
LOGGER_NAMESPACE = "blobwire"

_LEVELS: dict[str, int] = {
    "verbose": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class _ThresholdAdapter(logging.LoggerAdapter):
    """Drops records below the configured level without touching global logger state."""

    def __init__(self, logger: logging.Logger, threshold: int) -> None:
        super().__init__(logger, {})
        self.threshold = threshold

    def isEnabledFor(self, level: int) -> bool:  # noqa: N802
        return level >= self.threshold and self.logger.isEnabledFor(level)

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return msg, kwargs


@dataclass(frozen=True)
class LogConfig:
    level: LogLevel = "warning"
    namespace: str = LOGGER_NAMESPACE

    def __post_init__(self) -> None:
        if self.level not in _LEVELS:
            raise ConfigurationError(
                f"unknown log level {self.level!r}; expected one of {', '.join(_LEVELS)}"
            )

    @classmethod
    def from_env(cls) -> LogConfig:
        level = os.getenv(LOG_LEVEL_ENV, "").strip().lower()
        if level in _LEVELS:
            return cls(level=cast(LogLevel, level))
        if "blob" in os.getenv("DEBUG", ""):
            return cls(level="verbose")
        return cls()

    @property
    def threshold(self) -> int:
        return _LEVELS[self.level]

    def get_logger(self, component: str) -> logging.LoggerAdapter:
        return _ThresholdAdapter(logging.getLogger(f"{self.namespace}.{component}"), self.threshold)


__all__ = ["LogConfig", "LogLevel", "LOG_LEVEL_ENV"]
