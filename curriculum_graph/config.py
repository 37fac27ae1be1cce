"""
Runtime configuration.

Settings come from environment variables:
- CURRICULUM_GRAPH_STAGE_TIMEOUT: seconds allowed per completion attempt within a stage
- CURRICULUM_GRAPH_MAX_ATTEMPTS: attempts per stage for transient failures
- CURRICULUM_GRAPH_BACKOFF_MIN / CURRICULUM_GRAPH_BACKOFF_MAX: retry backoff bounds (seconds)
- CURRICULUM_GRAPH_MAX_SYLLABUS_CHARS: syllabus text sent to the generation service
- CURRICULUM_GRAPH_LOG_LEVEL: level for the curriculum_graph logger
"""

import logging
import os
from dataclasses import dataclass


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


@dataclass(frozen=True)
class Settings:
    """Pipeline and logging settings."""
    stage_timeout: float = 120.0
    max_attempts: int = 3
    backoff_min: float = 2.0
    backoff_max: float = 30.0
    max_syllabus_chars: int = 80_000
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.stage_timeout <= 0:
            raise ValueError("stage_timeout must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_min < 0 or self.backoff_max < self.backoff_min:
            raise ValueError("backoff bounds must satisfy 0 <= backoff_min <= backoff_max")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            stage_timeout=_env_float("CURRICULUM_GRAPH_STAGE_TIMEOUT", cls.stage_timeout),
            max_attempts=_env_int("CURRICULUM_GRAPH_MAX_ATTEMPTS", cls.max_attempts),
            backoff_min=_env_float("CURRICULUM_GRAPH_BACKOFF_MIN", cls.backoff_min),
            backoff_max=_env_float("CURRICULUM_GRAPH_BACKOFF_MAX", cls.backoff_max),
            max_syllabus_chars=_env_int("CURRICULUM_GRAPH_MAX_SYLLABUS_CHARS", cls.max_syllabus_chars),
            log_level=os.getenv("CURRICULUM_GRAPH_LOG_LEVEL", cls.log_level),
        )


def configure_logging(level: str | None = None) -> logging.Logger:
    """Apply a log level to the package logger and return it."""
    logger = logging.getLogger("curriculum_graph")
    logger.setLevel((level or Settings.from_env().log_level).upper())
    return logger
