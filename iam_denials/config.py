"""Configuration loading from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from iam_denials.exceptions import ConfigError

# Defaults
DEFAULT_REGION = "us-east-1"
DEFAULT_LOOKBACK_DAYS = 7
DEFAULT_MAX_EVENTS = 1000
DEFAULT_LOG_LEVEL = "INFO"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
PACKAGE_LOGGER = "iam_denials"


@dataclass(frozen=True)
class AnalysisConfig:
    region: str = DEFAULT_REGION
    lookback_days: float = DEFAULT_LOOKBACK_DAYS
    max_events: int = DEFAULT_MAX_EVENTS
    include_patterns: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = ()
    role_patterns: tuple[str, ...] = ()
    optimize_resources: bool = False
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self):
        if self.lookback_days <= 0:
            raise ConfigError(f"lookback_days must be positive, got {self.lookback_days}")
        if self.max_events <= 0:
            raise ConfigError(f"max_events must be positive, got {self.max_events}")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")


def _split_patterns(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(pattern.strip() for pattern in raw.split(",") if pattern.strip())


def _positive_number(name: str, raw: str | None, default: float, cast=int):
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def load_config(environ: dict | None = None) -> AnalysisConfig:
    """Build AnalysisConfig from environment variables with sensible defaults."""
    env = os.environ if environ is None else environ
    return AnalysisConfig(
        region=env.get("AWS_REGION", DEFAULT_REGION),
        lookback_days=_positive_number("DENIAL_LOOKBACK_DAYS", env.get("DENIAL_LOOKBACK_DAYS"),
                                       DEFAULT_LOOKBACK_DAYS, cast=float),
        max_events=_positive_number("DENIAL_MAX_EVENTS", env.get("DENIAL_MAX_EVENTS"), DEFAULT_MAX_EVENTS),
        include_patterns=_split_patterns(env.get("DENIAL_INCLUDE_PATTERNS")),
        exclude_patterns=_split_patterns(env.get("DENIAL_EXCLUDE_PATTERNS")),
        role_patterns=_split_patterns(env.get("DENIAL_ROLE_PATTERNS")),
        optimize_resources=env.get("DENIAL_OPTIMIZE_RESOURCES", "false").strip().lower() in ["1", "true", "yes"],
        log_level=env.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper(),
    )


def configure_logging(level: str | int = DEFAULT_LOG_LEVEL) -> logging.Logger:
    """Set the package logger level and attach a stderr handler once."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    if not any(isinstance(handler, logging.StreamHandler) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        logger.addHandler(handler)
    return logger
