"""Environment-driven configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

ALLOWED_ENVS = {"dev", "prod"}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class Settings:
    """Runtime settings populated from the environment."""

    environment: str = "dev"
    debug: bool = False
    log_level: str = "INFO"
    max_body_size: int = 0
    sse_allow_origin: str = "*"
    sse_indent: int | None = None


def validate_settings(settings: Settings) -> None:
    """Validate *settings* for safe operation.

    Raises
    ------
    ValueError
        If the environment or log level is unsupported, the body limit is
        negative, or debug is enabled in production.
    """

    env = settings.environment
    if env not in ALLOWED_ENVS:
        raise ValueError(f"Unsupported environment: {env}")
    if env == "prod" and settings.debug:
        raise ValueError("Debug must be disabled in production")
    if settings.log_level not in LOG_LEVELS:
        raise ValueError(f"Unsupported log level: {settings.log_level}")
    if settings.max_body_size < 0:
        raise ValueError("max_body_size must not be negative")


def _int_env(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def load_settings() -> Settings:
    """Return configuration derived from ``FASTBIND_*`` variables."""

    env = os.getenv("FASTBIND_ENV", "dev").lower()
    debug = os.getenv("FASTBIND_DEBUG", "0").lower() in {"1", "true", "yes"}
    level = os.getenv("FASTBIND_LOG_LEVEL", "DEBUG" if debug else "INFO").upper()
    settings = Settings(
        environment=env,
        debug=debug,
        log_level=level,
        max_body_size=_int_env("FASTBIND_MAX_BODY_SIZE", 0) or 0,
        sse_allow_origin=os.getenv("FASTBIND_SSE_ALLOW_ORIGIN", "*"),
        sse_indent=_int_env("FASTBIND_SSE_INDENT", None),
    )
    validate_settings(settings)
    return settings


def configure_logging(settings: Settings) -> None:
    """Apply the configured level to the ``fastbind`` logger tree."""

    logger = logging.getLogger("fastbind")
    logger.setLevel(settings.log_level)
    if not logging.getLogger().handlers and not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(handler)


__all__ = [
    "ALLOWED_ENVS",
    "Settings",
    "configure_logging",
    "load_settings",
    "validate_settings",
]
