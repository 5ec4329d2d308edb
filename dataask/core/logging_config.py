"""
Logging set-up shared by the API and the console.

Every module logs through ``logging.getLogger(__name__)``. ``configure_logging``
installs one stdout handler on the root logger and then applies per-logger
levels, so a noisy area (for example the bulk importer's per-batch DEBUG
lines) can be turned up without flooding everything else.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Dict, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

# Applied unless overridden through ``Settings.log_levels``.
DEFAULT_LOGGER_LEVELS = {
    "uvicorn.access": "WARNING",
    "sqlalchemy.engine": "WARNING",
}

_is_configured = False


def parse_logger_levels(spec: Optional[str]) -> Dict[str, str]:
    """
    Parse ``"name=LEVEL,name=LEVEL"`` into a mapping.

    >>> parse_logger_levels("dataask.domain.imports=debug, sqlalchemy.engine=INFO")
    {'dataask.domain.imports': 'DEBUG', 'sqlalchemy.engine': 'INFO'}
    """
    levels: Dict[str, str] = {}
    for item in (spec or "").split(","):
        if not item.strip():
            continue
        name, separator, level = item.partition("=")
        if not separator or not name.strip() or not level.strip():
            raise ValueError(f"Invalid logger level entry '{item.strip()}'; expected name=LEVEL")
        level = level.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level '{level}' for logger '{name.strip()}'")
        levels[name.strip()] = level
    return levels


def build_logging_config(level: str, logger_levels: Optional[Dict[str, str]] = None) -> dict:
    """Return the ``dictConfig`` mapping for a root level plus per-logger overrides."""
    root_level = level.upper()
    loggers = {name: {"level": value} for name, value in DEFAULT_LOGGER_LEVELS.items()}
    loggers["dataask"] = {"level": root_level}
    for name, value in (logger_levels or {}).items():
        loggers[name] = {"level": value}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            }
        },
        "root": {"handlers": ["console"], "level": root_level},
        "loggers": loggers,
    }


def configure_logging(level: Optional[str] = None, logger_levels: Optional[str] = None, *, force: bool = False) -> None:
    """
    Configure logging once per process.

    Args:
        level: Root log level (e.g., "DEBUG", "INFO"); defaults to INFO.
        logger_levels: Optional ``"name=LEVEL,..."`` overrides, usually
            ``Settings.log_levels``.
        force: Reconfigure even if logging was already set up.
    """
    global _is_configured

    if _is_configured and not force:
        return

    dictConfig(build_logging_config(level or "INFO", parse_logger_levels(logger_levels)))
    _is_configured = True
