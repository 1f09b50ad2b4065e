"""
Retentio Logging Configuration
==============================
One loguru sink for the whole engine, set up by the host application.

Every module logs through ``from loguru import logger``; nothing here is
required for that to work. ``configure_logging`` only replaces loguru's
default stderr sink with one at the requested level, either human-readable
or one JSON object per line (loguru's own ``serialize`` records).

Usage:
    from retentio.core.logging_config import configure_from_config
    from retentio.core.config import get_config

    configure_from_config(get_config())
"""

from __future__ import annotations

import os
import sys
from typing import Optional, TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from .config import RetentioConfig

_CONFIGURED = False

_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def configure_logging(
    level: Optional[str] = "INFO",
    json_format: Optional[bool] = None,
    *,
    sink: Optional[str] = None,
) -> None:
    """
    Route engine logs to a single sink.

    Args:
        level: Minimum level; RETENTIO_LOG_LEVEL (then INFO) when None.
        json_format: Serialized JSON lines; RETENTIO_LOG_FORMAT=json when None.
        sink: File path for log output. stderr when omitted.
    """
    global _CONFIGURED

    if json_format is None:
        json_format = os.environ.get("RETENTIO_LOG_FORMAT", "").lower() == "json"
    if level is None:
        level = os.environ.get("RETENTIO_LOG_LEVEL", "INFO")

    logger.remove()
    options = {
        "level": level.upper(),
        "enqueue": True,
        "backtrace": False,
        "diagnose": False,
    }
    if json_format:
        logger.add(sink or sys.stderr, serialize=True, **options)
    else:
        logger.add(sink or sys.stderr, format=_TEXT_FORMAT, colorize=sink is None, **options)

    _CONFIGURED = True
    logger.debug(f"Logging configured: level={level}, json_format={json_format}")


def configure_from_config(config: "RetentioConfig") -> None:
    """Apply the observability section of a loaded configuration."""
    configure_logging(
        level=config.observability.log_level,
        json_format=config.observability.json_logs,
    )


def is_configured() -> bool:
    return _CONFIGURED


__all__ = ["configure_logging", "configure_from_config", "is_configured"]
