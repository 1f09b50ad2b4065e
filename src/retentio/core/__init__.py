"""
Retentio Core Module
====================
Configuration, error hierarchy, logging setup and the forgetting-curve engine.

Configuration:
    - RetentioConfig: Frozen, validated settings loaded from YAML and RETENTIO_* env vars
    - get_config / load_config / reset_config

Errors:
    - RetentioError and its recoverable/irrecoverable subclasses

Scheduling (retentio.core.forgetting):
    - RetentionEngine: One learner's retention model and review planner
"""

from .config import RetentioConfig, get_config, load_config, reset_config
from .exceptions import (
    ConfigurationError,
    IrrecoverableError,
    PersistenceError,
    RecoverableError,
    RetentioError,
    StateCorruptionError,
    ValidationError,
)
from .logging_config import configure_logging

__all__ = [
    "RetentioConfig",
    "get_config",
    "load_config",
    "reset_config",
    "RetentioError",
    "RecoverableError",
    "IrrecoverableError",
    "PersistenceError",
    "StateCorruptionError",
    "ConfigurationError",
    "ValidationError",
    "configure_logging",
]
