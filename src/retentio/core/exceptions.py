"""
Retentio Domain-Specific Exceptions
===================================

This module defines a hierarchy of exceptions for consistent error handling
across the retention engine.

Exception Hierarchy:
    RetentioError (base)
    ├── RecoverableError (engine keeps running with neutral state)
    │   ├── PersistenceError
    │   └── StateCorruptionError
    └── IrrecoverableError (programmer or deployment error)
        ├── ConfigurationError
        └── ValidationError

Usage Guidelines:
    - Numeric inputs are sanitized, never raised on
    - Raise ValidationError only for malformed records at the API boundary
    - Persistence errors are caught by the engine and logged
    - Always include context in error messages
"""

from typing import Optional, Any
from enum import Enum


class ErrorCategory(Enum):
    """Categories for error classification."""
    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    PERSISTENCE = "PERSISTENCE"
    SYSTEM = "SYSTEM"


class RetentioError(Exception):
    """
    Base exception for all retention engine errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        context: Additional context about the error
        recoverable: Whether the engine can continue after this error
    """

    error_code: str = "RETENTIO_ERROR"
    recoverable: bool = True
    category: ErrorCategory = ErrorCategory.SYSTEM

    def __init__(
        self,
        message: str,
        context: Optional[dict] = None,
        error_code: Optional[str] = None,
        recoverable: Optional[bool] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if error_code is not None:
            self.error_code = error_code
        if recoverable is not None:
            self.recoverable = recoverable

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message

    def to_dict(self) -> dict:
        """Convert exception to a dictionary for diagnostics export."""
        result = {
            "error": self.message,
            "code": self.error_code,
            "category": self.category.value,
            "recoverable": self.recoverable,
        }
        if self.context:
            result["context"] = self.context
        return result


# =============================================================================
# Base Categories: Recoverable vs Irrecoverable
# =============================================================================

class RecoverableError(RetentioError):
    """
    Base class for recoverable errors.

    The engine degrades instead of failing:
    - State file missing or unreadable
    - A single persisted record is malformed
    """
    recoverable = True


class IrrecoverableError(RetentioError):
    """
    Base class for irrecoverable errors.

    These need a fix by the caller:
    - Invalid configuration
    - Malformed practice records
    """
    recoverable = False


# =============================================================================
# Persistence Errors
# =============================================================================

class PersistenceError(RecoverableError):
    """Raised when engine state cannot be loaded or saved."""
    error_code = "PERSISTENCE_ERROR"
    category = ErrorCategory.PERSISTENCE

    def __init__(self, path: str, operation: str, reason: str, context: Optional[dict] = None):
        ctx = {"path": str(path), "operation": operation}
        if context:
            ctx.update(context)
        super().__init__(f"Could not {operation} state at '{path}': {reason}", ctx)
        self.path = str(path)
        self.operation = operation


class StateCorruptionError(RecoverableError):
    """Raised when a persisted record cannot be deserialized."""
    error_code = "STATE_CORRUPTION_ERROR"
    category = ErrorCategory.PERSISTENCE

    def __init__(self, key: str, reason: str = "Malformed record", context: Optional[dict] = None):
        ctx = {"key": key}
        if context:
            ctx.update(context)
        super().__init__(f"Corrupt state record '{key}': {reason}", ctx)
        self.key = key


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(IrrecoverableError):
    """Raised when configuration is invalid or missing."""
    error_code = "CONFIGURATION_ERROR"
    category = ErrorCategory.CONFIG

    def __init__(self, config_key: str, reason: str, context: Optional[dict] = None):
        ctx = {"config_key": config_key}
        if context:
            ctx.update(context)
        super().__init__(f"Configuration error for '{config_key}': {reason}", ctx)
        self.config_key = config_key


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(IrrecoverableError):
    """Raised when input validation fails."""
    error_code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION

    def __init__(self, field: str, reason: str, value: Any = None, context: Optional[dict] = None):
        ctx = {"field": field}
        if value is not None:
            value_str = str(value)
            if len(value_str) > 100:
                value_str = value_str[:100] + "..."
            ctx["value"] = value_str
        if context:
            ctx.update(context)
        super().__init__(f"Validation error for '{field}': {reason}", ctx)
        self.field = field
        self.reason = reason


__all__ = [
    "ErrorCategory",
    "RetentioError",
    "RecoverableError",
    "IrrecoverableError",
    "PersistenceError",
    "StateCorruptionError",
    "ConfigurationError",
    "ValidationError",
]
