"""Exception types for sheetmail."""

import logging
from typing import Optional, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_SEVERITY_LOG_LEVELS = {
    ErrorSeverity.LOW: logging.WARNING,
    ErrorSeverity.MEDIUM: logging.ERROR,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


class SheetmailError(Exception):
    """Base exception for all sheetmail errors."""

    default_severity = ErrorSeverity.MEDIUM

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
        severity: Optional[ErrorSeverity] = None
    ):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.context = context or {}
        self.severity = severity or self.default_severity

    @property
    def log_level(self) -> int:
        """Logging level matching the error severity."""
        return _SEVERITY_LOG_LEVELS[self.severity]


class ConfigurationError(SheetmailError):
    """Raised when configuration is invalid or missing."""
    pass


class IngestionError(SheetmailError):
    """Raised when the record grid cannot be fetched or decoded."""

    default_severity = ErrorSeverity.HIGH


class MissingColumnError(IngestionError):
    """Raised when the header row lacks one or more required columns."""

    def __init__(self, missing: List[str], headers: List[str]):
        super().__init__(
            f"Missing required columns: {', '.join(missing)}",
            context={"missing": list(missing), "headers": list(headers)}
        )
        self.missing = list(missing)
        self.headers = list(headers)


class TokenFetchError(SheetmailError):
    """Raised internally when the anti-forgery token cannot be acquired.

    Token failures are never fatal: the token manager records the error and
    dispatch continues without a token.
    """

    default_severity = ErrorSeverity.LOW


class DispatchError(SheetmailError):
    """Describes a failed submission of a single record.

    The dispatch engine converts these into a ``Failed`` outcome instead of
    letting them escape to the caller.
    """
    pass


def format_exception_chain(exception: Exception) -> str:
    """
    Format an exception chain for logging or display.

    Args:
        exception: The exception to format

    Returns:
        Formatted exception chain as a string
    """
    lines = []
    current = exception

    while current:
        if isinstance(current, SheetmailError):
            lines.append(f"{type(current).__name__}: {current.message}")
            if current.context:
                lines.append(f"  Context: {current.context}")
            if current.cause:
                lines.append("  Caused by:")
                current = current.cause
            else:
                break
        else:
            lines.append(f"{type(current).__name__}: {str(current)}")
            break

    return "\n".join(lines)
