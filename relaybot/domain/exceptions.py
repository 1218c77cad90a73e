"""
Domain exceptions for relaybot.

Purpose
-------
Define the exceptions raised by the dispatch core and by command handlers
for expected, per-interaction failures. The dispatcher converts every one
of these into an ephemeral user message (see ``relaybot.domain.responses``);
none of them propagate past a single interaction.

Design Notes
------------
- All domain exceptions inherit from `RelayDomainException` and carry
  `message`, `details`, `severity`, `is_retryable` and `error_code`.
- Handlers raise `PreconditionFailedError` (caller may not run this) and
  `BadArgumentsError` (input rejected). Anything else a handler raises is
  a handler fault.
- Registry errors (`DuplicateCommandError`, `RegistrySealedError`) are
  programming errors surfaced at startup, not user-facing.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from relaybot.core.exceptions import ErrorSeverity


class RelayDomainException(Exception):
    """
    Base exception for all relaybot domain-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error
        severity: Error severity level for logging handlers
        is_retryable: Whether the user can simply try again
        error_code: Optional code for programmatic handling
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"


# ============================================================================
# Registry
# ============================================================================


class DuplicateCommandError(RelayDomainException):
    """Raised when a command name is registered twice."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Command '{name}' is already registered",
            details={"command": name},
            error_code="DUPLICATE_COMMAND",
        )


class UnknownCommandError(RelayDomainException):
    """Raised when no handler is registered under a name."""

    DEFAULT_SEVERITY = ErrorSeverity.DEBUG

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Unknown command '{name}'",
            details={"command": name},
            error_code="UNKNOWN_COMMAND",
        )


class RegistrySealedError(RelayDomainException):
    """Raised when registering after the dispatcher began accepting events."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Cannot register '{name}': registry is sealed",
            details={"command": name},
            error_code="REGISTRY_SEALED",
        )


# ============================================================================
# Dispatch
# ============================================================================


class AdmissionRejectedError(RelayDomainException):
    """Raised when no concurrency permit frees up within the admission timeout."""

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, timeout_seconds: float, capacity: int) -> None:
        self.timeout_seconds = timeout_seconds
        self.capacity = capacity
        super().__init__(
            f"No permit available within {timeout_seconds:g}s (capacity {capacity})",
            details={"timeout_seconds": timeout_seconds, "capacity": capacity},
            error_code="ADMISSION_REJECTED",
        )


class CommandTimeoutError(RelayDomainException):
    """Raised when a handler does not finish before its deadline."""

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, command: str, timeout_seconds: float) -> None:
        self.command = command
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Command '{command}' exceeded {timeout_seconds:g}s",
            details={"command": command, "timeout_seconds": timeout_seconds},
            error_code="COMMAND_TIMEOUT",
        )


# ============================================================================
# Handler-raised
# ============================================================================


class PreconditionFailedError(RelayDomainException):
    """
    Raised by a handler when the caller may not run the command here.

    Examples: missing permissions, guild-only command used in a DM.
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason, details={"reason": reason}, error_code="PRECONDITION_FAILED")


class BadArgumentsError(RelayDomainException):
    """Raised by a handler when the supplied options are invalid."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, reason: str, argument: Optional[str] = None) -> None:
        self.reason = reason
        self.argument = argument
        details: Dict[str, Any] = {"reason": reason}
        if argument is not None:
            details["argument"] = argument
        super().__init__(reason, details=details, error_code="BAD_ARGUMENTS")


__all__ = [
    "RelayDomainException",
    "DuplicateCommandError",
    "UnknownCommandError",
    "RegistrySealedError",
    "AdmissionRejectedError",
    "CommandTimeoutError",
    "PreconditionFailedError",
    "BadArgumentsError",
]
