"""
Infrastructure exceptions for relaybot.

Purpose
-------
Define the structured exception hierarchy for infrastructure-level concerns:
gateway transport failures, lifecycle violations and resilience rejections.
These are never shown to users; they propagate to the lifecycle coordinator,
which decides whether to retry, move to ERROR or request shutdown.

Design Notes
------------
- All infrastructure exceptions inherit from `RelayInfrastructureException`.
- Each exception carries:
  - `message`: human-readable description
  - `details`: additional structured context (dict)
  - `severity`: `ErrorSeverity` value for logging/alerting
  - `is_retryable`: whether the operation can be retried
  - `error_code`: short, stable identifier for programmatic use
- `is_retryable` is honoured by `RetryPolicy`: a non-retryable error (for
  example a rejected bot token) fails on the first attempt.

Exception Hierarchy
-------------------
RelayInfrastructureException
├── GatewayError
│   ├── ConnectFailedError
│   └── RegistrationFailedError
├── LifecycleError
│   ├── InvalidTransitionError
│   └── ReadyTimeoutError
└── CircuitBreakerOpenError
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"  # Expected, not concerning (e.g., unknown command)
    INFO = "info"  # Normal operation (e.g., bad arguments)
    WARNING = "warning"  # Concerning but handled (e.g., admission rejected)
    ERROR = "error"  # Unexpected errors requiring attention
    CRITICAL = "critical"  # System-level failures requiring immediate action


class RelayInfrastructureException(Exception):
    """
    Base exception for all relaybot infrastructure-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling

    Example:
        >>> raise RelayInfrastructureException(
        ...     "Gateway login failed",
        ...     {"attempt": 3}
        ... )
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

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"severity={self.severity.value!r}, "
            f"is_retryable={self.is_retryable!r}"
            ")"
        )


# ============================================================================
# Gateway
# ============================================================================


class GatewayError(RelayInfrastructureException):
    """Base class for failures talking to the messaging platform."""

    DEFAULT_RETRYABLE = True


class ConnectFailedError(GatewayError):
    """
    Raised when login or connection to the gateway fails.

    Args:
        reason: Short description of what failed
        cause: The underlying transport exception, if any
        is_retryable: False for permanent failures such as a rejected token
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(
        self,
        reason: str,
        cause: Optional[BaseException] = None,
        is_retryable: Optional[bool] = None,
    ) -> None:
        self.cause = cause
        details: Dict[str, Any] = {"reason": reason}
        if cause is not None:
            details["error"] = str(cause)
            details["error_type"] = type(cause).__name__
        super().__init__(
            f"Gateway connection failed: {reason}",
            details=details,
            is_retryable=is_retryable,
            error_code="CONNECT_FAILED",
        )


class RegistrationFailedError(GatewayError):
    """
    Raised when bulk command registration is rejected by the platform.

    Args:
        target: Human-readable registration target ("global" or "guild:<id>")
        cause: The underlying transport exception
    """

    def __init__(self, target: str, cause: BaseException) -> None:
        self.target = target
        self.cause = cause
        super().__init__(
            f"Command registration to {target} failed: {cause}",
            details={
                "target": target,
                "error": str(cause),
                "error_type": type(cause).__name__,
            },
            is_retryable=getattr(cause, "is_retryable", None),
            error_code="REGISTRATION_FAILED",
        )


# ============================================================================
# Lifecycle
# ============================================================================


class LifecycleError(RelayInfrastructureException):
    """Raised when the bot lifecycle cannot proceed (e.g., entered ERROR)."""

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL


class InvalidTransitionError(LifecycleError):
    """
    Raised when a lifecycle transition violates the state graph.

    Args:
        current: Name of the current state
        requested: Name of the requested state
        reason: Why the transition is not allowed
    """

    DEFAULT_SEVERITY = ErrorSeverity.ERROR

    def __init__(self, current: str, requested: str, reason: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid lifecycle transition {current} -> {requested}: {reason}",
            details={"current": current, "requested": requested, "reason": reason},
            error_code="INVALID_TRANSITION",
        )


class ReadyTimeoutError(LifecycleError):
    """Raised when the gateway does not report ready within the ceiling."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Bot did not become ready within {timeout_seconds:g} seconds",
            details={"timeout_seconds": timeout_seconds},
            error_code="READY_TIMEOUT",
        )


# ============================================================================
# Resilience
# ============================================================================


class CircuitBreakerOpenError(RelayInfrastructureException):
    """Raised when the circuit breaker is OPEN and an operation is rejected."""

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, operation: str, retry_after_seconds: float) -> None:
        self.operation = operation
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Circuit open, rejecting {operation}",
            details={
                "operation": operation,
                "retry_after_seconds": round(retry_after_seconds, 2),
            },
            error_code="CIRCUIT_OPEN",
        )


__all__ = [
    "ErrorSeverity",
    "RelayInfrastructureException",
    "GatewayError",
    "ConnectFailedError",
    "RegistrationFailedError",
    "LifecycleError",
    "InvalidTransitionError",
    "ReadyTimeoutError",
    "CircuitBreakerOpenError",
]
