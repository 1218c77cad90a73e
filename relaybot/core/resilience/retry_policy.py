"""
Gateway Retry Policy for relaybot

Purpose
-------
Retry transient gateway transport failures (login, connect, command
registration) with bounded attempts and optional exponential backoff,
optionally routing every attempt through a circuit breaker.

Responsibilities
----------------
- Execute operations with automatic retry on transient failures
- Apply fixed or exponential backoff between attempts, with jitter
- Fail immediately on permanent failures (``is_retryable=False``) and on
  an open circuit
- Log retry attempts and outcomes

Non-Responsibilities
--------------------
- No circuit state of its own (delegated to CircuitBreaker)
- No knowledge of what the operation does

Configuration Keys
------------------
- RETRY_MAX_ATTEMPTS        : int  (default 3, 1-10)
- RETRY_DELAY_MS            : int  (default 1000, 100-30000)
- RETRY_MAX_DELAY_MS        : int  (default 30000)
- RETRY_EXPONENTIAL_BACKOFF : bool (default True)

Architecture Notes
------------------
- Exponential delay: base_delay * 2^(attempt-1), capped at max_delay
- Fixed delay: base_delay for every retry
- 10% jitter to avoid synchronized reconnect storms
- ``ResiliencePolicy`` is the protocol the lifecycle coordinator depends on;
  ``PassthroughPolicy`` runs the operation exactly once
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

from relaybot.core.config.config import Config
from relaybot.core.exceptions import CircuitBreakerOpenError
from relaybot.core.logging.logger import get_logger
from relaybot.core.resilience.circuit_breaker import CircuitBreaker

logger = get_logger(__name__)

T = TypeVar("T")


class ResiliencePolicy(Protocol):
    """Anything that can run an async operation with a failure strategy."""

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = ...,
    ) -> T: ...


class PassthroughPolicy:
    """Run the operation once with no retry or breaker."""

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        return await operation()


def is_retryable(exc: BaseException) -> bool:
    """
    Decide whether ``exc`` is worth another attempt.

    Open circuits and errors flagged ``is_retryable=False`` are permanent;
    everything else is treated as transient.
    """
    if isinstance(exc, CircuitBreakerOpenError):
        return False
    flag = getattr(exc, "is_retryable", None)
    if flag is None:
        return True
    return bool(flag)


class RetryPolicy:
    """
    Bounded retry with fixed or exponential backoff.

    Parameters
    ----------
    max_attempts:
        Total attempts including the first (1-10).
    base_delay_seconds:
        Delay before the first retry.
    exponential_backoff:
        Double the delay on each further retry when True.
    max_delay_seconds:
        Upper bound on any single delay.
    jitter:
        Apply +/-10% random jitter to each delay.
    circuit_breaker:
        Optional breaker every attempt is routed through.
    sleep:
        Awaitable sleep function (injectable for tests).
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
        exponential_backoff: bool = True,
        max_delay_seconds: float = 30.0,
        jitter: bool = True,
        circuit_breaker: Optional[CircuitBreaker] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self._max_attempts = max_attempts
        self._base_delay = base_delay_seconds
        self._exponential = exponential_backoff
        self._max_delay = max_delay_seconds
        self._jitter = jitter
        self._breaker = circuit_breaker
        self._sleep = sleep

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        breaker = CircuitBreaker.from_config() if Config.CIRCUIT_BREAKER_ENABLED else None
        return cls(
            max_attempts=Config.RETRY_MAX_ATTEMPTS,
            base_delay_seconds=Config.RETRY_DELAY_MS / 1000.0,
            exponential_backoff=Config.RETRY_EXPONENTIAL_BACKOFF,
            max_delay_seconds=Config.RETRY_MAX_DELAY_MS / 1000.0,
            circuit_breaker=breaker,
        )

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def circuit_breaker(self) -> Optional[CircuitBreaker]:
        return self._breaker

    # ═══════════════════════════════════════════════════════════════════════
    # RETRY EXECUTION
    # ═══════════════════════════════════════════════════════════════════════

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        """
        Execute ``operation`` with retry.

        Returns
        -------
        T
            The result of the first successful attempt.

        Raises
        ------
        Exception
            The last exception once attempts are exhausted, or the first
            permanent failure.
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                if self._breaker is not None:
                    result = await self._breaker.execute(operation, operation_name)
                else:
                    result = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if not is_retryable(exc):
                    logger.error(
                        "Operation failed with non-retryable error",
                        extra={
                            "operation": operation_name,
                            "attempt": attempt,
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                        },
                    )
                    raise

                if attempt >= self._max_attempts:
                    logger.error(
                        "Operation failed after all retries",
                        extra={
                            "operation": operation_name,
                            "attempts": attempt,
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                        },
                        exc_info=True,
                    )
                    raise

                delay = self.calculate_delay(attempt)
                logger.warning(
                    "Operation failed, retrying",
                    extra={
                        "operation": operation_name,
                        "attempt": attempt,
                        "total_attempts": self._max_attempts,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "retry_delay_seconds": round(delay, 3),
                    },
                )
                await self._sleep(delay)
                continue

            if attempt > 1:
                logger.info(
                    "Operation succeeded after retry",
                    extra={"operation": operation_name, "attempt": attempt},
                )
            return result

        raise RuntimeError(f"Operation '{operation_name}' exhausted retries without result")

    # ═══════════════════════════════════════════════════════════════════════
    # BACKOFF CALCULATION
    # ═══════════════════════════════════════════════════════════════════════

    def calculate_delay(self, attempt: int) -> float:
        """
        Delay in seconds before retrying after failed ``attempt`` (1-indexed).
        """
        if self._exponential:
            delay = self._base_delay * (2 ** (attempt - 1))
        else:
            delay = self._base_delay

        delay = min(delay, self._max_delay)

        if self._jitter:
            jitter_amount = delay * 0.1
            delay += random.uniform(-jitter_amount, jitter_amount)

        return max(0.0, delay)
