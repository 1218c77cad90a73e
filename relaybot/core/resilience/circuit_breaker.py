"""
Gateway Circuit Breaker for relaybot

Purpose
-------
Implement the circuit breaker pattern for gateway transport operations
(login, connect, command registration) so a platform outage fails fast
instead of hammering the API.

States:
- CLOSED: Normal operation, all requests pass through
- OPEN: Gateway is failing, all requests fail fast
- HALF_OPEN: Testing if the gateway has recovered

Responsibilities
----------------
- Count consecutive failures of wrapped operations
- Open after ``failure_threshold`` consecutive failures
- Stay open for ``break_duration_seconds``, then allow a trial call
- Close again after ``success_threshold`` trial successes
- Log every state transition

Non-Responsibilities
--------------------
- No retry logic (handled by retry_policy.py)
- No transport calls of its own

Configuration Keys
------------------
- CIRCUIT_BREAKER_ENABLED           : bool (default True)
- CIRCUIT_BREAKER_FAILURE_THRESHOLD : int  (default 5, 1-100)
- CIRCUIT_BREAKER_BREAK_SECONDS     : int  (default 30, 10-600)

Architecture Notes
------------------
- asyncio.Lock guards state; transitions happen only under the lock
- The clock is injectable so tests can advance time without sleeping
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from relaybot.core.config.config import Config
from relaybot.core.exceptions import CircuitBreakerOpenError
from relaybot.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing, reject requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Parameters
    ----------
    failure_threshold:
        Consecutive failures that open the circuit.
    break_duration_seconds:
        How long the circuit stays OPEN before allowing a trial call.
    success_threshold:
        Trial successes required in HALF_OPEN to close the circuit.
    name:
        Label used in logs.
    clock:
        Monotonic time source, seconds.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        break_duration_seconds: float = 30.0,
        success_threshold: int = 1,
        name: str = "gateway",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")

        self._failure_threshold = failure_threshold
        self._break_duration = break_duration_seconds
        self._success_threshold = max(1, success_threshold)
        self._name = name
        self._clock = clock

        self._state: CircuitState = CircuitState.CLOSED
        self._failure_count: int = 0
        self._success_count: int = 0
        self._opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

        logger.debug(
            "CircuitBreaker initialized",
            extra={
                "breaker": name,
                "failure_threshold": failure_threshold,
                "break_duration_seconds": break_duration_seconds,
            },
        )

    @classmethod
    def from_config(cls, name: str = "gateway") -> "CircuitBreaker":
        return cls(
            failure_threshold=Config.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
            break_duration_seconds=float(Config.CIRCUIT_BREAKER_BREAK_SECONDS),
            name=name,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # STATE
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def _remaining_break(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self._break_duration - (self._clock() - self._opened_at))

    async def can_execute(self) -> bool:
        """Return True if a call may proceed; moves OPEN to HALF_OPEN when due."""
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if self._remaining_break() > 0:
                    return False
                self._transition(CircuitState.HALF_OPEN)
            return True

    # ═══════════════════════════════════════════════════════════════════════
    # EXECUTION
    # ═══════════════════════════════════════════════════════════════════════

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        """
        Run ``operation`` through the breaker.

        Raises
        ------
        CircuitBreakerOpenError
            If the circuit is OPEN; the operation is not invoked.
        """
        if not await self.can_execute():
            raise CircuitBreakerOpenError(operation_name, self._remaining_break())

        try:
            result = await operation()
        except asyncio.CancelledError:
            raise
        except Exception:
            await self.record_failure()
            raise

        await self.record_success()
        return result

    async def record_success(self) -> None:
        async with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self._success_threshold:
                    self._transition(CircuitState.CLOSED)

    async def record_failure(self) -> None:
        async with self._lock:
            self._failure_count += 1
            self._success_count = 0

            logger.debug(
                "Circuit breaker recorded failure",
                extra={
                    "breaker": self._name,
                    "state": self._state.value,
                    "failure_count": self._failure_count,
                },
            )

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self._failure_threshold:
                self._transition(CircuitState.OPEN)

    # ═══════════════════════════════════════════════════════════════════════
    # TRANSITIONS
    # ═══════════════════════════════════════════════════════════════════════

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._success_count = 0

        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
            logger.warning(
                "Circuit breaker transitioned to OPEN",
                extra={
                    "breaker": self._name,
                    "previous_state": old_state.value,
                    "failure_count": self._failure_count,
                    "break_duration_seconds": self._break_duration,
                },
            )
            return

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._opened_at = None

        logger.info(
            f"Circuit breaker transitioned to {new_state.value}",
            extra={"breaker": self._name, "previous_state": old_state.value},
        )

    async def reset(self) -> None:
        """Manually reset the breaker to CLOSED."""
        async with self._lock:
            self._transition(CircuitState.CLOSED)

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self._name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self._failure_threshold,
            "break_duration_seconds": self._break_duration,
            "time_until_half_open": (
                round(self._remaining_break(), 2) if self._state == CircuitState.OPEN else None
            ),
        }
