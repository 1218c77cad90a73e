"""
Bounded admission control for command execution.

Purpose
-------
Cap the number of handlers running at once across all commands. A request
waits briefly for a permit and is rejected if none frees up: under burst
load the bot answers "overloaded" quickly instead of queueing unboundedly.

Responsibilities
----------------
- Grant at most ``capacity`` concurrent permits
- Wait up to a timeout for a permit, then reject
- Guarantee each permit is released exactly once on every exit path
- Expose occupancy for logging and health

Architecture Notes
------------------
- Built on asyncio.Semaphore; waiters are served FIFO best-effort
- ``Permit`` is an async context manager whose release is idempotent
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from relaybot.core.config.config import Config
from relaybot.core.config.errors import ConfigValidationError
from relaybot.core.logging.logger import get_logger
from relaybot.domain.exceptions import AdmissionRejectedError

logger = get_logger(__name__)

MIN_CAPACITY = 1
MAX_CAPACITY = 100


class Permit:
    """
    One unit of admission capacity. Release is idempotent.

    A detached permit outlives its ``async with`` scope and is released
    only by an explicit ``release()`` call.
    """

    __slots__ = ("_gate", "_released", "_detached")

    def __init__(self, gate: "ConcurrencyGate") -> None:
        self._gate = gate
        self._released = False
        self._detached = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def detached(self) -> bool:
        return self._detached

    def detach(self) -> None:
        self._detached = True

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._gate._release()

    async def __aenter__(self) -> "Permit":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if not self._detached:
            self.release()


class ConcurrencyGate:
    """
    Semaphore-backed admission gate.

    Parameters
    ----------
    capacity:
        Maximum concurrent permits (1-100).
    default_timeout:
        Seconds ``try_acquire`` waits when no timeout is given.

    Raises
    ------
    ConfigValidationError
        If ``capacity`` is outside 1-100.
    """

    def __init__(self, capacity: int = 10, default_timeout: float = 1.0) -> None:
        if not MIN_CAPACITY <= capacity <= MAX_CAPACITY:
            raise ConfigValidationError(
                f"max_concurrent_commands must be between {MIN_CAPACITY} and "
                f"{MAX_CAPACITY}, got {capacity}"
            )
        self._capacity = capacity
        self._default_timeout = default_timeout
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_flight = 0
        self._peak_in_flight = 0
        self._rejected = 0

    @classmethod
    def from_config(cls) -> "ConcurrencyGate":
        return cls(
            capacity=Config.MAX_CONCURRENT_COMMANDS,
            default_timeout=Config.ADMISSION_TIMEOUT_SECONDS,
        )

    # ----- introspection ----- #

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def available(self) -> int:
        return self._capacity - self._in_flight

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    @property
    def rejected_count(self) -> int:
        return self._rejected

    # ----- acquisition ----- #

    async def try_acquire(self, timeout: Optional[float] = None) -> Optional[Permit]:
        """
        Wait up to ``timeout`` seconds for a permit.

        Returns
        -------
        Optional[Permit]
            A permit, or None if the gate stayed full (rejected).
        """
        wait_for = self._default_timeout if timeout is None else timeout

        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=wait_for)
        except asyncio.TimeoutError:
            self._rejected += 1
            logger.warning(
                "Admission rejected, gate full",
                extra={
                    "capacity": self._capacity,
                    "in_flight": self._in_flight,
                    "timeout_seconds": wait_for,
                    "rejected_total": self._rejected,
                },
            )
            return None

        self._in_flight += 1
        self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        return Permit(self)

    @asynccontextmanager
    async def admit(self, timeout: Optional[float] = None) -> AsyncIterator[Permit]:
        """
        Scoped permit.

        Raises
        ------
        AdmissionRejectedError
            If no permit frees up in time.
        """
        permit = await self.try_acquire(timeout)
        if permit is None:
            raise AdmissionRejectedError(
                self._default_timeout if timeout is None else timeout, self._capacity
            )
        try:
            yield permit
        finally:
            if not permit.detached:
                permit.release()

    def _release(self) -> None:
        self._in_flight -= 1
        self._semaphore.release()
