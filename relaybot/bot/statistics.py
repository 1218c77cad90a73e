"""
Dispatch statistics for relaybot.

Purpose
-------
Count completed dispatches per command and in aggregate, and assemble the
live ``BotStatistics`` view used by the stats command and health checks.

Responsibilities
----------------
- Record SUCCESS / FAILURE / TIMEOUT outcomes atomically
- Produce consistent snapshots without exposing the lock
- Combine counters with live gateway and process readings

Non-Responsibilities
--------------------
- Counting requests that never reached a handler (rejected, unknown)
- Persistence: counters reset on restart

Architecture Notes
------------------
- A private threading.Lock guards the counters so snapshots are consistent
  even if read from a health-check thread; callers never lock.
- Uptime, gateway figures and memory are read at query time, never stored.
- Memory is read through an injectable probe; the default asks psutil for
  the resident set size of this process.
"""

from __future__ import annotations

import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import psutil

from relaybot.core.logging.logger import get_logger
from relaybot.domain.models import (
    BotStatistics,
    ExecutionOutcome,
    LifecycleState,
    OutcomeStatus,
    StatisticsSnapshot,
)
from relaybot.gateway.base import GatewayView
from relaybot.gateway.events import ConnectionState

logger = get_logger(__name__)

MemoryProbe = Callable[[], int]
Clock = Callable[[], datetime]


def process_memory_bytes() -> int:
    """Resident set size of the current process, in bytes."""
    return psutil.Process().memory_info().rss


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatisticsCollector:
    """Thread-safe dispatch counters."""

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._started_at = clock()
        self._command_counts: Counter[str] = Counter()
        self._commands_executed = 0
        self._failures = 0
        self._timeouts = 0

    @property
    def started_at(self) -> datetime:
        return self._started_at

    def record(self, outcome: ExecutionOutcome) -> None:
        """Record one completed dispatch; non-executed outcomes are ignored."""
        if not outcome.status.was_executed:
            return

        with self._lock:
            if outcome.status == OutcomeStatus.SUCCESS:
                self._commands_executed += 1
                self._command_counts[outcome.command_name] += 1
            elif outcome.status == OutcomeStatus.TIMEOUT:
                self._timeouts += 1
            else:
                self._failures += 1

    @property
    def commands_executed(self) -> int:
        with self._lock:
            return self._commands_executed

    def snapshot(self) -> StatisticsSnapshot:
        with self._lock:
            return StatisticsSnapshot(
                command_counts=dict(self._command_counts),
                commands_executed=self._commands_executed,
                failures=self._failures,
                timeouts=self._timeouts,
                started_at=self._started_at,
            )

    # ═══════════════════════════════════════════════════════════════════════
    # DERIVED VIEW
    # ═══════════════════════════════════════════════════════════════════════

    def build_bot_statistics(
        self,
        status: LifecycleState,
        gateway: Optional[GatewayView],
        version: str,
        memory_probe: MemoryProbe = process_memory_bytes,
    ) -> BotStatistics:
        """
        Combine counters with live readings.

        Guild/user counts and latency are only reported while the gateway is
        connected; otherwise they are None.
        """
        snap = self.snapshot()

        guild_count: Optional[int] = None
        user_count: Optional[int] = None
        latency_ms: Optional[float] = None
        if gateway is not None and gateway.connection_state == ConnectionState.CONNECTED:
            guild_count = gateway.guild_count
            user_count = gateway.user_count
            latency_ms = gateway.latency_ms

        return BotStatistics(
            status=status,
            uptime=self._clock() - snap.started_at,
            commands_executed=snap.commands_executed,
            memory_bytes=memory_probe(),
            version=version,
            guild_count=guild_count,
            user_count=user_count,
            latency_ms=latency_ms,
            command_counts=snap.command_counts,
        )

    def summary(self) -> Dict[str, object]:
        snap = self.snapshot()
        return {
            "commands_executed": snap.commands_executed,
            "failures": snap.failures,
            "timeouts": snap.timeouts,
            "distinct_commands": len(snap.command_counts),
        }
