"""
Core value types shared by the dispatch core.

Purpose
-------
Immutable records that flow between the gateway adapter, the dispatcher,
the lifecycle coordinator and the health reporters. Nothing here performs
I/O or holds locks.

Types
-----
- LifecycleState / StatusChange: bot lifecycle state and change events
- InteractionRequest: one inbound command invocation
- OutcomeStatus / ErrorKind / ExecutionOutcome: result of one dispatch
- StatisticsSnapshot: point-in-time copy of dispatch counters
- BotStatistics: live, derived view for /stats and health checks
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional


# ============================================================================
# Lifecycle
# ============================================================================


class LifecycleState(Enum):
    """Bot lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"

    @property
    def is_resting(self) -> bool:
        return self in (LifecycleState.STOPPED, LifecycleState.ERROR)


@dataclass(frozen=True, slots=True)
class StatusChange:
    """One lifecycle transition, delivered to StatusTracker observers."""

    previous: LifecycleState
    new: LifecycleState
    message: Optional[str] = None
    cause: Optional[BaseException] = field(default=None, compare=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# Interactions
# ============================================================================


@dataclass(frozen=True, slots=True)
class InteractionRequest:
    """
    An inbound command invocation.

    ``command_name`` is the full, normalised path ("utility ping" for a
    sub-command). ``options`` holds the parsed option values by name and
    ``raw`` the untouched platform payload.
    """

    interaction_id: int
    command_name: str
    user_id: int
    guild_id: Optional[int] = None
    channel_id: Optional[int] = None
    options: Mapping[str, Any] = field(default_factory=dict)
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def in_guild(self) -> bool:
        return self.guild_id is not None

    def option(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)


# ============================================================================
# Dispatch outcome
# ============================================================================


class OutcomeStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    # Never reached a handler; not recorded in statistics
    REJECTED = "rejected"
    UNKNOWN_COMMAND = "unknown_command"

    @property
    def was_executed(self) -> bool:
        return self in (OutcomeStatus.SUCCESS, OutcomeStatus.FAILURE, OutcomeStatus.TIMEOUT)


class ErrorKind(Enum):
    """User-facing error categories; each maps to one fixed message."""

    ADMISSION_REJECTED = "admission_rejected"
    UNKNOWN_COMMAND = "unknown_command"
    PRECONDITION_FAILED = "precondition_failed"
    BAD_ARGUMENTS = "bad_arguments"
    HANDLER_FAULT = "handler_fault"
    COMMAND_TIMEOUT = "command_timeout"


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    """Result of dispatching one interaction. Never persisted."""

    status: OutcomeStatus
    command_name: str
    elapsed_ms: float = 0.0
    error_kind: Optional[ErrorKind] = None
    error: Optional[BaseException] = field(default=None, compare=False, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS


# ============================================================================
# Statistics
# ============================================================================


@dataclass(frozen=True, slots=True)
class StatisticsSnapshot:
    """Consistent copy of the dispatch counters at one instant."""

    command_counts: Mapping[str, int]
    commands_executed: int
    failures: int
    timeouts: int
    started_at: datetime

    def count_for(self, command_name: str) -> int:
        return self.command_counts.get(command_name, 0)


@dataclass(frozen=True, slots=True)
class BotStatistics:
    """
    Live bot statistics.

    Uptime, gateway figures and memory are computed at query time.
    Guild/user counts and latency are None while disconnected.
    """

    status: LifecycleState
    uptime: timedelta
    commands_executed: int
    memory_bytes: int
    version: str
    guild_count: Optional[int] = None
    user_count: Optional[int] = None
    latency_ms: Optional[float] = None
    command_counts: Mapping[str, int] = field(default_factory=dict)

    @property
    def memory_mb(self) -> float:
        return self.memory_bytes / (1024 * 1024)

    def format_uptime(self) -> str:
        total = int(self.uptime.total_seconds())
        days, rem = divmod(total, 86_400)
        hours, rem = divmod(rem, 3600)
        minutes, seconds = divmod(rem, 60)
        return f"{days}d {hours:02d}h {minutes:02d}m {seconds:02d}s"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "uptime": self.format_uptime(),
            "uptime_seconds": round(self.uptime.total_seconds(), 1),
            "guild_count": self.guild_count,
            "user_count": self.user_count,
            "commands_executed": self.commands_executed,
            "latency_ms": round(self.latency_ms, 1) if self.latency_ms is not None else None,
            "memory_mb": round(self.memory_mb, 1),
            "version": self.version,
        }
