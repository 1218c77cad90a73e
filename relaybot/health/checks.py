"""
Health reporters for relaybot.

Purpose
-------
Answer "is the bot healthy?" for external monitors, per component and in
aggregate, without ever raising.

Components
----------
- bot:        lifecycle state plus live statistics
- connection: gateway connection/login state and latency
- memory:     process resident memory against a threshold

Health Status Hierarchy
-----------------------
- **HEALTHY**: operating normally
- **DEGRADED**: up but transitioning or performing poorly
- **UNHEALTHY**: down, failed, or the check itself could not run

Health Check Strategy
---------------------
- Every reporter is a pure read of current state
- A reporter that fails internally returns UNHEALTHY with the reason
- ``HealthCheckRegistry.check_all`` runs reporters concurrently under a
  timeout and reports the worst status

Report Structure
----------------
{
    "status": "HEALTHY" | "DEGRADED" | "UNHEALTHY",
    "timestamp": float,
    "duration_ms": float,
    "components": {"bot": {...}, "connection": {...}, "memory": {...}},
    "errors": [str, ...]
}
"""

from __future__ import annotations

import asyncio
import gc
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from relaybot.bot.statistics import MemoryProbe, process_memory_bytes
from relaybot.core.config.config import Config
from relaybot.core.logging.logger import get_logger
from relaybot.domain.models import BotStatistics, LifecycleState
from relaybot.gateway.base import GatewayView
from relaybot.gateway.events import ConnectionState, LoginState

logger = get_logger(__name__)

BYTES_PER_MB = 1024 * 1024
MEMORY_DEGRADED_RATIO = 0.8


class HealthStatus(Enum):
    """Health status, ordered from best to worst."""

    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    UNHEALTHY = "UNHEALTHY"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


def worst_status(statuses: Sequence[HealthStatus]) -> HealthStatus:
    if not statuses:
        return HealthStatus.HEALTHY
    return max(statuses, key=lambda s: s.rank)


@dataclass(frozen=True, slots=True)
class HealthCheckResult:
    status: HealthStatus
    description: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def healthy(cls, description: str, data: Optional[Dict[str, Any]] = None) -> "HealthCheckResult":
        return cls(HealthStatus.HEALTHY, description, data or {})

    @classmethod
    def degraded(cls, description: str, data: Optional[Dict[str, Any]] = None) -> "HealthCheckResult":
        return cls(HealthStatus.DEGRADED, description, data or {})

    @classmethod
    def unhealthy(
        cls,
        description: str,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> "HealthCheckResult":
        return cls(
            HealthStatus.UNHEALTHY,
            description,
            data or {},
            error=f"{type(error).__name__}: {error}" if error is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "status": self.status.value,
            "description": self.description,
            "data": self.data,
        }
        if self.error is not None:
            result["error"] = self.error
        return result


class HealthCheck(Protocol):
    name: str

    async def check_health(self) -> HealthCheckResult: ...


# ═════════════════════════════════════════════════════════════════════════════
# BOT
# ═════════════════════════════════════════════════════════════════════════════


class BotHealthCheck:
    """Maps lifecycle state to health and reports live statistics."""

    name = "bot"

    _BY_STATE = {
        LifecycleState.RUNNING: (HealthStatus.HEALTHY, "Bot is running normally"),
        LifecycleState.STARTING: (HealthStatus.DEGRADED, "Bot is starting up"),
        LifecycleState.STOPPING: (HealthStatus.DEGRADED, "Bot is shutting down"),
        LifecycleState.STOPPED: (HealthStatus.UNHEALTHY, "Bot is stopped"),
        LifecycleState.ERROR: (HealthStatus.UNHEALTHY, "Bot is in error state"),
    }

    def __init__(self, statistics_provider: Callable[[], BotStatistics]) -> None:
        self._statistics_provider = statistics_provider

    async def check_health(self) -> HealthCheckResult:
        try:
            stats = self._statistics_provider()
            status, description = self._BY_STATE[stats.status]
            return HealthCheckResult(status, description, stats.to_dict())
        except Exception as e:
            logger.error(
                "Bot health check failed",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            return HealthCheckResult.unhealthy("Bot health check failed", error=e)


# ═════════════════════════════════════════════════════════════════════════════
# CONNECTION
# ═════════════════════════════════════════════════════════════════════════════


class ConnectionHealthCheck:
    """Gateway connection health: connected, logged in and responsive."""

    name = "connection"

    def __init__(self, gateway: GatewayView, latency_degraded_ms: float = 1000.0) -> None:
        self._gateway = gateway
        self._latency_degraded_ms = latency_degraded_ms

    @classmethod
    def from_config(cls, gateway: GatewayView) -> "ConnectionHealthCheck":
        return cls(gateway, latency_degraded_ms=float(Config.LATENCY_DEGRADED_MS))

    async def check_health(self) -> HealthCheckResult:
        try:
            connection = self._gateway.connection_state
            login = self._gateway.login_state
            latency = self._gateway.latency_ms

            data = {
                "connection_state": connection.value,
                "login_state": login.value,
                "latency_ms": round(latency, 1) if latency is not None else None,
                "guild_count": self._gateway.guild_count,
                "shard_id": self._gateway.shard_id,
                "current_user": self._gateway.current_user_name,
            }

            if connection == ConnectionState.CONNECTED and login == LoginState.LOGGED_IN:
                if latency is not None and latency > self._latency_degraded_ms:
                    return HealthCheckResult.degraded(
                        f"High gateway latency: {latency:.0f}ms", data
                    )
                return HealthCheckResult.healthy("Gateway connection is healthy", data)

            if connection in (ConnectionState.CONNECTING, ConnectionState.DISCONNECTING):
                return HealthCheckResult.degraded(f"Gateway is {connection.value}", data)

            return HealthCheckResult.unhealthy(
                f"Gateway not connected (connection: {connection.value}, login: {login.value})",
                data,
            )
        except Exception as e:
            logger.error(
                "Connection health check failed",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            return HealthCheckResult.unhealthy("Connection health check failed", error=e)


# ═════════════════════════════════════════════════════════════════════════════
# MEMORY
# ═════════════════════════════════════════════════════════════════════════════


class MemoryHealthCheck:
    """Process memory against a threshold: DEGRADED above 80%, UNHEALTHY above 100%."""

    name = "memory"

    def __init__(self, threshold_mb: int = 512, probe: MemoryProbe = process_memory_bytes) -> None:
        self._threshold_mb = threshold_mb
        self._probe = probe

    @classmethod
    def from_config(cls) -> "MemoryHealthCheck":
        return cls(threshold_mb=Config.MEMORY_THRESHOLD_MB)

    async def check_health(self) -> HealthCheckResult:
        try:
            used_bytes = self._probe()
            used_mb = used_bytes / BYTES_PER_MB
            data = {
                "memory_mb": round(used_mb, 1),
                "threshold_mb": self._threshold_mb,
                "memory_bytes": used_bytes,
                "gc_collections": [gen["collections"] for gen in gc.get_stats()],
            }

            if used_mb > self._threshold_mb:
                return HealthCheckResult.unhealthy(
                    f"Memory usage {used_mb:.0f}MB exceeds threshold {self._threshold_mb}MB", data
                )
            if used_mb > self._threshold_mb * MEMORY_DEGRADED_RATIO:
                return HealthCheckResult.degraded(
                    f"Memory usage {used_mb:.0f}MB is approaching threshold {self._threshold_mb}MB",
                    data,
                )
            return HealthCheckResult.healthy(f"Memory usage is normal: {used_mb:.0f}MB", data)
        except Exception as e:
            logger.error(
                "Memory health check failed",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            return HealthCheckResult.unhealthy("Memory health check failed", error=e)


# ═════════════════════════════════════════════════════════════════════════════
# AGGREGATE
# ═════════════════════════════════════════════════════════════════════════════


class HealthCheckRegistry:
    """Runs every registered reporter concurrently under one timeout."""

    def __init__(self, checks: Sequence[HealthCheck] = (), timeout_seconds: float = 10.0) -> None:
        self._checks: Dict[str, HealthCheck] = {}
        self._timeout = timeout_seconds
        for check in checks:
            self.add(check)

    def add(self, check: HealthCheck) -> None:
        if check.name in self._checks:
            raise ValueError(f"Health check '{check.name}' already registered")
        self._checks[check.name] = check

    @property
    def names(self) -> List[str]:
        return list(self._checks)

    def get(self, name: str) -> Optional[HealthCheck]:
        return self._checks.get(name)

    async def _run_one(self, check: HealthCheck) -> HealthCheckResult:
        try:
            return await asyncio.wait_for(check.check_health(), timeout=self._timeout)
        except asyncio.TimeoutError:
            return HealthCheckResult.unhealthy(f"Health check timed out after {self._timeout:g}s")
        except Exception as e:
            return HealthCheckResult.unhealthy("Health check raised", error=e)

    async def check(self, name: str) -> HealthCheckResult:
        check = self._checks.get(name)
        if check is None:
            raise KeyError(name)
        return await self._run_one(check)

    async def check_all(self) -> Dict[str, Any]:
        """Run every reporter and build the aggregate report."""
        start_time = time.time()

        names = list(self._checks)
        results = await asyncio.gather(*(self._run_one(self._checks[n]) for n in names))
        components = dict(zip(names, results))

        overall = worst_status([r.status for r in results])
        errors = [
            f"{name}: {result.error or result.description}"
            for name, result in components.items()
            if result.status == HealthStatus.UNHEALTHY
        ]
        duration_ms = (time.time() - start_time) * 1000

        report = {
            "status": overall.value,
            "timestamp": time.time(),
            "duration_ms": round(duration_ms, 2),
            "components": {name: result.to_dict() for name, result in components.items()},
            "errors": errors,
        }

        logger.debug(
            "Health check completed",
            extra={
                "status": overall.value,
                "duration_ms": round(duration_ms, 2),
                "error_count": len(errors),
            },
        )
        return report
