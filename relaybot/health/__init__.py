"""
Health reporting: per-component reporters, aggregation and HTTP exposure.
"""

from relaybot.health.checks import (
    BotHealthCheck,
    ConnectionHealthCheck,
    HealthCheck,
    HealthCheckRegistry,
    HealthCheckResult,
    HealthStatus,
    MemoryHealthCheck,
    worst_status,
)
from relaybot.health.server import HealthServer

__all__ = [
    "BotHealthCheck",
    "ConnectionHealthCheck",
    "HealthCheck",
    "HealthCheckRegistry",
    "HealthCheckResult",
    "HealthServer",
    "HealthStatus",
    "MemoryHealthCheck",
    "worst_status",
]
