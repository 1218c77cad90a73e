"""
Application Context (Kernel) - relaybot Orchestration
======================================================

Purpose
-------
Build every runtime component in dependency order, run the bot until a
shutdown is requested, and tear everything down in reverse order.

Responsibilities
----------------
- Construct gateway channels, gateway adapter, registry, gate, statistics,
  dispatcher, resilience policy, lifecycle coordinator and health reporting
- Explicitly register command modules (no discovery)
- Run the lifecycle, the interaction dispatcher and the connection event
  pump concurrently
- Coordinate graceful shutdown with structured, timed logging

Non-Responsibilities
--------------------
- Process signals and exit codes (relaybot.main)
- Lifecycle state decisions (LifecycleCoordinator)
- Command semantics (command modules)

Architecture Notes
------------------
Initialization Order (Critical):
    1. Event channels
    2. Gateway adapter
    3. CommandRegistry
    4. ConcurrencyGate + StatisticsCollector + InteractionDispatcher
    5. Resilience policy
    6. StatusTracker + LifecycleCoordinator
    7. Command modules
    8. Health checks + HealthServer

Shutdown Order (Reverse):
    1. HealthServer.stop()
    2. LifecycleCoordinator.stop()
    3. Close event channels, InteractionDispatcher.close()
    4. Event pump and coordinator timers

The gateway is built through an injectable factory so the whole context can
run against an in-memory gateway.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, List, Optional

from relaybot.bot.dispatcher import InteractionDispatcher
from relaybot.bot.gate import ConcurrencyGate
from relaybot.bot.lifecycle import LifecycleCoordinator, LifecycleSettings
from relaybot.bot.registry import CommandRegistry
from relaybot.bot.statistics import StatisticsCollector
from relaybot.bot.status import StatusTracker
from relaybot.core.config.config import Config
from relaybot.core.logging.logger import get_logger
from relaybot.core.resilience.retry_policy import ResiliencePolicy, RetryPolicy
from relaybot.gateway.base import GatewayClient
from relaybot.gateway.discord_gateway import DiscordGateway
from relaybot.gateway.events import ConnectionEvent, EventChannel, InteractionReceived
from relaybot.health.checks import (
    BotHealthCheck,
    ConnectionHealthCheck,
    HealthCheckRegistry,
    MemoryHealthCheck,
)
from relaybot.health.server import HealthServer
from relaybot.modules.utility.commands import UtilityCommands

logger = get_logger(__name__)

GatewayFactory = Callable[
    [EventChannel[InteractionReceived], EventChannel[ConnectionEvent]], GatewayClient
]

INTERACTION_QUEUE_SIZE = 1000
CONNECTION_EVENT_QUEUE_SIZE = 100


class ApplicationContext:
    """
    Kernel for component construction and lifecycle orchestration.

    Usage:
        context = ApplicationContext()
        await context.initialize()
        await context.run()  # Blocks until shutdown, then tears down
    """

    def __init__(
        self,
        gateway_factory: GatewayFactory = DiscordGateway.from_config,
        policy: Optional[ResiliencePolicy] = None,
        settings: Optional[LifecycleSettings] = None,
        enable_health_server: Optional[bool] = None,
    ) -> None:
        self._gateway_factory = gateway_factory
        self._policy_override = policy
        self._settings_override = settings
        self._enable_health_server = (
            Config.HEALTH_CHECKS_ENABLED if enable_health_server is None else enable_health_server
        )

        self.interactions: Optional[EventChannel[InteractionReceived]] = None
        self.connection_events: Optional[EventChannel[ConnectionEvent]] = None
        self.gateway: Optional[GatewayClient] = None
        self.registry: Optional[CommandRegistry] = None
        self.gate: Optional[ConcurrencyGate] = None
        self.statistics: Optional[StatisticsCollector] = None
        self.dispatcher: Optional[InteractionDispatcher] = None
        self.tracker: Optional[StatusTracker] = None
        self.coordinator: Optional[LifecycleCoordinator] = None
        self.health: Optional[HealthCheckRegistry] = None
        self.health_server: Optional[HealthServer] = None

        self._background: List[asyncio.Task[None]] = []
        self._initialized = False
        self._shut_down = False

        logger.debug("ApplicationContext created")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ========================================================================
    # INITIALIZATION
    # ========================================================================

    async def initialize(self) -> None:
        """
        Build every component in dependency order.

        Raises:
            RuntimeError: If already initialized or construction fails
        """
        if self._initialized:
            raise RuntimeError("ApplicationContext already initialized")

        logger.info("=" * 70)
        logger.info("APPLICATION CONTEXT INITIALIZATION")
        logger.info("=" * 70)

        start_time = time.perf_counter()

        try:
            self.interactions = EventChannel("interactions", maxsize=INTERACTION_QUEUE_SIZE)
            self.connection_events = EventChannel(
                "connection-events", maxsize=CONNECTION_EVENT_QUEUE_SIZE
            )

            self.gateway = self._gateway_factory(self.interactions, self.connection_events)
            logger.info("✓ Gateway adapter created")

            self.registry = CommandRegistry()
            self.gate = ConcurrencyGate.from_config()
            self.statistics = StatisticsCollector()
            self.dispatcher = InteractionDispatcher.from_config(
                self.registry, self.gate, self.statistics, self.gateway
            )
            logger.info(
                "✓ Dispatcher created",
                extra={
                    "capacity": self.gate.capacity,
                    "command_timeout_seconds": Config.COMMAND_TIMEOUT_SECONDS,
                },
            )

            policy = self._policy_override or RetryPolicy.from_config()
            settings = self._settings_override or LifecycleSettings.from_config()

            self.tracker = StatusTracker()
            self.coordinator = LifecycleCoordinator(
                self.gateway,
                self.tracker,
                self.registry,
                self.statistics,
                settings=settings,
                policy=policy,
            )
            logger.info(
                "✓ Lifecycle coordinator created",
                extra={"registration_target": getattr(settings.registration_target, "label", None)},
            )

            UtilityCommands(self.coordinator.get_statistics).register(self.registry)
            logger.info("✓ Commands registered", extra={"command_count": len(self.registry)})

            self.health = HealthCheckRegistry(
                [
                    BotHealthCheck(self.coordinator.get_statistics),
                    ConnectionHealthCheck.from_config(self.gateway),
                    MemoryHealthCheck.from_config(),
                ],
                timeout_seconds=float(Config.HEALTH_CHECK_TIMEOUT_SECONDS),
            )
            if self._enable_health_server:
                self.health_server = HealthServer.from_config(self.health)

            self._initialized = True
            total_time = (time.perf_counter() - start_time) * 1000

            logger.info("=" * 70)
            logger.info("✓ Application context initialized (%.2fms)", total_time)
            logger.info("=" * 70)

        except Exception as exc:
            logger.critical(
                "Application context initialization failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
                exc_info=True,
            )
            raise RuntimeError("Failed to initialize application context") from exc

    # ========================================================================
    # RUN
    # ========================================================================

    def request_shutdown(self, reason: str) -> None:
        if self.coordinator is None:
            logger.warning("Shutdown requested before initialization", extra={"reason": reason})
            return
        self.coordinator.request_shutdown(reason)

    async def run(self) -> None:
        """
        Run until shutdown is requested, then tear down.

        Startup failures are re-raised after teardown completes.
        """
        if not self._initialized:
            raise RuntimeError("Cannot run: ApplicationContext not initialized")

        assert self.coordinator is not None and self.dispatcher is not None

        if self.health_server is not None:
            try:
                await self.health_server.start()
            except OSError as exc:
                logger.error(
                    "Health server failed to start, continuing without it",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                )
                self.health_server = None

        self._spawn_background(self.dispatcher.serve(self.interactions), "dispatcher")
        self._spawn_background(self.coordinator.pump_events(self.connection_events), "event-pump")

        lifecycle = asyncio.create_task(self.coordinator.run(), name="lifecycle")
        shutdown_wait = asyncio.create_task(self.coordinator.wait_for_shutdown(), name="shutdown-wait")

        try:
            await asyncio.wait({lifecycle, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)

            if not lifecycle.done():
                # Shutdown requested while still starting up
                lifecycle.cancel()
            await asyncio.gather(lifecycle, return_exceptions=True)

            if not lifecycle.cancelled():
                error = lifecycle.exception()
                if error is not None:
                    raise error
        finally:
            shutdown_wait.cancel()
            await self.shutdown()

    def _spawn_background(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(self._on_background_done)
        self._background.append(task)

    def _on_background_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.critical(
                "Background task crashed",
                extra={
                    "task": task.get_name(),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=exc,
            )
            self.request_shutdown(f"{task.get_name()} crashed")

    # ========================================================================
    # GRACEFUL SHUTDOWN (Reverse Order)
    # ========================================================================

    async def shutdown(self) -> None:
        """Tear everything down in reverse order. Safe to call more than once."""
        if not self._initialized or self._shut_down:
            return
        self._shut_down = True

        logger.info("=" * 70)
        logger.info("APPLICATION CONTEXT SHUTDOWN")
        logger.info("=" * 70)

        if self.health_server is not None:
            try:
                await self.health_server.stop()
                logger.info("✓ Health server stopped")
            except Exception as exc:
                logger.error(
                    "Error stopping health server",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )

        if self.coordinator is not None:
            try:
                await self.coordinator.stop()
                logger.info("✓ Lifecycle coordinator stopped")
            except Exception as exc:
                logger.error(
                    "Error stopping bot",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )

        if self.interactions is not None:
            self.interactions.close()
        if self.connection_events is not None:
            self.connection_events.close()

        if self.dispatcher is not None:
            try:
                await self.dispatcher.close()
                logger.info("✓ Dispatcher closed")
            except Exception as exc:
                logger.error(
                    "Error closing dispatcher",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )

        if self._background:
            _, pending = await asyncio.wait(self._background, timeout=5.0)
            for task in pending:
                task.cancel()
            self._background.clear()

        if self.coordinator is not None:
            self.coordinator.close()

        if self.statistics is not None:
            logger.info("Final dispatch statistics", extra=self.statistics.summary())

        logger.info("=" * 70)
        logger.info("✓ Application context shutdown complete")
        logger.info("=" * 70)
