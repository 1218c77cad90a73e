"""
Bot Lifecycle Coordination for relaybot

Purpose
-------
Drive the bot through STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED
(or ERROR), reacting to gateway connection events and owning the startup
and shutdown ordering.

Responsibilities
----------------
- Login and connect through the injected resilience policy
- Wait for the gateway to report ready, with a ceiling
- Register commands once RUNNING
- Escalate a lost connection to ERROR after a grace period
- Request hosting-level shutdown exactly once when RUNNING turns into ERROR
- Tear the gateway down on stop
- Assemble live BotStatistics

Non-Responsibilities
--------------------
- Dispatching interactions (InteractionDispatcher)
- Websocket reconnect/backoff (the gateway client)
- Process signals (relaybot.main)

Architecture Notes
------------------
- The coordinator is the only caller of ``StatusTracker.transition``.
- Gateway callbacks never reach here directly: connection events arrive
  as messages via ``pump_events`` / ``handle_event``.
- start() and stop() are serialized by an asyncio.Lock; cancelling a
  start (shutdown during startup) leaves STARTING, which stop() handles.
- From STARTING or ERROR, stop() tears down and goes straight to STOPPED:
  STOPPING is only reachable from RUNNING.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from relaybot.bot.registry import CommandRegistry, RegistrationTarget
from relaybot.bot.statistics import MemoryProbe, StatisticsCollector, process_memory_bytes
from relaybot.bot.status import StatusTracker
from relaybot.core.config.config import Config
from relaybot.core.exceptions import ConnectFailedError, LifecycleError, ReadyTimeoutError
from relaybot.core.logging.logger import get_logger
from relaybot.core.resilience.retry_policy import PassthroughPolicy, ResiliencePolicy
from relaybot.domain.models import BotStatistics, LifecycleState, StatusChange
from relaybot.gateway.base import GatewayClient
from relaybot.gateway.events import (
    ConnectionEvent,
    ConnectionState,
    ConnectionStateChanged,
    EventChannel,
    GatewayReady,
)

logger = get_logger(__name__)

ShutdownRequester = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class LifecycleSettings:
    """Tunables for the lifecycle coordinator."""

    registration_target: Optional[RegistrationTarget] = None
    ready_timeout_seconds: float = 120.0
    ready_poll_interval_seconds: float = 1.0
    disconnect_grace_seconds: float = 10.0
    version: str = "0.0.1"

    @classmethod
    def from_config(cls) -> "LifecycleSettings":
        if Config.REGISTER_COMMANDS_GLOBALLY:
            target: Optional[RegistrationTarget] = RegistrationTarget.global_()
        elif Config.DISCORD_DEV_GUILD_ID is not None:
            target = RegistrationTarget.guild(Config.DISCORD_DEV_GUILD_ID)
        else:
            target = None

        return cls(
            registration_target=target,
            ready_timeout_seconds=float(Config.READY_TIMEOUT_SECONDS),
            disconnect_grace_seconds=float(Config.DISCONNECT_GRACE_SECONDS),
            version=Config.BOT_VERSION,
        )


@dataclass
class StartupMetrics:
    """Timings collected during startup, in milliseconds."""

    connect_ms: float = 0.0
    ready_ms: float = 0.0
    registration_ms: float = 0.0

    @property
    def total_ms(self) -> float:
        return self.connect_ms + self.ready_ms + self.registration_ms


class LifecycleCoordinator:
    """
    Sole driver of lifecycle transitions.

    Parameters
    ----------
    gateway:
        Gateway client to connect and tear down.
    tracker:
        Status tracker this coordinator writes to.
    registry:
        Commands to register once RUNNING.
    statistics:
        Counters used to build BotStatistics.
    settings:
        Lifecycle tunables.
    policy:
        Resilience policy wrapping login/connect/registration.
    shutdown_requester:
        Called once with a reason when the hosting process should stop.
    memory_probe:
        Process memory reader for statistics.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        tracker: StatusTracker,
        registry: CommandRegistry,
        statistics: StatisticsCollector,
        settings: Optional[LifecycleSettings] = None,
        policy: Optional[ResiliencePolicy] = None,
        shutdown_requester: Optional[ShutdownRequester] = None,
        memory_probe: MemoryProbe = process_memory_bytes,
    ) -> None:
        self._gateway = gateway
        self._tracker = tracker
        self._registry = registry
        self._statistics = statistics
        self._settings = settings or LifecycleSettings()
        self._policy: ResiliencePolicy = policy or PassthroughPolicy()
        self._shutdown_requester = shutdown_requester
        self._memory_probe = memory_probe

        self._lock = asyncio.Lock()
        self._shutdown_event = asyncio.Event()
        self._shutdown_reason: Optional[str] = None
        self._grace_task: Optional[asyncio.Task[None]] = None
        self.startup_metrics = StartupMetrics()

        self._unsubscribe = tracker.subscribe(self._on_status_change)

    # ═══════════════════════════════════════════════════════════════════════
    # STATE
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def state(self) -> LifecycleState:
        return self._tracker.current

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_event.is_set()

    @property
    def shutdown_reason(self) -> Optional[str]:
        return self._shutdown_reason

    async def wait_for_shutdown(self) -> str:
        await self._shutdown_event.wait()
        return self._shutdown_reason or "unknown"

    def request_shutdown(self, reason: str) -> None:
        """Ask the hosting process to stop. Only the first request counts."""
        if self._shutdown_event.is_set():
            logger.debug("Shutdown already requested", extra={"reason": reason})
            return

        self._shutdown_reason = reason
        self._shutdown_event.set()
        logger.warning("Shutdown requested", extra={"reason": reason})

        if self._shutdown_requester is not None:
            try:
                self._shutdown_requester(reason)
            except Exception as e:
                logger.error(
                    "Shutdown requester raised",
                    extra={"error": str(e), "error_type": type(e).__name__},
                    exc_info=True,
                )

    def _on_status_change(self, change: StatusChange) -> None:
        logger.info(
            "Bot status changed",
            extra={
                "previous": change.previous.value,
                "new": change.new.value,
                "reason": change.message,
                "cause": str(change.cause) if change.cause else None,
            },
        )
        if change.previous == LifecycleState.RUNNING and change.new == LifecycleState.ERROR:
            self.request_shutdown(f"bot entered error state: {change.message}")

    # ═══════════════════════════════════════════════════════════════════════
    # START
    # ═══════════════════════════════════════════════════════════════════════

    async def start(self) -> None:
        """
        Login and connect. No-op (with a warning) unless STOPPED.

        Raises
        ------
        ConnectFailedError
            After moving to ERROR, if login or connect fails.
        """
        async with self._lock:
            current = self._tracker.current
            if current != LifecycleState.STOPPED:
                logger.warning("Start requested while not stopped", extra={"state": current.value})
                return

            self._tracker.transition(LifecycleState.STARTING, "Starting bot")
            started = time.perf_counter()

            try:
                await self._policy.execute(self._gateway.login, "gateway.login")
                await self._policy.execute(self._gateway.connect, "gateway.connect")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._tracker.transition(LifecycleState.ERROR, "Failed to start bot", cause=e)
                if isinstance(e, ConnectFailedError):
                    raise
                raise ConnectFailedError(
                    "start failed", cause=e, is_retryable=getattr(e, "is_retryable", None)
                ) from e

            self.startup_metrics.connect_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "Gateway login and connect issued",
                extra={"elapsed_ms": round(self.startup_metrics.connect_ms, 2)},
            )

    # ═══════════════════════════════════════════════════════════════════════
    # CONNECTION EVENTS
    # ═══════════════════════════════════════════════════════════════════════

    async def pump_events(self, channel: EventChannel[ConnectionEvent]) -> None:
        """Feed connection events to ``handle_event`` until the channel closes."""
        async for event in channel:
            self.handle_event(event)

    def handle_event(self, event: ConnectionEvent) -> None:
        current = self._tracker.current

        if isinstance(event, GatewayReady):
            self._cancel_grace()
            if current == LifecycleState.STARTING:
                self._tracker.transition(LifecycleState.RUNNING, "Gateway ready")
                logger.info(
                    "Bot is ready",
                    extra={"user": event.user_name, "guild_count": event.guild_count},
                )
            return

        if not isinstance(event, ConnectionStateChanged):
            logger.warning("Unknown connection event", extra={"event_type": type(event).__name__})
            return

        if event.state == ConnectionState.CONNECTED:
            if self._grace_task is not None:
                logger.info("Gateway reconnected within grace period")
            self._cancel_grace()
            return

        if event.state != ConnectionState.DISCONNECTED:
            return

        if current == LifecycleState.STARTING and event.error is not None:
            self._tracker.transition(
                LifecycleState.ERROR, "Gateway connection failed during startup", cause=event.error
            )
            return

        if current != LifecycleState.RUNNING:
            return

        grace = self._settings.disconnect_grace_seconds
        if grace <= 0:
            self._tracker.transition(
                LifecycleState.ERROR, "Gateway disconnected", cause=event.error
            )
            return

        if self._grace_task is None:
            logger.warning("Gateway disconnected, waiting for reconnect", extra={"grace_seconds": grace})
            self._grace_task = asyncio.create_task(
                self._escalate_after_grace(grace, event.error), name="disconnect-grace"
            )

    async def _escalate_after_grace(self, grace: float, cause: Optional[BaseException]) -> None:
        await asyncio.sleep(grace)
        self._grace_task = None

        if (
            self._tracker.current == LifecycleState.RUNNING
            and self._gateway.connection_state != ConnectionState.CONNECTED
        ):
            self._tracker.transition(
                LifecycleState.ERROR,
                f"Gateway disconnected for more than {grace:g}s",
                cause=cause,
            )

    def _cancel_grace(self) -> None:
        if self._grace_task is not None:
            self._grace_task.cancel()
            self._grace_task = None

    # ═══════════════════════════════════════════════════════════════════════
    # READY / REGISTRATION / RUN
    # ═══════════════════════════════════════════════════════════════════════

    async def wait_until_running(
        self,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> None:
        """
        Poll until RUNNING.

        Raises
        ------
        ReadyTimeoutError
            If the ceiling passes first.
        LifecycleError
            If the bot reaches ERROR or STOPPED first.
        """
        ceiling = self._settings.ready_timeout_seconds if timeout is None else timeout
        interval = self._settings.ready_poll_interval_seconds if poll_interval is None else poll_interval

        loop = asyncio.get_running_loop()
        deadline = loop.time() + ceiling

        while True:
            state = self._tracker.current
            if state == LifecycleState.RUNNING:
                return
            if state.is_resting:
                raise LifecycleError(
                    f"Bot entered {state.name} while waiting for ready",
                    details={"state": state.value},
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ReadyTimeoutError(ceiling)
            await asyncio.sleep(min(interval, remaining))

    async def register_commands(self) -> None:
        """
        Register every command with the configured target.

        Raises
        ------
        LifecycleError
            If called before the bot is RUNNING.
        RegistrationFailedError
            When the policy gives up.
        """
        if self._tracker.current != LifecycleState.RUNNING:
            raise LifecycleError(
                "Commands can only be registered while RUNNING",
                details={"state": self._tracker.current.value},
            )

        target = self._settings.registration_target
        if target is None:
            logger.warning(
                "No command registration target configured "
                "(set REGISTER_COMMANDS_GLOBALLY or DISCORD_DEV_GUILD_ID)"
            )
            return

        await self._policy.execute(
            lambda: self._registry.register_all_to_platform(self._gateway, target),
            "commands.register",
        )

    async def run(self) -> None:
        """
        Start, wait for ready, register commands, then block until shutdown
        is requested. Any failure requests shutdown and is re-raised.
        """
        try:
            await self.start()

            ready_started = time.perf_counter()
            await self.wait_until_running()
            self.startup_metrics.ready_ms = (time.perf_counter() - ready_started) * 1000

            registration_started = time.perf_counter()
            await self.register_commands()
            self.startup_metrics.registration_ms = (time.perf_counter() - registration_started) * 1000

            logger.info(
                "Bot started",
                extra={
                    "connect_ms": round(self.startup_metrics.connect_ms, 2),
                    "ready_ms": round(self.startup_metrics.ready_ms, 2),
                    "registration_ms": round(self.startup_metrics.registration_ms, 2),
                    "total_ms": round(self.startup_metrics.total_ms, 2),
                    "commands": len(self._registry),
                },
            )

            reason = await self.wait_for_shutdown()
            logger.info("Run loop finished", extra={"reason": reason})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.critical(
                "Bot run failed",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            if not self._tracker.current.is_resting:
                self._tracker.transition(LifecycleState.ERROR, "Bot run failed", cause=e)
            self.request_shutdown(f"startup failed: {type(e).__name__}")
            raise

    # ═══════════════════════════════════════════════════════════════════════
    # STOP
    # ═══════════════════════════════════════════════════════════════════════

    async def stop(self) -> None:
        """
        Logout and disconnect. No-op (with a warning) if STOPPED or STOPPING.

        Raises
        ------
        Exception
            The teardown failure, after moving to ERROR.
        """
        async with self._lock:
            current = self._tracker.current
            if current in (LifecycleState.STOPPED, LifecycleState.STOPPING):
                logger.warning("Stop requested while already stopped", extra={"state": current.value})
                return

            self._cancel_grace()
            if current == LifecycleState.RUNNING:
                self._tracker.transition(LifecycleState.STOPPING, "Stopping bot")

            try:
                await self._gateway.logout()
                await self._gateway.disconnect()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._tracker.current != LifecycleState.ERROR:
                    self._tracker.transition(LifecycleState.ERROR, "Failed to stop bot", cause=e)
                raise

            self._tracker.transition(LifecycleState.STOPPED, "Bot stopped")

    def close(self) -> None:
        """Detach from the tracker and cancel background timers."""
        self._cancel_grace()
        self._unsubscribe()

    # ═══════════════════════════════════════════════════════════════════════
    # STATISTICS
    # ═══════════════════════════════════════════════════════════════════════

    def get_statistics(self) -> BotStatistics:
        return self._statistics.build_bot_statistics(
            status=self._tracker.current,
            gateway=self._gateway,
            version=self._settings.version,
            memory_probe=self._memory_probe,
        )
