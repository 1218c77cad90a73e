"""
Interaction dispatcher for relaybot.

Purpose
-------
Run one inbound interaction through the dispatch protocol:

    admit -> resolve -> execute under deadline -> respond on failure
          -> release permit -> record statistics

and consume the gateway's interaction channel, one task per interaction.

Responsibilities
----------------
- Bound concurrent handlers through the ConcurrencyGate
- Answer "overloaded" / "unknown command" without running anything
- Cancel handlers that exceed the command timeout
- Map handler failures to fixed, ephemeral user messages
- Record every executed outcome in the StatisticsCollector
- Log every failure with command name, user id and elapsed time

Non-Responsibilities
--------------------
- Success responses (handlers answer for themselves)
- Lifecycle state (LifecycleCoordinator)
- Connecting or disconnecting the gateway (read-only access here)

Architecture Notes
------------------
- Each handler runs in its own task so a deadline can cancel it without
  cancelling the dispatch bookkeeping around it.
- A timed-out handler gets CANCEL_GRACE_SECONDS to unwind. One that
  ignores cancellation is abandoned: dispatch returns without it, but its
  permit stays held until it exits, so the gate still counts it.
- Per-interaction errors never propagate out of ``dispatch``; the only
  exception that escapes is cancellation of the dispatch itself.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional, Set

from relaybot.bot.gate import ConcurrencyGate, Permit
from relaybot.bot.registry import CommandContext, CommandHandler, CommandRegistry
from relaybot.bot.statistics import StatisticsCollector
from relaybot.core.config.config import Config
from relaybot.core.exceptions import ErrorSeverity
from relaybot.core.logging.logger import LogContext, get_logger
from relaybot.domain.exceptions import (
    AdmissionRejectedError,
    BadArgumentsError,
    PreconditionFailedError,
    RelayDomainException,
    UnknownCommandError,
)
from relaybot.domain.models import ErrorKind, ExecutionOutcome, InteractionRequest, OutcomeStatus
from relaybot.domain.responses import format_error_message, get_response_template
from relaybot.gateway.base import GatewayView, InteractionHandle, send_ephemeral
from relaybot.gateway.events import EventChannel, InteractionReceived

logger = get_logger(__name__)

CANCEL_GRACE_SECONDS = 0.1

_LOG_LEVELS = {
    ErrorSeverity.DEBUG: 10,
    ErrorSeverity.INFO: 20,
    ErrorSeverity.WARNING: 30,
    ErrorSeverity.ERROR: 40,
    ErrorSeverity.CRITICAL: 50,
}


class InteractionDispatcher:
    """
    Admission-controlled, deadline-bounded command dispatcher.

    Parameters
    ----------
    registry:
        Command lookup; sealed when ``serve`` starts.
    gate:
        Concurrency gate shared by all commands.
    statistics:
        Collector receiving every executed outcome.
    gateway:
        Read-only gateway view passed to handlers.
    command_timeout_seconds:
        Handler deadline.
    admission_timeout_seconds:
        How long to wait for a permit before answering "overloaded".
    response_timeout_seconds:
        Upper bound on sending an error response.
    """

    def __init__(
        self,
        registry: CommandRegistry,
        gate: ConcurrencyGate,
        statistics: StatisticsCollector,
        gateway: GatewayView,
        command_timeout_seconds: float = 30.0,
        admission_timeout_seconds: float = 1.0,
        response_timeout_seconds: float = 5.0,
    ) -> None:
        if command_timeout_seconds <= 0:
            raise ValueError("command_timeout_seconds must be positive")

        self._registry = registry
        self._gate = gate
        self._statistics = statistics
        self._gateway = gateway
        self._command_timeout = command_timeout_seconds
        self._admission_timeout = admission_timeout_seconds
        self._response_timeout = response_timeout_seconds

        self._dispatch_tasks: Set[asyncio.Task[None]] = set()
        self._abandoned: Set[asyncio.Task[None]] = set()
        self._accepting = False

    @classmethod
    def from_config(
        cls,
        registry: CommandRegistry,
        gate: ConcurrencyGate,
        statistics: StatisticsCollector,
        gateway: GatewayView,
    ) -> "InteractionDispatcher":
        return cls(
            registry,
            gate,
            statistics,
            gateway,
            command_timeout_seconds=float(Config.COMMAND_TIMEOUT_SECONDS),
            admission_timeout_seconds=Config.ADMISSION_TIMEOUT_SECONDS,
        )

    @property
    def in_flight(self) -> int:
        return len(self._dispatch_tasks)

    @property
    def abandoned(self) -> int:
        return len(self._abandoned)

    @property
    def accepting(self) -> bool:
        return self._accepting

    # ═══════════════════════════════════════════════════════════════════════
    # DISPATCH
    # ═══════════════════════════════════════════════════════════════════════

    async def dispatch(self, request: InteractionRequest, handle: InteractionHandle) -> ExecutionOutcome:
        """
        Run one interaction through admission, execution and bookkeeping.

        Returns
        -------
        ExecutionOutcome
            REJECTED / UNKNOWN_COMMAND when no handler ran, otherwise
            SUCCESS / FAILURE / TIMEOUT.
        """
        started = time.perf_counter()
        name = request.command_name

        async with LogContext(
            user_id=request.user_id,
            guild_id=request.guild_id,
            command=name,
            component="dispatcher",
        ):
            try:
                async with self._gate.admit(self._admission_timeout) as permit:
                    outcome = await self._run_admitted(request, handle, started, permit)
            except AdmissionRejectedError as e:
                outcome = self._outcome(
                    OutcomeStatus.REJECTED, name, started, ErrorKind.ADMISSION_REJECTED, e
                )
                self._log_outcome(outcome, request)
                await self._emit_error(handle, ErrorKind.ADMISSION_REJECTED)
                return outcome

            self._statistics.record(outcome)
            self._log_outcome(outcome, request)
            return outcome

    async def _run_admitted(
        self,
        request: InteractionRequest,
        handle: InteractionHandle,
        started: float,
        permit: Permit,
    ) -> ExecutionOutcome:
        name = request.command_name
        try:
            handler = self._registry.resolve(name)
        except UnknownCommandError as e:
            outcome = self._outcome(
                OutcomeStatus.UNKNOWN_COMMAND, name, started, ErrorKind.UNKNOWN_COMMAND, e
            )
            await self._emit_error(handle, ErrorKind.UNKNOWN_COMMAND)
            return outcome

        return await self._execute(handler, request, handle, started, permit)

    async def _execute(
        self,
        handler: CommandHandler,
        request: InteractionRequest,
        handle: InteractionHandle,
        started: float,
        permit: Permit,
    ) -> ExecutionOutcome:
        name = request.command_name
        context = CommandContext(handle=handle, gateway=self._gateway)
        task = asyncio.create_task(
            handler.execute(request, context),
            name=f"command:{name}:{request.interaction_id}",
        )

        try:
            done, _ = await asyncio.wait({task}, timeout=self._command_timeout)
        except asyncio.CancelledError:
            task.cancel()
            self._abandon(task, name, permit)
            raise

        if not done:
            task.cancel()
            try:
                await asyncio.wait({task}, timeout=CANCEL_GRACE_SECONDS)
            finally:
                self._abandon(task, name, permit)
            outcome = self._outcome(OutcomeStatus.TIMEOUT, name, started, ErrorKind.COMMAND_TIMEOUT)
            await self._emit_error(handle, ErrorKind.COMMAND_TIMEOUT)
            return outcome

        if task.cancelled():
            outcome = self._outcome(OutcomeStatus.FAILURE, name, started, ErrorKind.HANDLER_FAULT)
            await self._emit_error(handle, ErrorKind.HANDLER_FAULT)
            return outcome

        error = task.exception()
        if error is None:
            return self._outcome(OutcomeStatus.SUCCESS, name, started)

        kind = self._classify(error)
        outcome = self._outcome(OutcomeStatus.FAILURE, name, started, kind, error)
        await self._emit_error(handle, kind)
        return outcome

    @staticmethod
    def _classify(error: BaseException) -> ErrorKind:
        if isinstance(error, PreconditionFailedError):
            return ErrorKind.PRECONDITION_FAILED
        if isinstance(error, BadArgumentsError):
            return ErrorKind.BAD_ARGUMENTS
        return ErrorKind.HANDLER_FAULT

    @staticmethod
    def _outcome(
        status: OutcomeStatus,
        name: str,
        started: float,
        kind: Optional[ErrorKind] = None,
        error: Optional[BaseException] = None,
    ) -> ExecutionOutcome:
        return ExecutionOutcome(
            status=status,
            command_name=name,
            elapsed_ms=(time.perf_counter() - started) * 1000,
            error_kind=kind,
            error=error,
        )

    # ----- abandoned handlers ----- #

    def _abandon(self, task: asyncio.Task[None], name: str, permit: Permit) -> None:
        if task.done():
            self._reap(task, name)
            return
        permit.detach()
        self._abandoned.add(task)
        task.add_done_callback(lambda t: self._reap(t, name, permit))
        logger.warning(
            "Handler still running after cancellation, keeping its permit until it exits",
            extra={"command_name": name, "abandoned": len(self._abandoned)},
        )

    def _reap(self, task: asyncio.Task[None], name: str, permit: Optional[Permit] = None) -> None:
        self._abandoned.discard(task)
        if permit is not None:
            permit.release()
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(
                "Abandoned handler finished with error",
                extra={
                    "command_name": name,
                    "error": str(error),
                    "error_type": type(error).__name__,
                },
            )

    # ----- responses & logging ----- #

    async def _emit_error(self, handle: InteractionHandle, kind: ErrorKind) -> None:
        try:
            await asyncio.wait_for(
                send_ephemeral(handle, format_error_message(kind)),
                timeout=self._response_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Failed to send error response",
                extra={
                    "error_kind": kind.value,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )

    def _log_outcome(self, outcome: ExecutionOutcome, request: InteractionRequest) -> None:
        extra = {
            "command_name": outcome.command_name,
            "user_id": request.user_id,
            "interaction_id": request.interaction_id,
            "status": outcome.status.value,
            "elapsed_ms": round(outcome.elapsed_ms, 2),
        }

        if outcome.status == OutcomeStatus.SUCCESS:
            logger.info("Command executed", extra=extra)
            return

        kind = outcome.error_kind or ErrorKind.HANDLER_FAULT
        extra["error_kind"] = kind.value
        if outcome.error is not None:
            extra["error"] = str(outcome.error)
            extra["error_type"] = type(outcome.error).__name__

        if isinstance(outcome.error, RelayDomainException):
            level = _LOG_LEVELS[outcome.error.severity]
        else:
            level = _LOG_LEVELS[get_response_template(kind).severity]

        exc_info = outcome.error if kind == ErrorKind.HANDLER_FAULT and outcome.error is not None else None
        logger.log(level, "Command did not succeed", extra=extra, exc_info=exc_info)

    # ═══════════════════════════════════════════════════════════════════════
    # SERVING
    # ═══════════════════════════════════════════════════════════════════════

    async def serve(self, channel: EventChannel[InteractionReceived]) -> None:
        """
        Dispatch every event from ``channel`` until it closes or ``close``
        is called. Seals the registry first.
        """
        self._registry.seal()
        self._accepting = True
        logger.info(
            "Dispatcher serving",
            extra={
                "commands": len(self._registry),
                "capacity": self._gate.capacity,
                "command_timeout_seconds": self._command_timeout,
            },
        )

        async for event in channel:
            if not self._accepting:
                logger.warning(
                    "Interaction received while dispatcher closing, rejecting",
                    extra={
                        "command_name": event.request.command_name,
                        "user_id": event.request.user_id,
                    },
                )
                await self._emit_error(event.handle, ErrorKind.ADMISSION_REJECTED)
                continue
            self._spawn(event)

        self._accepting = False
        logger.info("Interaction channel closed, dispatcher stopped serving")

    def _spawn(self, event: InteractionReceived) -> None:
        task = asyncio.create_task(
            self._dispatch_detached(event),
            name=f"dispatch:{event.request.interaction_id}",
        )
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    async def _dispatch_detached(self, event: InteractionReceived) -> None:
        try:
            await self.dispatch(event.request, event.handle)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Dispatch crashed",
                extra={
                    "command_name": event.request.command_name,
                    "user_id": event.request.user_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )

    async def close(self, drain_timeout: float = 10.0) -> None:
        """Stop accepting, wait for in-flight dispatches, cancel stragglers."""
        self._accepting = False

        pending = set(self._dispatch_tasks)
        if pending:
            logger.info("Draining in-flight dispatches", extra={"in_flight": len(pending)})
            _, pending = await asyncio.wait(pending, timeout=drain_timeout)

        if pending:
            logger.warning("Cancelling dispatches after drain timeout", extra={"remaining": len(pending)})
            for task in pending:
                task.cancel()
            await asyncio.wait(pending, timeout=1.0)

        abandoned = set(self._abandoned)
        for task in abandoned:
            task.cancel()
        if abandoned:
            await asyncio.wait(abandoned, timeout=1.0)

        logger.info("Dispatcher closed", extra={"abandoned_handlers": len(self._abandoned)})
