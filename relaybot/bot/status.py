"""
Lifecycle status tracking for relaybot.

Purpose
-------
Own the single current ``LifecycleState`` and broadcast every change.

Responsibilities
----------------
- Enforce the lifecycle state graph on every transition
- Emit a ``StatusChange`` to subscribed observers after each mutation
- Isolate observer failures from the transitioning caller
- Provide a non-blocking read of the current state

Non-Responsibilities
--------------------
- Deciding when to transition (LifecycleCoordinator is the only writer)
- Scheduling slow reactions (observers spawn their own tasks)

State Graph
-----------
    STOPPED  -> STARTING
    STARTING -> RUNNING
    RUNNING  -> STOPPING
    any      -> STOPPED | ERROR      (failure / teardown)

Self-transitions are rejected. Only transitions into ERROR or STOPPED may
carry a failure cause.

Architecture Notes
------------------
- Single-writer discipline replaces locking: reads are plain attribute
  reads, writes happen only from the coordinator on the event loop.
- Observers are invoked synchronously in subscription order. One that
  takes longer than SLOW_OBSERVER_MS is logged; one that raises is logged
  and skipped.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, FrozenSet, List, Optional

from relaybot.core.exceptions import InvalidTransitionError
from relaybot.core.logging.logger import get_logger
from relaybot.domain.models import LifecycleState, StatusChange

logger = get_logger(__name__)

StatusObserver = Callable[[StatusChange], None]

SLOW_OBSERVER_MS = 50.0

_FAILURE_TARGETS: FrozenSet[LifecycleState] = frozenset(
    {LifecycleState.STOPPED, LifecycleState.ERROR}
)

_FORWARD_EDGES: Dict[LifecycleState, FrozenSet[LifecycleState]] = {
    LifecycleState.STOPPED: frozenset({LifecycleState.STARTING}),
    LifecycleState.STARTING: frozenset({LifecycleState.RUNNING}),
    LifecycleState.RUNNING: frozenset({LifecycleState.STOPPING}),
    LifecycleState.STOPPING: frozenset(),
    LifecycleState.ERROR: frozenset(),
}


def is_allowed(current: LifecycleState, new: LifecycleState) -> bool:
    """True if ``current -> new`` is an edge of the lifecycle graph."""
    if current == new:
        return False
    return new in _FAILURE_TARGETS or new in _FORWARD_EDGES[current]


class StatusTracker:
    """Holds the current lifecycle state and notifies observers of changes."""

    def __init__(self, initial: LifecycleState = LifecycleState.STOPPED) -> None:
        self._state = initial
        self._observers: List[StatusObserver] = []
        self._last_change: Optional[StatusChange] = None

    @property
    def current(self) -> LifecycleState:
        return self._state

    @property
    def last_change(self) -> Optional[StatusChange]:
        return self._last_change

    def transition(
        self,
        new_state: LifecycleState,
        message: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> StatusChange:
        """
        Move to ``new_state`` and notify observers.

        Parameters
        ----------
        new_state:
            Target state.
        message:
            Human-readable reason, carried on the change event.
        cause:
            Failure that triggered the change; only for ERROR / STOPPED.

        Returns
        -------
        StatusChange
            The emitted change event.

        Raises
        ------
        InvalidTransitionError
            If the edge is not in the graph, is a self-transition, or a
            cause accompanies a non-failure target.
        """
        previous = self._state

        if previous == new_state:
            raise InvalidTransitionError(previous.name, new_state.name, "already in this state")

        if not is_allowed(previous, new_state):
            raise InvalidTransitionError(previous.name, new_state.name, "edge not allowed")

        if cause is not None and new_state not in _FAILURE_TARGETS:
            raise InvalidTransitionError(
                previous.name, new_state.name, "only ERROR or STOPPED may carry a cause"
            )

        change = StatusChange(previous=previous, new=new_state, message=message, cause=cause)
        self._state = new_state
        self._last_change = change

        self._notify(change)
        return change

    # ═══════════════════════════════════════════════════════════════════════
    # OBSERVERS
    # ═══════════════════════════════════════════════════════════════════════

    def subscribe(self, observer: StatusObserver) -> Callable[[], None]:
        """Register ``observer``; returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self, change: StatusChange) -> None:
        for observer in list(self._observers):
            started = time.perf_counter()
            try:
                observer(change)
            except Exception as e:
                logger.error(
                    "Status observer raised",
                    extra={
                        "observer": getattr(observer, "__qualname__", repr(observer)),
                        "previous": change.previous.value,
                        "new": change.new.value,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )
                continue

            elapsed_ms = (time.perf_counter() - started) * 1000
            if elapsed_ms > SLOW_OBSERVER_MS:
                logger.warning(
                    "Slow status observer",
                    extra={
                        "observer": getattr(observer, "__qualname__", repr(observer)),
                        "elapsed_ms": round(elapsed_ms, 2),
                    },
                )
