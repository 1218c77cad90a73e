"""
Gateway events and the channel they travel on.

Purpose
-------
Turn gateway callbacks into typed, immutable messages. The gateway adapter
publishes; the dispatcher consumes ``InteractionReceived`` and the
lifecycle coordinator consumes connection events. Nobody mutates shared
state from inside a gateway callback.

Architecture Notes
------------------
- ``EventChannel`` is a bounded asyncio.Queue plus a close sentinel.
- Publishing never blocks: when the channel is full the event is dropped,
  counted and logged. The gateway reader must stay responsive.
- Iterating a closed channel drains what is queued, then stops.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Generic, Optional, TypeVar, Union

from relaybot.core.logging.logger import get_logger
from relaybot.domain.models import InteractionRequest

if TYPE_CHECKING:
    from relaybot.gateway.base import InteractionHandle

logger = get_logger(__name__)

E = TypeVar("E")


class ConnectionState(Enum):
    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTING = "disconnecting"
    DISCONNECTED = "disconnected"


class LoginState(Enum):
    LOGGED_OUT = "logged_out"
    LOGGING_IN = "logging_in"
    LOGGED_IN = "logged_in"
    LOGGING_OUT = "logging_out"


# ============================================================================
# Events
# ============================================================================


@dataclass(frozen=True, slots=True)
class GatewayReady:
    """The gateway finished its initial handshake and cache fill."""

    user_name: Optional[str] = None
    guild_count: int = 0


@dataclass(frozen=True, slots=True)
class ConnectionStateChanged:
    """The gateway connection moved to ``state``."""

    state: ConnectionState
    error: Optional[BaseException] = None


@dataclass(frozen=True, slots=True)
class InteractionReceived:
    """A command invocation plus the handle used to answer it."""

    request: InteractionRequest
    handle: "InteractionHandle"


ConnectionEvent = Union[GatewayReady, ConnectionStateChanged]


# ============================================================================
# Channel
# ============================================================================


_CLOSED = object()


class EventChannel(Generic[E]):
    """Bounded, non-blocking publish / async-iterate channel."""

    def __init__(self, name: str, maxsize: int = 1000) -> None:
        self._name = name
        self._queue: "asyncio.Queue[object]" = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._dropped = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dropped(self) -> int:
        return self._dropped

    def qsize(self) -> int:
        return self._queue.qsize()

    def publish(self, event: E) -> bool:
        """Enqueue ``event``; returns False if the channel is closed or full."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(
                "Event channel full, dropping event",
                extra={
                    "channel": self._name,
                    "event_type": type(event).__name__,
                    "dropped_total": self._dropped,
                },
            )
            return False
        return True

    def close(self) -> None:
        """Stop accepting events; consumers finish after draining the queue."""
        if self._closed:
            return
        self._closed = True
        if self._queue.full():
            # Make room for the sentinel by discarding the oldest event
            self._queue.get_nowait()
            self._dropped += 1
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> Optional[E]:
        """Next event, or None once closed and drained."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the sentinel for any other consumer
            self._queue.put_nowait(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    async def __aiter__(self) -> AsyncIterator[E]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event
