"""
Pytest Configuration and Fixtures for relaybot Tests
====================================================

Purpose
-------
Centralized fixtures for the relaybot test suite: an in-memory gateway, a
recording interaction handle, and pre-built dispatch components.

Architecture Notes
------------------
- Environment defaults are set before any relaybot import so that
  ``Config.load()`` at import time sees them
- Unit tests never touch the network; the gateway is a fake implementing
  the GatewayClient protocol
- Timeouts in fixtures are small so deadline tests stay fast
"""

from __future__ import annotations

import os
import tempfile

os.environ.setdefault("DISCORD_TOKEN", "test-token")
os.environ.setdefault("REGISTER_COMMANDS_GLOBALLY", "true")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("HEALTH_CHECKS_ENABLED", "false")
os.environ.setdefault("LOGS_DIR", tempfile.mkdtemp(prefix="relaybot-logs-"))

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytest

from relaybot.bot.gate import ConcurrencyGate
from relaybot.bot.registry import CommandRegistry
from relaybot.bot.statistics import StatisticsCollector
from relaybot.bot.status import StatusTracker
from relaybot.domain.models import InteractionRequest
from relaybot.gateway.base import GuildSummary
from relaybot.gateway.events import (
    ConnectionEvent,
    ConnectionState,
    ConnectionStateChanged,
    EventChannel,
    GatewayReady,
    LoginState,
)


# ============================================================================
# FAKES
# ============================================================================


@dataclass
class SentMessage:
    kind: str
    content: Optional[str] = None
    embed: Any = None
    ephemeral: bool = False


class FakeHandle:
    """Interaction handle that records every response."""

    def __init__(self, fail_with: Optional[BaseException] = None) -> None:
        self.sent: List[SentMessage] = []
        self._responded = False
        self.fail_with = fail_with

    @property
    def has_responded(self) -> bool:
        return self._responded

    async def respond(self, content=None, *, embed=None, ephemeral=False) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        if self._responded:
            raise RuntimeError("interaction already responded to")
        self._responded = True
        self.sent.append(SentMessage("respond", content, embed, ephemeral))

    async def defer(self, *, ephemeral=False) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self._responded = True
        self.sent.append(SentMessage("defer", ephemeral=ephemeral))

    async def followup(self, content=None, *, embed=None, ephemeral=False) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(SentMessage("followup", content, embed, ephemeral))

    @property
    def last(self) -> SentMessage:
        return self.sent[-1]


class FakeGateway:
    """
    In-memory GatewayClient.

    ``failures`` maps an operation name (login, connect, logout, disconnect,
    register) to exceptions raised by successive calls. With ``auto_ready``
    and a connection channel, ``connect`` publishes CONNECTED then ready.
    """

    def __init__(
        self,
        connection_events: Optional[EventChannel[ConnectionEvent]] = None,
        auto_ready: bool = False,
    ) -> None:
        self.connection_state = ConnectionState.DISCONNECTED
        self.login_state = LoginState.LOGGED_OUT
        self.latency_ms: Optional[float] = 42.0
        self.guild_count = 3
        self.user_count = 120
        self.current_user_name: Optional[str] = "relaybot"
        self.shard_id: Optional[int] = 0
        self.guilds: Dict[int, GuildSummary] = {}

        self.connection_events = connection_events
        self.auto_ready = auto_ready
        self.calls: List[str] = []
        self.registered: List[tuple] = []
        self.failures: Dict[str, List[BaseException]] = {}

    def fail(self, operation: str, *errors: BaseException) -> None:
        self.failures.setdefault(operation, []).extend(errors)

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    def describe_guild(self, guild_id: int) -> Optional[GuildSummary]:
        return self.guilds.get(guild_id)

    async def login(self) -> None:
        self._maybe_fail("login")
        self.login_state = LoginState.LOGGED_IN

    async def connect(self) -> None:
        self._maybe_fail("connect")
        self.connection_state = ConnectionState.CONNECTING
        if self.auto_ready:
            self.simulate_ready()

    async def logout(self) -> None:
        self._maybe_fail("logout")
        self.login_state = LoginState.LOGGED_OUT

    async def disconnect(self) -> None:
        self._maybe_fail("disconnect")
        self.connection_state = ConnectionState.DISCONNECTED

    async def bulk_register_commands(self, payloads, guild_id=None) -> None:
        self._maybe_fail("register")
        self.registered.append((payloads, guild_id))

    # ----- event simulation ----- #

    def simulate_ready(self) -> None:
        self.connection_state = ConnectionState.CONNECTED
        if self.connection_events is not None:
            self.connection_events.publish(ConnectionStateChanged(ConnectionState.CONNECTED))
            self.connection_events.publish(
                GatewayReady(user_name=self.current_user_name, guild_count=self.guild_count)
            )

    def simulate_disconnect(self, error: Optional[BaseException] = None) -> ConnectionStateChanged:
        self.connection_state = ConnectionState.DISCONNECTED
        event = ConnectionStateChanged(ConnectionState.DISCONNECTED, error)
        if self.connection_events is not None:
            self.connection_events.publish(event)
        return event


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def handle() -> FakeHandle:
    return FakeHandle()


@pytest.fixture
def registry() -> CommandRegistry:
    return CommandRegistry()


@pytest.fixture
def gate() -> ConcurrencyGate:
    return ConcurrencyGate(capacity=2, default_timeout=0.05)


@pytest.fixture
def statistics() -> StatisticsCollector:
    return StatisticsCollector()


@pytest.fixture
def tracker() -> StatusTracker:
    return StatusTracker()


@pytest.fixture
def make_request():
    """Factory for InteractionRequest with sensible defaults."""
    counter = {"next": 1}

    def _make(command_name: str = "utility ping", **overrides: Any) -> InteractionRequest:
        interaction_id = overrides.pop("interaction_id", counter["next"])
        counter["next"] += 1
        fields = {
            "interaction_id": interaction_id,
            "command_name": command_name,
            "user_id": 1001,
            "guild_id": 5005,
            "channel_id": 7007,
        }
        fields.update(overrides)
        return InteractionRequest(**fields)

    return _make
