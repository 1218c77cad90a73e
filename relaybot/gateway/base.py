"""
Gateway boundary protocols.

The dispatch core depends only on these protocols, never on discord.py
directly. ``DiscordGateway`` / ``DiscordInteractionHandle`` are the
production implementations; tests use in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from relaybot.gateway.events import ConnectionState, LoginState


@dataclass(frozen=True, slots=True)
class GuildSummary:
    """Read-only facts about one guild, as cached by the gateway."""

    guild_id: int
    name: str
    member_count: int
    owner_id: Optional[int] = None
    channel_count: int = 0
    role_count: int = 0
    created_at: Optional[datetime] = None


@runtime_checkable
class InteractionHandle(Protocol):
    """Responds to exactly one interaction."""

    @property
    def has_responded(self) -> bool: ...

    async def respond(
        self, content: Optional[str] = None, *, embed: Any = None, ephemeral: bool = False
    ) -> None: ...

    async def defer(self, *, ephemeral: bool = False) -> None: ...

    async def followup(
        self, content: Optional[str] = None, *, embed: Any = None, ephemeral: bool = False
    ) -> None: ...


class GatewayView(Protocol):
    """Read-only view of the gateway connection handed to handlers."""

    @property
    def connection_state(self) -> ConnectionState: ...

    @property
    def login_state(self) -> LoginState: ...

    @property
    def latency_ms(self) -> Optional[float]: ...

    @property
    def guild_count(self) -> int: ...

    @property
    def user_count(self) -> int: ...

    @property
    def current_user_name(self) -> Optional[str]: ...

    @property
    def shard_id(self) -> Optional[int]: ...

    def describe_guild(self, guild_id: int) -> Optional[GuildSummary]: ...


class GatewayClient(GatewayView, Protocol):
    """Full gateway surface; only the lifecycle coordinator uses these."""

    async def login(self) -> None: ...

    async def connect(self) -> None: ...

    async def logout(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def bulk_register_commands(
        self, payloads: List[Dict[str, Any]], guild_id: Optional[int] = None
    ) -> None: ...


async def send_ephemeral(handle: InteractionHandle, content: str) -> None:
    """Answer ephemerally: follow up if already answered, otherwise respond."""
    if handle.has_responded:
        await handle.followup(content, ephemeral=True)
    else:
        await handle.respond(content, ephemeral=True)
