"""
discord.py gateway adapter.

Purpose
-------
Wrap a ``discord.Client`` behind the ``GatewayClient`` protocol:

- translate on_ready / on_connect / on_resumed / on_disconnect into
  connection events on the lifecycle channel
- translate application-command interactions into ``InteractionReceived``
  events on the interaction channel
- track login and connection state for health checks
- bulk-register command payloads through the discord HTTP client

Non-Responsibilities
--------------------
- Reconnect/backoff on the websocket (discord.py owns it: reconnect=True)
- Deciding what a disconnect means (LifecycleCoordinator)
- Running handlers (InteractionDispatcher)

Architecture Notes
------------------
- Callbacks only publish events and update adapter-local state; they
  never touch the lifecycle state or the dispatcher directly.
- ``connect()`` starts the websocket loop as a background task and
  returns; readiness arrives later as ``GatewayReady``.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import discord

from relaybot.core.config.config import Config
from relaybot.core.exceptions import ConnectFailedError
from relaybot.core.logging.logger import get_logger
from relaybot.domain.models import InteractionRequest
from relaybot.gateway.base import GuildSummary
from relaybot.gateway.events import (
    ConnectionEvent,
    ConnectionState,
    ConnectionStateChanged,
    EventChannel,
    GatewayReady,
    InteractionReceived,
    LoginState,
)

logger = get_logger(__name__)

# Discord application command option types that nest further options
_SUB_COMMAND = 1
_SUB_COMMAND_GROUP = 2


def build_intents(
    members: bool = False,
    message_content: bool = False,
    presences: bool = False,
) -> discord.Intents:
    """All unprivileged intents plus the privileged ones that are enabled."""
    intents = discord.Intents.default()
    intents.members = members
    intents.message_content = message_content
    intents.presences = presences
    return intents


def parse_command_data(data: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Flatten interaction data into (command path, option values).

    ``{"name": "utility", "options": [{"type": 1, "name": "echo",
    "options": [{"name": "text", "value": "hi"}]}]}`` becomes
    ``("utility echo", {"text": "hi"})``.
    """
    parts = [str(data.get("name", ""))]
    options: List[Dict[str, Any]] = list(data.get("options") or [])

    while options and options[0].get("type") in (_SUB_COMMAND, _SUB_COMMAND_GROUP):
        sub = options[0]
        parts.append(str(sub.get("name", "")))
        options = list(sub.get("options") or [])

    values = {str(opt["name"]): opt.get("value") for opt in options if "name" in opt}
    return " ".join(p for p in parts if p), values


def request_from_interaction(interaction: discord.Interaction) -> InteractionRequest:
    data: Dict[str, Any] = dict(interaction.data or {})
    name, values = parse_command_data(data)
    return InteractionRequest(
        interaction_id=interaction.id,
        command_name=name,
        user_id=interaction.user.id,
        guild_id=interaction.guild_id,
        channel_id=interaction.channel_id,
        options=values,
        raw=interaction,
    )


# ============================================================================
# Interaction handle
# ============================================================================


class DiscordInteractionHandle:
    """Adapts a ``discord.Interaction`` to the InteractionHandle protocol."""

    def __init__(self, interaction: discord.Interaction) -> None:
        self._interaction = interaction

    @property
    def interaction(self) -> discord.Interaction:
        return self._interaction

    @property
    def has_responded(self) -> bool:
        return self._interaction.response.is_done()

    @staticmethod
    def _message_kwargs(embed: Any, ephemeral: bool) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"ephemeral": ephemeral}
        if embed is not None:
            kwargs["embed"] = embed
        return kwargs

    async def respond(
        self, content: Optional[str] = None, *, embed: Any = None, ephemeral: bool = False
    ) -> None:
        await self._interaction.response.send_message(
            content, **self._message_kwargs(embed, ephemeral)
        )

    async def defer(self, *, ephemeral: bool = False) -> None:
        await self._interaction.response.defer(ephemeral=ephemeral)

    async def followup(
        self, content: Optional[str] = None, *, embed: Any = None, ephemeral: bool = False
    ) -> None:
        kwargs = self._message_kwargs(embed, ephemeral)
        if content is not None:
            kwargs["content"] = content
        await self._interaction.followup.send(**kwargs)


# ============================================================================
# Client subclass
# ============================================================================


class _RelayClient(discord.Client):
    """discord.Client whose event callbacks forward to the gateway adapter."""

    def __init__(self, gateway: "DiscordGateway", **options: Any) -> None:
        super().__init__(**options)
        self._gateway = gateway

    async def on_connect(self) -> None:
        self._gateway._set_connection(ConnectionState.CONNECTED)

    async def on_ready(self) -> None:
        self._gateway._on_ready()

    async def on_resumed(self) -> None:
        self._gateway._set_connection(ConnectionState.CONNECTED)

    async def on_disconnect(self) -> None:
        self._gateway._set_connection(ConnectionState.DISCONNECTED)

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        self._gateway._on_interaction(interaction)


# ============================================================================
# Gateway adapter
# ============================================================================


class DiscordGateway:
    """
    Production ``GatewayClient`` backed by discord.py.

    Parameters
    ----------
    token:
        Bot token.
    intents:
        Gateway intents; see ``build_intents``.
    interactions:
        Channel receiving ``InteractionReceived`` events.
    connection_events:
        Channel receiving ``GatewayReady`` / ``ConnectionStateChanged``.
    """

    def __init__(
        self,
        token: str,
        intents: discord.Intents,
        interactions: EventChannel[InteractionReceived],
        connection_events: EventChannel[ConnectionEvent],
        message_cache_size: int = 100,
    ) -> None:
        self._token = token
        self._interactions = interactions
        self._connection_events = connection_events
        self._client = _RelayClient(self, intents=intents, max_messages=message_cache_size)

        self._connection_state = ConnectionState.DISCONNECTED
        self._login_state = LoginState.LOGGED_OUT
        self._connect_task: Optional[asyncio.Task[None]] = None

    @classmethod
    def from_config(
        cls,
        interactions: EventChannel[InteractionReceived],
        connection_events: EventChannel[ConnectionEvent],
    ) -> "DiscordGateway":
        intents = build_intents(
            members=Config.USE_GUILD_MEMBERS_INTENT,
            message_content=Config.USE_MESSAGE_CONTENT_INTENT,
            presences=Config.USE_PRESENCE_INTENT,
        )
        return cls(Config.DISCORD_TOKEN, intents, interactions, connection_events)

    # ═══════════════════════════════════════════════════════════════════════
    # READ-ONLY VIEW
    # ═══════════════════════════════════════════════════════════════════════

    @property
    def client(self) -> discord.Client:
        return self._client

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def login_state(self) -> LoginState:
        return self._login_state

    @property
    def latency_ms(self) -> Optional[float]:
        latency = self._client.latency
        if latency is None or not math.isfinite(latency):
            return None
        return latency * 1000.0

    @property
    def guild_count(self) -> int:
        return len(self._client.guilds)

    @property
    def user_count(self) -> int:
        return sum(guild.member_count or 0 for guild in self._client.guilds)

    @property
    def current_user_name(self) -> Optional[str]:
        return str(self._client.user) if self._client.user else None

    @property
    def shard_id(self) -> Optional[int]:
        return self._client.shard_id

    def describe_guild(self, guild_id: int) -> Optional[GuildSummary]:
        guild = self._client.get_guild(guild_id)
        if guild is None:
            return None
        return GuildSummary(
            guild_id=guild.id,
            name=guild.name,
            member_count=guild.member_count or 0,
            owner_id=guild.owner_id,
            channel_count=len(guild.channels),
            role_count=len(guild.roles),
            created_at=guild.created_at,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # CONNECTION CONTROL
    # ═══════════════════════════════════════════════════════════════════════

    async def login(self) -> None:
        """
        Authenticate with the bot token.

        Raises
        ------
        ConnectFailedError
            Non-retryable for a rejected token, retryable for transport errors.
        """
        if self._client.is_closed():
            self._client.clear()

        self._login_state = LoginState.LOGGING_IN
        try:
            await self._client.login(self._token)
        except discord.LoginFailure as e:
            self._login_state = LoginState.LOGGED_OUT
            raise ConnectFailedError("login rejected", cause=e, is_retryable=False) from e
        except (discord.HTTPException, aiohttp.ClientError, OSError) as e:
            self._login_state = LoginState.LOGGED_OUT
            raise ConnectFailedError("login transport error", cause=e) from e

        self._login_state = LoginState.LOGGED_IN
        logger.info("Gateway login succeeded", extra={"user": self.current_user_name})

    async def connect(self) -> None:
        """Start the websocket loop in the background."""
        if self._connect_task is not None and not self._connect_task.done():
            logger.warning("Gateway connect requested while already connecting")
            return

        self._set_connection(ConnectionState.CONNECTING)
        self._connect_task = asyncio.create_task(self._run_connection(), name="gateway-connect")

    async def _run_connection(self) -> None:
        try:
            await self._client.connect(reconnect=True)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Gateway connection loop terminated",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            self._set_connection(ConnectionState.DISCONNECTED, error=e)
            return

        self._set_connection(ConnectionState.DISCONNECTED)

    async def logout(self) -> None:
        self._login_state = LoginState.LOGGING_OUT
        self._set_connection(ConnectionState.DISCONNECTING)
        try:
            await self._client.close()
        finally:
            self._login_state = LoginState.LOGGED_OUT

    async def disconnect(self) -> None:
        if not self._client.is_closed():
            await self._client.close()

        task = self._connect_task
        self._connect_task = None
        if task is not None and not task.done():
            done, _ = await asyncio.wait({task}, timeout=5.0)
            if not done:
                task.cancel()

        self._set_connection(ConnectionState.DISCONNECTED)

    # ═══════════════════════════════════════════════════════════════════════
    # COMMAND REGISTRATION
    # ═══════════════════════════════════════════════════════════════════════

    async def bulk_register_commands(
        self, payloads: List[Dict[str, Any]], guild_id: Optional[int] = None
    ) -> None:
        """Overwrite the application's commands globally or in one guild."""
        application_id = self._client.application_id
        if application_id is None:
            raise ConnectFailedError("application id unknown; login first", is_retryable=False)

        if guild_id is None:
            await self._client.http.bulk_upsert_global_commands(application_id, payloads)
        else:
            await self._client.http.bulk_upsert_guild_commands(application_id, guild_id, payloads)

    # ═══════════════════════════════════════════════════════════════════════
    # CALLBACKS (publish only)
    # ═══════════════════════════════════════════════════════════════════════

    def _set_connection(self, state: ConnectionState, error: Optional[BaseException] = None) -> None:
        if state == self._connection_state and error is None:
            return
        self._connection_state = state
        logger.info("Gateway connection state changed", extra={"connection_state": state.value})
        self._connection_events.publish(ConnectionStateChanged(state=state, error=error))

    def _on_ready(self) -> None:
        self._connection_state = ConnectionState.CONNECTED
        self._connection_events.publish(
            GatewayReady(user_name=self.current_user_name, guild_count=self.guild_count)
        )

    def _on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type != discord.InteractionType.application_command:
            return
        request = request_from_interaction(interaction)
        self._interactions.publish(
            InteractionReceived(request=request, handle=DiscordInteractionHandle(interaction))
        )
