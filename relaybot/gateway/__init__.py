"""
Gateway boundary: typed events, protocols and the discord.py adapter.

``relaybot.gateway.discord_gateway`` is not imported here so that the
dispatch core and its tests never require a Discord client.
"""

from relaybot.gateway.base import (
    GatewayClient,
    GatewayView,
    GuildSummary,
    InteractionHandle,
    send_ephemeral,
)
from relaybot.gateway.events import (
    ConnectionEvent,
    ConnectionState,
    ConnectionStateChanged,
    EventChannel,
    GatewayReady,
    InteractionReceived,
    LoginState,
)

__all__ = [
    "GatewayClient",
    "GatewayView",
    "GuildSummary",
    "InteractionHandle",
    "send_ephemeral",
    "ConnectionEvent",
    "ConnectionState",
    "ConnectionStateChanged",
    "EventChannel",
    "GatewayReady",
    "InteractionReceived",
    "LoginState",
]
