"""
Unit tests for the discord.py gateway adapter.

The discord client itself is never connected; transport calls are
replaced with pytest-mock doubles.
"""

import discord
import pytest

from relaybot.core.exceptions import ConnectFailedError
from relaybot.gateway.discord_gateway import (
    DiscordGateway,
    DiscordInteractionHandle,
    build_intents,
    parse_command_data,
)
from relaybot.gateway.events import (
    ConnectionState,
    ConnectionStateChanged,
    EventChannel,
    GatewayReady,
    LoginState,
)


@pytest.fixture
def channels():
    return EventChannel("interactions"), EventChannel("connection-events")


@pytest.fixture
def gateway(channels):
    interactions, connection_events = channels
    return DiscordGateway("token", build_intents(), interactions, connection_events)


def _interaction(mocker, data, kind=discord.InteractionType.application_command):
    interaction = mocker.Mock()
    interaction.type = kind
    interaction.data = data
    interaction.id = 555
    interaction.user.id = 1001
    interaction.guild_id = 5005
    interaction.channel_id = 7007
    return interaction


@pytest.mark.unit
class TestParseCommandData:
    def test_top_level_command(self):
        assert parse_command_data({"name": "ping"}) == ("ping", {})

    def test_subcommand_options_flattened(self):
        data = {
            "name": "utility",
            "options": [{"type": 1, "name": "echo", "options": [{"name": "text", "value": "hi"}]}],
        }

        assert parse_command_data(data) == ("utility echo", {"text": "hi"})

    def test_subcommand_group(self):
        data = {
            "name": "admin",
            "options": [
                {
                    "type": 2,
                    "name": "config",
                    "options": [
                        {
                            "type": 1,
                            "name": "set",
                            "options": [
                                {"type": 3, "name": "key", "value": "prefix"},
                                {"type": 4, "name": "count", "value": 3},
                            ],
                        }
                    ],
                }
            ],
        }

        assert parse_command_data(data) == ("admin config set", {"key": "prefix", "count": 3})


@pytest.mark.unit
class TestIntents:
    def test_privileged_intents_off_by_default(self):
        intents = build_intents()

        assert intents.guilds
        assert not intents.members
        assert not intents.message_content
        assert not intents.presences

    def test_enabled_privileged_intents(self):
        intents = build_intents(members=True, message_content=True)

        assert intents.members
        assert intents.message_content
        assert not intents.presences


@pytest.mark.unit
class TestInteractionHandle:
    @pytest.mark.asyncio
    async def test_respond_sends_ephemeral_message(self, mocker):
        interaction = mocker.Mock()
        interaction.response.send_message = mocker.AsyncMock()

        await DiscordInteractionHandle(interaction).respond("hello", ephemeral=True)

        interaction.response.send_message.assert_awaited_once_with("hello", ephemeral=True)

    @pytest.mark.asyncio
    async def test_followup_includes_embed(self, mocker):
        interaction = mocker.Mock()
        interaction.followup.send = mocker.AsyncMock()
        embed = discord.Embed(title="stats")

        await DiscordInteractionHandle(interaction).followup(embed=embed)

        interaction.followup.send.assert_awaited_once_with(embed=embed, ephemeral=False)

    def test_has_responded_reflects_response_state(self, mocker):
        interaction = mocker.Mock()
        interaction.response.is_done.return_value = True

        assert DiscordInteractionHandle(interaction).has_responded


@pytest.mark.unit
class TestCallbacks:
    @pytest.mark.asyncio
    async def test_application_command_published(self, gateway, channels, mocker):
        interactions, _ = channels
        data = {"name": "utility", "options": [{"type": 1, "name": "ping"}]}

        gateway._on_interaction(_interaction(mocker, data))

        event = await interactions.get()
        assert event.request.command_name == "utility ping"
        assert event.request.interaction_id == 555
        assert event.request.guild_id == 5005
        assert isinstance(event.handle, DiscordInteractionHandle)

    @pytest.mark.asyncio
    async def test_non_command_interaction_ignored(self, gateway, channels, mocker):
        interactions, _ = channels

        gateway._on_interaction(
            _interaction(mocker, {"custom_id": "btn"}, kind=discord.InteractionType.component)
        )

        assert interactions.qsize() == 0

    @pytest.mark.asyncio
    async def test_connection_changes_published_once(self, gateway, channels):
        _, connection_events = channels

        gateway._set_connection(ConnectionState.CONNECTED)
        gateway._set_connection(ConnectionState.CONNECTED)

        assert connection_events.qsize() == 1
        event = await connection_events.get()
        assert event == ConnectionStateChanged(ConnectionState.CONNECTED)
        assert gateway.connection_state == ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_ready_published(self, gateway, channels):
        _, connection_events = channels

        gateway._on_ready()

        assert isinstance(await connection_events.get(), GatewayReady)
        assert gateway.connection_state == ConnectionState.CONNECTED


@pytest.mark.unit
class TestLogin:
    @pytest.mark.asyncio
    async def test_rejected_token_is_permanent(self, gateway, mocker):
        mocker.patch.object(
            gateway.client, "login", mocker.AsyncMock(side_effect=discord.LoginFailure("bad token"))
        )

        with pytest.raises(ConnectFailedError) as exc_info:
            await gateway.login()

        assert exc_info.value.is_retryable is False
        assert gateway.login_state == LoginState.LOGGED_OUT

    @pytest.mark.asyncio
    async def test_transport_error_is_retryable(self, gateway, mocker):
        mocker.patch.object(gateway.client, "login", mocker.AsyncMock(side_effect=OSError("dns")))

        with pytest.raises(ConnectFailedError) as exc_info:
            await gateway.login()

        assert exc_info.value.is_retryable is True

    @pytest.mark.asyncio
    async def test_successful_login(self, gateway, mocker):
        mocker.patch.object(gateway.client, "login", mocker.AsyncMock())

        await gateway.login()

        assert gateway.login_state == LoginState.LOGGED_IN

    @pytest.mark.asyncio
    async def test_registration_requires_application_id(self, gateway):
        with pytest.raises(ConnectFailedError):
            await gateway.bulk_register_commands([{"name": "ping"}])

    def test_latency_unknown_before_connect(self, gateway):
        assert gateway.latency_ms is None
        assert gateway.connection_state == ConnectionState.DISCONNECTED
