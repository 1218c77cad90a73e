"""
Unit tests for CommandRegistry.

Covers registration, resolution, sealing, payload building and bulk
platform registration.
"""

import pytest

from relaybot.bot.registry import (
    CommandMetadata,
    CommandOption,
    CommandRegistry,
    FunctionHandler,
    OptionType,
    RegistrationTarget,
    normalize_name,
)
from relaybot.core.exceptions import RegistrationFailedError
from relaybot.domain.exceptions import (
    DuplicateCommandError,
    RegistrySealedError,
    UnknownCommandError,
)


async def _noop(request, context):
    return None


@pytest.mark.unit
class TestRegistration:
    """Registering and resolving handlers."""

    def test_register_and_resolve(self, registry):
        handler = FunctionHandler(_noop)
        registry.register("ping", handler)

        assert registry.resolve("ping") is handler
        assert "ping" in registry
        assert len(registry) == 1

    def test_names_are_normalized(self, registry):
        handler = FunctionHandler(_noop)
        registry.register("  Utility   PING ", handler)

        assert registry.resolve("utility ping") is handler
        assert registry.names == ["utility ping"]

    def test_duplicate_rejected(self, registry):
        registry.register("ping", FunctionHandler(_noop))
        with pytest.raises(DuplicateCommandError):
            registry.register("PING", FunctionHandler(_noop))

    def test_command_and_group_cannot_share_name(self, registry):
        registry.register("utility ping", FunctionHandler(_noop))
        with pytest.raises(DuplicateCommandError):
            registry.register("utility", FunctionHandler(_noop))

    def test_unknown_command(self, registry):
        with pytest.raises(UnknownCommandError):
            registry.resolve("missing")

    def test_too_many_parts_rejected(self):
        with pytest.raises(ValueError):
            normalize_name("a b c d")

    def test_sealed_registry_rejects_registration(self, registry):
        registry.seal()
        with pytest.raises(RegistrySealedError):
            registry.register("ping", FunctionHandler(_noop))
        assert registry.sealed

    def test_function_handler_requires_coroutine(self):
        def sync_handler(request, context):
            return None

        with pytest.raises(TypeError):
            FunctionHandler(sync_handler)

    def test_decorator_registers_metadata(self, registry):
        @registry.command("utility echo", "Repeat text", guild_only=True)
        async def echo(request, context):
            return None

        meta = registry.metadata("utility echo")
        assert meta.description == "Repeat text"
        assert meta.guild_only is True


@pytest.mark.unit
class TestPayloads:
    """Platform payload construction."""

    def test_top_level_command_payload(self, registry):
        registry.register(
            "ping",
            FunctionHandler(_noop),
            CommandMetadata(description="Latency", guild_only=True, default_member_permissions=8),
        )

        (payload,) = registry.build_payloads()

        assert payload["name"] == "ping"
        assert payload["type"] == 1
        assert payload["dm_permission"] is False
        assert payload["default_member_permissions"] == "8"

    def test_subcommands_grouped(self, registry):
        registry.describe_group("utility", "Useful things")
        registry.register("utility ping", FunctionHandler(_noop))
        registry.register("utility echo", FunctionHandler(_noop))

        (group,) = registry.build_payloads()

        assert group["name"] == "utility"
        assert group["description"] == "Useful things"
        assert sorted(o["name"] for o in group["options"]) == ["echo", "ping"]
        assert all(o["type"] == 1 for o in group["options"])

    def test_subcommand_group_nesting(self, registry):
        registry.register("admin roles add", FunctionHandler(_noop))

        (admin,) = registry.build_payloads()
        (roles,) = admin["options"]
        (add,) = roles["options"]

        assert admin["description"] == "Admin commands"
        assert roles["type"] == 2
        assert add["name"] == "add" and add["type"] == 1

    def test_required_options_come_first(self, registry):
        registry.register(
            "echo",
            FunctionHandler(_noop),
            CommandMetadata(
                options=(
                    CommandOption("ephemeral", "Hide", OptionType.BOOLEAN, required=False),
                    CommandOption("text", "Text", max_length=2000),
                )
            ),
        )

        (payload,) = registry.build_payloads()

        assert [o["name"] for o in payload["options"]] == ["text", "ephemeral"]
        assert payload["options"][0]["max_length"] == 2000


@pytest.mark.unit
class TestPlatformRegistration:
    """Bulk registration against the gateway."""

    @pytest.mark.asyncio
    async def test_register_globally(self, registry, fake_gateway):
        registry.register("ping", FunctionHandler(_noop))

        await registry.register_all_to_platform(fake_gateway, RegistrationTarget.global_())

        payloads, guild_id = fake_gateway.registered[0]
        assert guild_id is None
        assert payloads[0]["name"] == "ping"

    @pytest.mark.asyncio
    async def test_register_to_guild(self, registry, fake_gateway):
        registry.register("ping", FunctionHandler(_noop))

        await registry.register_all_to_platform(fake_gateway, RegistrationTarget.guild(42))

        assert fake_gateway.registered[0][1] == 42

    @pytest.mark.asyncio
    async def test_transport_failure_wrapped(self, registry, fake_gateway):
        fake_gateway.fail("register", OSError("network down"))

        with pytest.raises(RegistrationFailedError) as exc_info:
            await registry.register_all_to_platform(fake_gateway, RegistrationTarget.global_())

        assert exc_info.value.is_retryable
        assert isinstance(exc_info.value.__cause__, OSError)
