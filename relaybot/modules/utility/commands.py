"""
Utility commands available to every user.

Commands
--------
- /utility ping        gateway latency and API response time
- /utility echo        repeat the given text
- /utility stats       live bot statistics
- /utility serverinfo  facts about the current guild

Handlers answer on success only. Validation and precondition failures are
raised as domain exceptions and answered by the dispatcher with its fixed
ephemeral messages.
"""

from __future__ import annotations

import time
from typing import Callable, List

from relaybot.bot.registry import CommandContext, CommandOption, CommandRegistry, OptionType
from relaybot.core.logging.logger import get_logger
from relaybot.domain.exceptions import BadArgumentsError, PreconditionFailedError
from relaybot.domain.models import BotStatistics, InteractionRequest
from relaybot.ui.embed_builder import EmbedBuilder, Field

logger = get_logger(__name__)

GROUP = "utility"
MAX_ECHO_LENGTH = 2000


def _fmt_count(value) -> str:
    return f"{value:,}" if value is not None else "n/a"


def _fmt_ms(value) -> str:
    return f"{value:.0f}ms" if value is not None else "n/a"


class UtilityCommands:
    """
    Handlers for the ``utility`` command group.

    Parameters
    ----------
    statistics_provider:
        Returns live BotStatistics (normally ``LifecycleCoordinator.get_statistics``).
    """

    def __init__(self, statistics_provider: Callable[[], BotStatistics]) -> None:
        self._statistics_provider = statistics_provider

    def register(self, registry: CommandRegistry) -> None:
        registry.describe_group(GROUP, "Useful commands for everyone")

        registry.command(f"{GROUP} ping", "Show gateway latency and response time")(self.ping)
        registry.command(
            f"{GROUP} echo",
            "Repeat the given text",
            options=[
                CommandOption("text", "The text to repeat", OptionType.STRING, max_length=MAX_ECHO_LENGTH),
                CommandOption(
                    "ephemeral", "Only you can see the reply", OptionType.BOOLEAN, required=False
                ),
            ],
        )(self.echo)
        registry.command(f"{GROUP} stats", "Show bot statistics")(self.stats)
        registry.command(
            f"{GROUP} serverinfo", "Show information about this server", guild_only=True
        )(self.serverinfo)

    # ═══════════════════════════════════════════════════════════════════════
    # HANDLERS
    # ═══════════════════════════════════════════════════════════════════════

    async def ping(self, request: InteractionRequest, context: CommandContext) -> None:
        started = time.perf_counter()
        await context.handle.defer(ephemeral=True)
        response_ms = (time.perf_counter() - started) * 1000
        gateway_ms = context.gateway.latency_ms

        embed = EmbedBuilder.success(
            "🏓 Pong!",
            fields=[
                ("Gateway latency", _fmt_ms(gateway_ms), True),
                ("API response time", _fmt_ms(response_ms), True),
            ],
        )
        await context.handle.followup(embed=embed, ephemeral=True)

        logger.info(
            "Ping executed",
            extra={
                "user_id": request.user_id,
                "gateway_latency_ms": gateway_ms,
                "response_ms": round(response_ms, 2),
            },
        )

    async def echo(self, request: InteractionRequest, context: CommandContext) -> None:
        text = request.option("text") or ""
        ephemeral = request.option("ephemeral", True)

        if not text.strip():
            raise BadArgumentsError("text must not be empty", argument="text")
        if len(text) > MAX_ECHO_LENGTH:
            raise BadArgumentsError(
                f"text is longer than {MAX_ECHO_LENGTH} characters", argument="text"
            )

        await context.handle.respond(f"🔄 **Echo:** {text}", ephemeral=bool(ephemeral))

        logger.info("Echo executed", extra={"user_id": request.user_id, "text_length": len(text)})

    async def stats(self, request: InteractionRequest, context: CommandContext) -> None:
        await context.handle.defer(ephemeral=True)

        stats = self._statistics_provider()
        fields: List[Field] = [
            ("🔄 Uptime", stats.format_uptime(), True),
            ("🏰 Servers", _fmt_count(stats.guild_count), True),
            ("👥 Users", _fmt_count(stats.user_count), True),
            ("⚡ Commands executed", _fmt_count(stats.commands_executed), True),
            ("📡 Gateway latency", _fmt_ms(stats.latency_ms), True),
            ("💾 Memory", f"{stats.memory_mb:.1f} MB", True),
            ("🔢 Version", stats.version, True),
            ("📶 Status", stats.status.value, True),
        ]

        embed = EmbedBuilder.stats("📊 Bot statistics", fields)
        await context.handle.followup(embed=embed, ephemeral=True)

        logger.info("Stats executed", extra={"user_id": request.user_id})

    async def serverinfo(self, request: InteractionRequest, context: CommandContext) -> None:
        if request.guild_id is None:
            raise PreconditionFailedError("serverinfo can only be used in a server")

        await context.handle.defer(ephemeral=True)

        summary = context.gateway.describe_guild(request.guild_id)
        if summary is None:
            embed = EmbedBuilder.guild(
                "🏰 Server",
                [("Server ID", str(request.guild_id), True)],
                description="Details are not cached for this server yet.",
            )
        else:
            fields: List[Field] = [
                ("Server ID", str(summary.guild_id), True),
                ("Owner", f"<@{summary.owner_id}>" if summary.owner_id else "Unknown", True),
                ("Members", _fmt_count(summary.member_count), True),
                ("Channels", _fmt_count(summary.channel_count), True),
                ("Roles", _fmt_count(summary.role_count), True),
            ]
            if summary.created_at is not None:
                fields.append(
                    ("Created", summary.created_at.strftime("%d.%m.%Y %H:%M:%S UTC"), True)
                )
            embed = EmbedBuilder.guild(f"🏰 {summary.name}", fields)

        await context.handle.followup(embed=embed, ephemeral=True)

        logger.info(
            "Serverinfo executed",
            extra={"user_id": request.user_id, "guild_id": request.guild_id},
        )
