"""
Factory for standardized Discord embeds used by relaybot commands.

Features:
- Consistent colors per message kind
- Automatic Discord limit enforcement (title, description, fields, footer)
- Timestamps on every embed
"""

from typing import Iterable, Optional, Tuple

import discord


class EmbedColor:
    """Embed colors by message kind."""

    DEFAULT = 0x2C2D31
    SUCCESS = 0x2ECC71
    ERROR = 0xE74C3C
    WARNING = 0xF39C12
    INFO = 0x3498DB
    STATS = 0xF1C40F
    GUILD = 0x9B59B6


class EmbedLimits:
    """Discord embed limits."""

    TITLE = 256
    DESCRIPTION = 4096
    FIELD_NAME = 256
    FIELD_VALUE = 1024
    FOOTER = 2048
    MAX_FIELDS = 25


def truncate(text: str, limit: int) -> str:
    """Truncate ``text`` to ``limit`` characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


Field = Tuple[str, str, bool]


class EmbedBuilder:
    """
    Factory for standardized Discord embeds.

    All embeds include a timestamp and respect Discord limits.
    """

    @staticmethod
    def _base_embed(
        title: str,
        description: Optional[str],
        color: int,
        footer: Optional[str] = None,
        fields: Iterable[Field] = (),
    ) -> discord.Embed:
        embed = discord.Embed(
            title=truncate(title, EmbedLimits.TITLE),
            description=truncate(description, EmbedLimits.DESCRIPTION) if description else None,
            color=color,
            timestamp=discord.utils.utcnow(),
        )

        for index, (name, value, inline) in enumerate(fields):
            if index >= EmbedLimits.MAX_FIELDS:
                break
            embed.add_field(
                name=truncate(name, EmbedLimits.FIELD_NAME),
                value=truncate(value, EmbedLimits.FIELD_VALUE),
                inline=inline,
            )

        if footer:
            embed.set_footer(text=truncate(footer, EmbedLimits.FOOTER))

        return embed

    # =========================================================================
    # CORE TYPES
    # =========================================================================

    @staticmethod
    def primary(
        title: str,
        description: Optional[str] = None,
        footer: Optional[str] = None,
        fields: Iterable[Field] = (),
    ) -> discord.Embed:
        """Default embed for neutral/system messages."""
        return EmbedBuilder._base_embed(title, description, EmbedColor.DEFAULT, footer, fields)

    @staticmethod
    def success(
        title: str,
        description: Optional[str] = None,
        footer: Optional[str] = None,
        fields: Iterable[Field] = (),
    ) -> discord.Embed:
        return EmbedBuilder._base_embed(title, description, EmbedColor.SUCCESS, footer, fields)

    @staticmethod
    def error(title: str, description: str, help_text: Optional[str] = None) -> discord.Embed:
        """Error embed with optional help text."""
        desc = description
        if help_text:
            desc += f"\n\n💡 **Help:** {help_text}"
        return EmbedBuilder._base_embed(title, desc, EmbedColor.ERROR)

    @staticmethod
    def info(
        title: str,
        description: Optional[str] = None,
        footer: Optional[str] = None,
        fields: Iterable[Field] = (),
    ) -> discord.Embed:
        return EmbedBuilder._base_embed(title, description, EmbedColor.INFO, footer, fields)

    # =========================================================================
    # COMMAND-SPECIFIC TYPES
    # =========================================================================

    @staticmethod
    def stats(title: str, fields: Iterable[Field], footer: Optional[str] = None) -> discord.Embed:
        return EmbedBuilder._base_embed(title, None, EmbedColor.STATS, footer, fields)

    @staticmethod
    def guild(
        title: str,
        fields: Iterable[Field],
        description: Optional[str] = None,
        footer: Optional[str] = None,
    ) -> discord.Embed:
        return EmbedBuilder._base_embed(title, description, EmbedColor.GUILD, footer, fields)
