"""
UI helpers for Discord presentation.
"""

from relaybot.ui.embed_builder import EmbedBuilder, EmbedColor, EmbedLimits, truncate

__all__ = ["EmbedBuilder", "EmbedColor", "EmbedLimits", "truncate"]
