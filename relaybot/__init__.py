"""
relaybot: interaction-dispatch core for a gateway-connected Discord bot.
"""

__version__ = "0.0.1"
