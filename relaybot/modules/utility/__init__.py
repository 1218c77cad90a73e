"""
Utility Module
==============

General-purpose commands under the ``utility`` group: ping, echo, stats and
serverinfo.
"""

from relaybot.modules.utility.commands import MAX_ECHO_LENGTH, UtilityCommands

__all__ = ["MAX_ECHO_LENGTH", "UtilityCommands"]
