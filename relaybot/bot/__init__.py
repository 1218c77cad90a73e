"""
Bot Module
==========

The interaction-dispatch core:
- StatusTracker: lifecycle state and change notifications
- CommandRegistry: name -> handler map and platform registration
- ConcurrencyGate: bounded admission for handlers
- StatisticsCollector: dispatch counters and live statistics
- InteractionDispatcher: admit, execute, respond, record
- LifecycleCoordinator: start/stop ordering and failure escalation
"""

from relaybot.bot.dispatcher import InteractionDispatcher
from relaybot.bot.gate import ConcurrencyGate, Permit
from relaybot.bot.lifecycle import LifecycleCoordinator, LifecycleSettings, StartupMetrics
from relaybot.bot.registry import (
    CommandContext,
    CommandHandler,
    CommandMetadata,
    CommandOption,
    CommandRegistry,
    FunctionHandler,
    OptionType,
    RegistrationTarget,
)
from relaybot.bot.statistics import StatisticsCollector, process_memory_bytes
from relaybot.bot.status import StatusTracker

__all__ = [
    "CommandContext",
    "CommandHandler",
    "CommandMetadata",
    "CommandOption",
    "CommandRegistry",
    "ConcurrencyGate",
    "FunctionHandler",
    "InteractionDispatcher",
    "LifecycleCoordinator",
    "LifecycleSettings",
    "OptionType",
    "Permit",
    "RegistrationTarget",
    "StartupMetrics",
    "StatisticsCollector",
    "StatusTracker",
    "process_memory_bytes",
]
