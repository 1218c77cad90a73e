"""
Domain layer: value types, domain exceptions and user-facing responses.

No I/O and no Discord imports live here.
"""

from relaybot.domain.exceptions import (
    AdmissionRejectedError,
    BadArgumentsError,
    CommandTimeoutError,
    DuplicateCommandError,
    PreconditionFailedError,
    RegistrySealedError,
    RelayDomainException,
    UnknownCommandError,
)
from relaybot.domain.models import (
    BotStatistics,
    ErrorKind,
    ExecutionOutcome,
    InteractionRequest,
    LifecycleState,
    OutcomeStatus,
    StatisticsSnapshot,
    StatusChange,
)
from relaybot.domain.responses import format_error_message, get_response_template

__all__ = [
    "AdmissionRejectedError",
    "BadArgumentsError",
    "CommandTimeoutError",
    "DuplicateCommandError",
    "PreconditionFailedError",
    "RegistrySealedError",
    "RelayDomainException",
    "UnknownCommandError",
    "BotStatistics",
    "ErrorKind",
    "ExecutionOutcome",
    "InteractionRequest",
    "LifecycleState",
    "OutcomeStatus",
    "StatisticsSnapshot",
    "StatusChange",
    "format_error_message",
    "get_response_template",
]
