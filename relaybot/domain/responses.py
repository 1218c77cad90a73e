"""
User-facing error response registry for relaybot.

Purpose
-------
Single source of truth for the text shown to users when an interaction
fails. The dispatcher never hardcodes messages; it looks up the template
for an ``ErrorKind`` and sends it ephemerally.

Design Notes
------------
Each template contains:
- emoji: leading marker for the message
- title: short label used in embeds and logs
- message: the sentence shown to the user
- severity: ErrorSeverity used for the log level of the failure
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from relaybot.core.exceptions import ErrorSeverity
from relaybot.domain.models import ErrorKind


@dataclass(frozen=True, slots=True)
class ResponseTemplate:
    """Template for one user-facing error response."""

    emoji: str
    title: str
    message: str
    severity: ErrorSeverity = ErrorSeverity.ERROR

    def render(self) -> str:
        return f"{self.emoji} {self.message}"


# ============================================================================
# RESPONSE TEMPLATE REGISTRY
# ============================================================================

RESPONSE_TEMPLATES: Dict[ErrorKind, ResponseTemplate] = {
    ErrorKind.ADMISSION_REJECTED: ResponseTemplate(
        emoji="🚫",
        title="Overloaded",
        message="The bot is currently overloaded. Please try again in a moment.",
        severity=ErrorSeverity.WARNING,
    ),
    ErrorKind.UNKNOWN_COMMAND: ResponseTemplate(
        emoji="❓",
        title="Unknown Command",
        message="This command is not recognized or has been removed.",
        severity=ErrorSeverity.INFO,
    ),
    ErrorKind.PRECONDITION_FAILED: ResponseTemplate(
        emoji="❌",
        title="Insufficient Permissions",
        message="You do not have the required permissions for this command.",
        severity=ErrorSeverity.INFO,
    ),
    ErrorKind.BAD_ARGUMENTS: ResponseTemplate(
        emoji="⚠️",
        title="Invalid Input",
        message="Invalid arguments. Please check your input.",
        severity=ErrorSeverity.INFO,
    ),
    ErrorKind.HANDLER_FAULT: ResponseTemplate(
        emoji="💥",
        title="Unexpected Error",
        message="An unexpected error occurred. It has been logged and will be investigated.",
        severity=ErrorSeverity.ERROR,
    ),
    ErrorKind.COMMAND_TIMEOUT: ResponseTemplate(
        emoji="⏱️",
        title="Timed Out",
        message="The command took too long and was cancelled. Please try again.",
        severity=ErrorSeverity.WARNING,
    ),
}


def get_response_template(kind: ErrorKind) -> ResponseTemplate:
    return RESPONSE_TEMPLATES[kind]


def format_error_message(kind: ErrorKind) -> str:
    """Return the ephemeral text sent to the user for ``kind``."""
    return RESPONSE_TEMPLATES[kind].render()


__all__ = [
    "ResponseTemplate",
    "RESPONSE_TEMPLATES",
    "get_response_template",
    "format_error_message",
]
