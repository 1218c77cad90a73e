"""
Command registry for relaybot.

Purpose
-------
Own the mapping from command name to handler and metadata for the whole
process lifetime, resolve names for the dispatcher, and publish the
command set to the platform in one bulk call.

Responsibilities
----------------
- Register handlers under normalised names ("utility ping")
- Reject duplicates and registrations after sealing
- Resolve names for dispatch
- Build platform payloads, grouping sub-commands under their group
- Bulk-register globally or to a single guild

Non-Responsibilities
--------------------
- Retrying registration (the caller wraps this in its resilience policy)
- Executing handlers (InteractionDispatcher)

Architecture Notes
------------------
- Names have one to three space-separated parts: command, group + sub
  command, or group + sub-group + sub-command.
- The registry is sealed when the dispatcher starts serving; the handler
  map is read-only from then on, so lookups need no lock.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

from relaybot.core.exceptions import RegistrationFailedError
from relaybot.core.logging.logger import get_logger
from relaybot.domain.exceptions import (
    DuplicateCommandError,
    RegistrySealedError,
    UnknownCommandError,
)
from relaybot.domain.models import InteractionRequest
from relaybot.gateway.base import GatewayClient, GatewayView, InteractionHandle

logger = get_logger(__name__)

MAX_NAME_PARTS = 3
MAX_DESCRIPTION_LENGTH = 100


# ============================================================================
# Handler contract
# ============================================================================


@dataclass(frozen=True, slots=True)
class CommandContext:
    """Per-invocation collaborators handed to a handler."""

    handle: InteractionHandle
    gateway: GatewayView


@runtime_checkable
class CommandHandler(Protocol):
    async def execute(self, request: InteractionRequest, context: CommandContext) -> None: ...


HandlerFunc = Callable[[InteractionRequest, CommandContext], Awaitable[None]]


class FunctionHandler:
    """Adapts a plain coroutine function to the CommandHandler protocol."""

    def __init__(self, func: HandlerFunc) -> None:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"{func!r} must be an async function")
        self._func = func
        self.__name__ = getattr(func, "__name__", "handler")

    async def execute(self, request: InteractionRequest, context: CommandContext) -> None:
        await self._func(request, context)


# ============================================================================
# Metadata
# ============================================================================


class OptionType(Enum):
    """Discord application command option types used by relaybot."""

    STRING = 3
    INTEGER = 4
    BOOLEAN = 5
    USER = 6
    CHANNEL = 7
    ROLE = 8
    NUMBER = 10


@dataclass(frozen=True, slots=True)
class CommandOption:
    name: str
    description: str
    type: OptionType = OptionType.STRING
    required: bool = True
    max_length: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "description": self.description[:MAX_DESCRIPTION_LENGTH],
            "type": self.type.value,
            "required": self.required,
        }
        if self.max_length is not None:
            payload["max_length"] = self.max_length
        return payload


@dataclass(frozen=True, slots=True)
class CommandMetadata:
    """
    Descriptive data for one command.

    ``default_member_permissions`` is a Discord permission bit set; members
    lacking it do not see the command. ``guild_only`` hides it in DMs.
    """

    description: str = "No description"
    options: Tuple[CommandOption, ...] = ()
    guild_only: bool = False
    default_member_permissions: Optional[int] = None

    def leaf_payload(self, name: str) -> Dict[str, Any]:
        # Required options must precede optional ones
        ordered = sorted(self.options, key=lambda o: not o.required)
        return {
            "name": name,
            "description": (self.description or "No description")[:MAX_DESCRIPTION_LENGTH],
            "type": 1,
            "options": [o.to_payload() for o in ordered],
        }


@dataclass(frozen=True, slots=True)
class RegistrationTarget:
    """Where commands are registered: globally, or one guild (fast updates)."""

    guild_id: Optional[int] = None

    @classmethod
    def global_(cls) -> "RegistrationTarget":
        return cls(None)

    @classmethod
    def guild(cls, guild_id: int) -> "RegistrationTarget":
        return cls(guild_id)

    @property
    def is_global(self) -> bool:
        return self.guild_id is None

    @property
    def label(self) -> str:
        return "global" if self.guild_id is None else f"guild:{self.guild_id}"


def normalize_name(name: str) -> str:
    """Lowercase and collapse whitespace; validates the part count."""
    normalized = " ".join(name.lower().split())
    if not normalized:
        raise ValueError("command name must not be empty")
    if len(normalized.split(" ")) > MAX_NAME_PARTS:
        raise ValueError(f"command name '{name}' has more than {MAX_NAME_PARTS} parts")
    return normalized


# ============================================================================
# Registry
# ============================================================================


@dataclass
class _GroupNode:
    description: str
    children: Dict[str, Any] = field(default_factory=dict)


class CommandRegistry:
    """Name -> handler map with bulk platform registration."""

    def __init__(self) -> None:
        self._handlers: Dict[str, CommandHandler] = {}
        self._metadata: Dict[str, CommandMetadata] = {}
        self._group_descriptions: Dict[str, str] = {}
        self._sealed = False

    # ----- registration ----- #

    def register(
        self,
        name: str,
        handler: CommandHandler,
        metadata: Optional[CommandMetadata] = None,
    ) -> None:
        """
        Register ``handler`` under ``name``.

        Raises
        ------
        RegistrySealedError
            If the dispatcher has started serving.
        DuplicateCommandError
            If the name is taken, or clashes with an existing group.
        """
        key = normalize_name(name)

        if self._sealed:
            raise RegistrySealedError(key)

        if key in self._handlers or self._clashes_with_group(key):
            raise DuplicateCommandError(key)

        self._handlers[key] = handler
        self._metadata[key] = metadata or CommandMetadata()

        logger.debug("Command registered", extra={"command_name": key})

    def _clashes_with_group(self, key: str) -> bool:
        # "utility" cannot be both a command and the group of "utility ping"
        for existing in self._handlers:
            if existing.startswith(key + " ") or key.startswith(existing + " "):
                return True
        return False

    def command(
        self,
        name: str,
        description: str = "No description",
        options: Sequence[CommandOption] = (),
        guild_only: bool = False,
        default_member_permissions: Optional[int] = None,
    ) -> Callable[[HandlerFunc], HandlerFunc]:
        """
        Decorator form of ``register`` for coroutine functions.

        Example
        -------
        >>> @registry.command("utility ping", "Check latency")
        ... async def ping(request, context):
        ...     await context.handle.respond("pong", ephemeral=True)
        """

        def decorator(func: HandlerFunc) -> HandlerFunc:
            self.register(
                name,
                FunctionHandler(func),
                CommandMetadata(
                    description=description,
                    options=tuple(options),
                    guild_only=guild_only,
                    default_member_permissions=default_member_permissions,
                ),
            )
            return func

        return decorator

    def describe_group(self, group: str, description: str) -> None:
        """Set the description shown for a command group."""
        self._group_descriptions[normalize_name(group)] = description

    def seal(self) -> None:
        if not self._sealed:
            self._sealed = True
            logger.info("Command registry sealed", extra={"command_count": len(self._handlers)})

    @property
    def sealed(self) -> bool:
        return self._sealed

    # ----- lookup ----- #

    def resolve(self, name: str) -> CommandHandler:
        """
        Return the handler for ``name``.

        Raises
        ------
        UnknownCommandError
            If nothing is registered under the name.
        """
        try:
            key = normalize_name(name)
        except ValueError:
            raise UnknownCommandError(name) from None

        handler = self._handlers.get(key)
        if handler is None:
            raise UnknownCommandError(key)
        return handler

    def metadata(self, name: str) -> CommandMetadata:
        key = normalize_name(name)
        if key not in self._metadata:
            raise UnknownCommandError(key)
        return self._metadata[key]

    @property
    def names(self) -> List[str]:
        return sorted(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        try:
            return normalize_name(name) in self._handlers
        except ValueError:
            return False

    # ----- platform registration ----- #

    def build_payloads(self) -> List[Dict[str, Any]]:
        """Build the bulk-overwrite payload list for the platform."""
        top_level: Dict[str, Any] = {}

        for key in sorted(self._handlers):
            meta = self._metadata[key]
            parts = key.split(" ")

            if len(parts) == 1:
                top_level[key] = meta
                continue

            node = top_level.setdefault(parts[0], _GroupNode(self._group_description(parts[0])))
            for depth, part in enumerate(parts[1:-1], start=1):
                group_key = " ".join(parts[: depth + 1])
                node = node.children.setdefault(part, _GroupNode(self._group_description(group_key)))
            node.children[parts[-1]] = meta

        payloads: List[Dict[str, Any]] = []
        for name, entry in top_level.items():
            if isinstance(entry, CommandMetadata):
                payload = entry.leaf_payload(name)
                payload["dm_permission"] = not entry.guild_only
                if entry.default_member_permissions is not None:
                    payload["default_member_permissions"] = str(entry.default_member_permissions)
            else:
                payload = {
                    "name": name,
                    "description": entry.description[:MAX_DESCRIPTION_LENGTH],
                    "type": 1,
                    "options": self._group_options(entry),
                }
            payloads.append(payload)
        return payloads

    def _group_options(self, node: _GroupNode) -> List[Dict[str, Any]]:
        options: List[Dict[str, Any]] = []
        for name, child in node.children.items():
            if isinstance(child, CommandMetadata):
                leaf = child.leaf_payload(name)
                options.append(leaf)
            else:
                options.append(
                    {
                        "name": name,
                        "description": child.description[:MAX_DESCRIPTION_LENGTH],
                        "type": 2,
                        "options": self._group_options(child),
                    }
                )
        return options

    def _group_description(self, group_key: str) -> str:
        return self._group_descriptions.get(group_key, f"{group_key.title()} commands")

    async def register_all_to_platform(
        self, gateway: GatewayClient, target: RegistrationTarget
    ) -> None:
        """
        Publish every registered command to ``target`` in one bulk call.

        Raises
        ------
        RegistrationFailedError
            Wrapping any transport failure; the caller owns retry.
        """
        payloads = self.build_payloads()

        try:
            await gateway.bulk_register_commands(payloads, guild_id=target.guild_id)
        except asyncio.CancelledError:
            raise
        except RegistrationFailedError:
            raise
        except Exception as e:
            raise RegistrationFailedError(target.label, e) from e

        logger.info(
            "Commands registered with platform",
            extra={
                "target": target.label,
                "command_count": len(self._handlers),
                "top_level_count": len(payloads),
            },
        )
