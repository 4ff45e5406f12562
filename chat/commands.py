"""Inline ``@command`` tokens in user input.

Commands are looked up in an explicit ``CommandRegistry`` created at startup
and passed to whatever needs it; there is no global registry.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from .config import ServiceConfig
from .models import ChatSession, CommandPosition, Message

if TYPE_CHECKING:
    from connectors.client import ChatClient

logger = structlog.get_logger(__name__)

# One token: "@" followed by word characters and hyphens. Linear, no backtracking.
COMMAND_PATTERN = re.compile(r"@[\w-]+")


def parse_commands(text: str, prefixes: Iterable[str]) -> list[CommandPosition]:
    """Find registered command tokens in ``text``.

    Matching is exact on the whole token and case-insensitive; unregistered
    tokens are skipped.

    Args:
        text: Free-form user input
        prefixes: Registered command prefixes, e.g. ``["@make-title"]``

    Returns:
        Command positions in order of appearance
    """
    lookup = {prefix.lower(): prefix for prefix in prefixes}
    if not lookup:
        return []

    positions = []
    for match in COMMAND_PATTERN.finditer(text):
        prefix = lookup.get(match.group(0).lower())
        if prefix is None:
            continue
        positions.append(
            CommandPosition(
                command=match.group(0),
                prefix=prefix,
                start_index=match.start(),
                end_index=match.end(),
            )
        )
    return positions


@dataclass
class CommandContext:
    """Everything a command may read or update."""

    session: ChatSession
    config: ServiceConfig
    command_text: str
    create_client: Callable[[ServiceConfig], ChatClient]
    update_messages: Callable[[list[Message]], None]
    update_session_title: Callable[[str], Awaitable[None]]

    @property
    def messages(self) -> list[Message]:
        return list(self.session.messages)


@dataclass
class CommandResult:
    """Outcome of running a command."""

    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class Command(ABC):
    """A slash-style action triggered by an ``@prefix`` token."""

    name: str
    description: str
    prefix: str
    help_text: str = ""

    @abstractmethod
    async def execute(self, context: CommandContext) -> CommandResult:
        """Run the command."""
        ...

    def is_available(self, context: CommandContext) -> bool:
        return True


class CommandRegistry:
    """Registered commands, keyed by prefix."""

    def __init__(self, commands: Iterable[Command] = ()):
        self._commands: dict[str, Command] = {}
        for command in commands:
            self.register(command)

    def register(self, command: Command):
        self._commands[command.prefix] = command
        logger.debug("command_registered", prefix=command.prefix, name=command.name)

    def get(self, prefix: str) -> Command | None:
        return self._commands.get(prefix)

    def all(self) -> list[Command]:
        return list(self._commands.values())

    @property
    def prefixes(self) -> list[str]:
        return list(self._commands)

    def parse(self, text: str) -> list[CommandPosition]:
        """Find this registry's commands in ``text``."""
        return parse_commands(text, self._commands)
