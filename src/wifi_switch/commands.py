"""Parse wifi-switch arguments into a single command request.

The command line mixes dash flags with bare words (``show today``, ``restart foo``,
a bare profile name), and every malformed token must become an
:class:`InvalidCommand` value instead of an exit, so the tokens are matched by
hand rather than with :mod:`argparse`. A help flag in the first, value or
trailing position always yields :class:`HelpCommand`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Sequence, Union

from .config import is_valid_profile_name

_INDEX_PATTERN = re.compile(r"[0-9]+")

PASSWORD_KEYWORDS = {"today": 0, "tomorrow": 1}

SHOW_FLAGS = {"-s", "show"}
RESTART_FLAGS = {"-r", "restart"}
DISCONNECT_FLAGS = {"-d", "disconnect"}
UPDATE_FLAGS = {"-u", "update"}
HELP_FLAGS = {"-h", "--help"}
VALUE_FLAGS = SHOW_FLAGS | RESTART_FLAGS | DISCONNECT_FLAGS


@dataclass(frozen=True, slots=True)
class ConnectCommand:
    profile: str


@dataclass(frozen=True, slots=True)
class RestartCommand:
    profile: str


@dataclass(frozen=True, slots=True)
class DisconnectCommand:
    """Stop *profile*, or every active profile when it is ``None``."""

    profile: str | None = None


@dataclass(frozen=True, slots=True)
class ShowPasswordCommand:
    index: int


@dataclass(frozen=True, slots=True)
class UpdateProfilesCommand:
    pass


@dataclass(frozen=True, slots=True)
class HelpCommand:
    pass


@dataclass(frozen=True, slots=True)
class InvalidCommand:
    reason: str


CommandRequest = Union[
    ConnectCommand,
    RestartCommand,
    DisconnectCommand,
    ShowPasswordCommand,
    UpdateProfilesCommand,
    HelpCommand,
    InvalidCommand,
]


def parse_password_index(token: str) -> int | None:
    """Map ``today``/``tomorrow`` or a digit string to a password index."""

    if token in PASSWORD_KEYWORDS:
        return PASSWORD_KEYWORDS[token]
    if _INDEX_PATTERN.fullmatch(token):
        return int(token)
    return None


def parse_arguments(
    argv: Sequence[str],
    is_known_profile: Callable[[str], bool],
) -> CommandRequest:
    """Return the command described by *argv* without performing any action."""

    args = list(argv)
    if not args:
        return HelpCommand()

    flag, rest = args[0], args[1:]
    if flag in HELP_FLAGS:
        return HelpCommand()
    if flag in VALUE_FLAGS and rest and rest[0] in HELP_FLAGS:
        return HelpCommand()

    request: CommandRequest
    if flag in SHOW_FLAGS:
        if not rest:
            return InvalidCommand(f"{flag} requires an index, 'today' or 'tomorrow'")
        index = parse_password_index(rest[0])
        if index is None:
            return InvalidCommand(f"Invalid password index: {rest[0]}")
        request, rest = ShowPasswordCommand(index), rest[1:]
    elif flag in RESTART_FLAGS:
        if not rest or not is_valid_profile_name(rest[0]):
            name = rest[0] if rest else ""
            return InvalidCommand(f"Invalid profile name for {flag}: {name!r}")
        request, rest = RestartCommand(rest[0]), rest[1:]
    elif flag in DISCONNECT_FLAGS:
        if rest:
            if not is_valid_profile_name(rest[0]):
                return InvalidCommand(f"Invalid profile name for {flag}: {rest[0]!r}")
            request, rest = DisconnectCommand(rest[0]), rest[1:]
        else:
            request = DisconnectCommand()
    elif flag in UPDATE_FLAGS:
        request = UpdateProfilesCommand()
    elif flag.startswith("-"):
        return InvalidCommand(f"Unknown option: {flag}")
    elif is_known_profile(flag):
        request = ConnectCommand(flag)
    else:
        return InvalidCommand(f"Unknown profile: {flag}")

    if rest:
        if rest[0] in HELP_FLAGS:
            return HelpCommand()
        return InvalidCommand(f"Unexpected argument: {rest[0]}")
    return request


__all__ = [
    "CommandRequest",
    "ConnectCommand",
    "DisconnectCommand",
    "HelpCommand",
    "InvalidCommand",
    "RestartCommand",
    "ShowPasswordCommand",
    "UpdateProfilesCommand",
    "parse_arguments",
    "parse_password_index",
]
