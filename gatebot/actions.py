"""Inbound actions — commands and button callbacks parsed into a closed set.

Everything the bot reacts to is one of :data:`Action`. Parsing happens once,
at the edge; handlers then branch on the type instead of on raw strings.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

START_CALLBACK = "start_verification"
_APPROVE_PREFIX = "approve_"
_REJECT_PREFIX = "reject_"


@dataclass(frozen=True)
class Start:
    """Begin verification (``/start`` or the legacy channel button)."""

    payload: str = ""


@dataclass(frozen=True)
class Chat:
    """One-shot completion query (``/chat <text>``)."""

    text: str


@dataclass(frozen=True)
class SendVerify:
    """(Re)post the public verification prompt."""


@dataclass(frozen=True)
class Approve:
    user_id: int


@dataclass(frozen=True)
class Reject:
    user_id: int


@dataclass(frozen=True)
class Unknown:
    raw: str


Action = Union[Start, Chat, SendVerify, Approve, Reject, Unknown]


def parse_command(text: str, bot_username: str = "") -> Action:
    """Parse a ``/command args`` message.

    The command name is case-insensitive and may carry a ``@botname``
    suffix, as Telegram adds in group chats. When ``bot_username`` is given,
    a command addressed to any other bot is :class:`Unknown`.
    """
    head, _, rest = text.strip().partition(" ")
    if not head.startswith("/"):
        return Unknown(text)
    name, _, target = head[1:].partition("@")
    if target and bot_username and target.lower() != bot_username.lower():
        return Unknown(text)
    name = name.lower()
    args = rest.strip()

    if name == "start":
        return Start(payload=args)
    if name == "chat":
        return Chat(text=args)
    if name == "sendverify":
        return SendVerify()
    return Unknown(text)


def parse_callback(data: str) -> Action:
    """Parse inline button callback data."""
    if data == START_CALLBACK:
        return Start()
    for prefix, variant in ((_APPROVE_PREFIX, Approve), (_REJECT_PREFIX, Reject)):
        if data.startswith(prefix):
            try:
                return variant(int(data[len(prefix):]))
            except ValueError:
                return Unknown(data)
    return Unknown(data)


def approve_callback(user_id: int) -> str:
    return f"{_APPROVE_PREFIX}{user_id}"


def reject_callback(user_id: int) -> str:
    return f"{_REJECT_PREFIX}{user_id}"
