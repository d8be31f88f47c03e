"""Transport boundary — outbound messaging protocol and inbound event shape.

The workflow only talks to :class:`Transport`; the python-telegram-bot
implementation lives in :mod:`gatebot.telegram`. Tests substitute an
in-memory fake.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

TELEGRAM_MAX_MESSAGE = 4096


class TransportError(Exception):
    """An outbound call was rejected by the messaging platform."""


class MessageNotFound(TransportError):
    """The message targeted by an edit or delete no longer exists."""


@dataclass(frozen=True)
class Button:
    """Inline button. Exactly one of ``callback_data`` or ``url`` is set."""

    label: str
    callback_data: str | None = None
    url: str | None = None


Keyboard = list[list[Button]]


@runtime_checkable
class Transport(Protocol):
    """Outbound operations the bot needs from the messaging platform.

    Every method raises :class:`TransportError` when the platform refuses.
    """

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        *,
        buttons: Keyboard | None = None,
        html: bool = False,
        reply_to: int | None = None,
        thread_id: int | None = None,
    ) -> int:
        """Send a message and return its id."""
        ...

    async def edit_message(
        self,
        chat_id: int | str,
        message_id: int,
        text: str,
        *,
        buttons: Keyboard | None = None,
        html: bool = False,
    ) -> None:
        """Replace a message's text and buttons.

        Editing to identical content is not an error.
        """
        ...

    async def delete_message(self, chat_id: int | str, message_id: int) -> None:
        ...

    async def answer_button(self, callback_id: str, text: str | None = None) -> None:
        """Acknowledge a button press, optionally with a short toast."""
        ...

    async def create_invite_link(self, chat_id: int | str) -> str:
        """Create a single-use invite link for a group."""
        ...


class EventKind(enum.Enum):
    MESSAGE = "message"
    COMMAND = "command"
    REPLY = "reply"
    BUTTON = "button"


@dataclass
class InboundEvent:
    """A platform update reduced to what the bot routes on."""

    kind: EventKind
    sender_id: int
    chat_id: int
    sender_name: str = ""
    chat_type: str = "private"
    thread_id: int | None = None
    message_id: int | None = None
    text: str = ""
    callback_id: str | None = None
    callback_data: str = ""

    @property
    def is_private(self) -> bool:
        return self.chat_type == "private"


def split_message(text: str, max_len: int = TELEGRAM_MAX_MESSAGE) -> list[str]:
    """Split text into Telegram-safe chunks, preferring newline boundaries."""
    if len(text) <= max_len:
        return [text]
    chunks = []
    while text:
        if len(text) <= max_len:
            chunks.append(text)
            break
        split_at = text.rfind("\n", 0, max_len)
        if split_at <= 0:
            split_at = max_len
        chunks.append(text[:split_at])
        text = text[split_at:].lstrip("\n")
    return chunks
