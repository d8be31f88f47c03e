"""Shared fixtures — in-memory transport and a fully wired workflow."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pytest

from gatebot.chat import ChatResponder
from gatebot.config import Settings
from gatebot.dispatcher import Dispatcher
from gatebot.sessions import SessionRegistry
from gatebot.storage import DataStore
from gatebot.transport import EventKind, InboundEvent, Keyboard, MessageNotFound, TransportError
from gatebot.workflow import ApprovalWorkflow

ADMIN_ID = 1000
CHANNEL_ID = -100500
GROUP_ID = "-100200"
TOPIC_ID = 77
INVITE_LINK = "https://t.me/+personal"


@dataclass
class SentMessage:
    chat_id: int | str
    text: str
    message_id: int
    buttons: Keyboard | None = None
    html: bool = False
    reply_to: int | None = None
    thread_id: int | None = None


class FakeTransport:
    """Records outbound calls; failures are switched on per test."""

    def __init__(self) -> None:
        self.sent: list[SentMessage] = []
        self.edits: list[tuple[int | str, int, str]] = []
        self.deleted: list[tuple[int | str, int]] = []
        self.answers: list[tuple[str, str | None]] = []
        self.invites: list[int | str] = []
        self.live: set[tuple[int | str, int]] = set()
        self.fail_send_to: set[int | str] = set()
        self.fail_edit: Exception | None = None
        self.fail_invite = False
        self.max_length: int | None = None
        self._next_id = 100

    async def send_message(self, chat_id, text, *, buttons=None, html=False, reply_to=None, thread_id=None) -> int:
        self._check_length(text)
        if chat_id in self.fail_send_to:
            raise TransportError("Forbidden: bot was blocked by the user")
        self._next_id += 1
        self.sent.append(SentMessage(chat_id, text, self._next_id, buttons, html, reply_to, thread_id))
        self.live.add((chat_id, self._next_id))
        return self._next_id

    async def edit_message(self, chat_id, message_id, text, *, buttons=None, html=False) -> None:
        self._check_length(text)
        if self.fail_edit is not None:
            raise self.fail_edit
        if (chat_id, message_id) not in self.live:
            raise MessageNotFound("Message to edit not found")
        self.edits.append((chat_id, message_id, text))

    async def delete_message(self, chat_id, message_id) -> None:
        self.live.discard((chat_id, message_id))
        self.deleted.append((chat_id, message_id))

    async def answer_button(self, callback_id, text=None) -> None:
        self.answers.append((callback_id, text))

    async def create_invite_link(self, chat_id) -> str:
        if self.fail_invite:
            raise TransportError("Bad Request: not enough rights to manage chat invite link")
        self.invites.append(chat_id)
        return INVITE_LINK

    # -- helpers --

    def _check_length(self, text: str) -> None:
        if self.max_length is not None and len(text) > self.max_length:
            raise TransportError("Bad Request: message is too long")

    def texts_to(self, chat_id) -> list[str]:
        return [m.text for m in self.sent if m.chat_id == chat_id]

    def live_in(self, chat_id) -> list[int]:
        return sorted(mid for cid, mid in self.live if cid == chat_id)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        bot_token="123456:test-token",
        admin_id=ADMIN_ID,
        public_channel_id=CHANNEL_ID,
        bot_username="gate_bot",
        restricted_topic_id=TOPIC_ID,
        private_group_id=GROUP_ID,
        data_dir=tmp_path,
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def store(tmp_path: Path) -> DataStore:
    return DataStore(tmp_path)


@pytest.fixture
def registry(store: DataStore) -> SessionRegistry:
    return SessionRegistry(store)


@pytest.fixture
def workflow(settings: Settings, registry: SessionRegistry, store: DataStore, transport: FakeTransport) -> ApprovalWorkflow:
    return ApprovalWorkflow(settings, registry, store, transport)


@pytest.fixture
def dispatcher(workflow: ApprovalWorkflow) -> Dispatcher:
    return Dispatcher(workflow, ChatResponder(None))


def private_message(user_id: int, text: str, *, name: str = "Ann", message_id: int = 1) -> InboundEvent:
    kind = EventKind.COMMAND if text.startswith("/") else EventKind.MESSAGE
    return InboundEvent(
        kind=kind, sender_id=user_id, sender_name=name, chat_id=user_id,
        chat_type="private", message_id=message_id, text=text,
    )


def button_press(user_id: int, data: str, *, chat_id: int | None = None,
                 message_id: int | None = None, text: str = "", callback_id: str = "cb-1") -> InboundEvent:
    return InboundEvent(
        kind=EventKind.BUTTON, sender_id=user_id, chat_id=chat_id if chat_id is not None else user_id,
        chat_type="private", message_id=message_id, text=text,
        callback_id=callback_id, callback_data=data,
    )


BOT_ENV_VARS = (
    "TELEGRAM_BOT_TOKEN", "ADMIN_ID", "PUBLIC_CHANNEL_ID", "BOT_USERNAME", "TOGETHER_AI_API_KEY",
    "RESTRICTED_TOPIC_ID", "PRIVATE_GROUP_ID", "PRIVATE_GROUP_INVITE_LINK", "VERIFICATION_QUESTION",
    "VERIFICATION_TTL_HOURS", "GATEBOT_DATA_DIR", "COMPLETION_BASE_URL", "COMPLETION_MODEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Unset bot variables; anything load_dotenv adds is removed afterwards."""
    for name in BOT_ENV_VARS:
        # setenv first so teardown deletes values that did not exist before
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
