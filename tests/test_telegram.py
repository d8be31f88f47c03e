"""Tests for the python-telegram-bot binding: update conversion and error mapping."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram import CallbackQuery, Chat, Message, Update, User
from telegram.constants import ParseMode
from telegram.error import BadRequest, Forbidden

from gatebot.dispatcher import build_dispatcher
from gatebot.telegram import TelegramBot, TelegramTransport, event_from_update
from gatebot.transport import Button, EventKind, MessageNotFound, Transport, TransportError

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
ANN = User(id=42, first_name="Ann", last_name="Lee", is_bot=False)
PRIVATE = Chat(id=42, type=Chat.PRIVATE)
GROUP = Chat(id=-100300, type=Chat.SUPERGROUP, is_forum=True)


def _message(text: str, *, chat: Chat = PRIVATE, message_id: int = 10, **kwargs) -> Message:
    return Message(message_id=message_id, date=NOW, chat=chat, from_user=ANN, text=text, **kwargs)


class TestEventFromUpdate:
    def test_command(self):
        event = event_from_update(Update(update_id=1, message=_message("/start verify")))
        assert event.kind is EventKind.COMMAND
        assert event.sender_id == 42
        assert event.sender_name == "Ann Lee"
        assert event.is_private
        assert event.text == "/start verify"

    def test_plain_text(self):
        event = event_from_update(Update(update_id=1, message=_message("my answer")))
        assert event.kind is EventKind.MESSAGE
        assert event.thread_id is None

    def test_reply(self):
        original = Message(message_id=5, date=NOW, chat=GROUP, text="earlier")
        message = _message("what does this mean?", chat=GROUP, reply_to_message=original)
        event = event_from_update(Update(update_id=1, message=message))
        assert event.kind is EventKind.REPLY
        assert event.chat_id == -100300
        assert event.chat_type == Chat.SUPERGROUP

    def test_topic_message_is_not_a_reply(self):
        topic_root = Message(message_id=77, date=NOW, chat=GROUP)
        message = _message(
            "hello", chat=GROUP, message_id=90,
            message_thread_id=77, is_topic_message=True, reply_to_message=topic_root,
        )
        event = event_from_update(Update(update_id=1, message=message))
        assert event.kind is EventKind.MESSAGE
        assert event.thread_id == 77
        assert event.message_id == 90

    def test_reply_inside_topic(self):
        other = Message(message_id=85, date=NOW, chat=GROUP, text="earlier")
        message = _message(
            "and this?", chat=GROUP, message_thread_id=77, is_topic_message=True, reply_to_message=other,
        )
        event = event_from_update(Update(update_id=1, message=message))
        assert event.kind is EventKind.REPLY
        assert event.thread_id == 77

    def test_button_press(self):
        admin = User(id=1000, first_name="Admin", is_bot=False)
        request = Message(message_id=55, date=NOW, chat=Chat(id=1000, type=Chat.PRIVATE), text="request")
        query = CallbackQuery(id="cb-9", from_user=admin, chat_instance="ci", data="approve_42", message=request)
        event = event_from_update(Update(update_id=1, callback_query=query))

        assert event.kind is EventKind.BUTTON
        assert event.sender_id == 1000
        assert event.chat_id == 1000
        assert event.message_id == 55
        assert event.text == "request"
        assert event.callback_id == "cb-9"
        assert event.callback_data == "approve_42"

    def test_irrelevant_update(self):
        assert event_from_update(Update(update_id=1)) is None


@pytest.fixture
def bot() -> MagicMock:
    bot = MagicMock()
    bot.send_message = AsyncMock(return_value=SimpleNamespace(message_id=314))
    bot.edit_message_text = AsyncMock()
    bot.delete_message = AsyncMock()
    bot.answer_callback_query = AsyncMock()
    bot.create_chat_invite_link = AsyncMock(return_value=SimpleNamespace(invite_link="https://t.me/+once"))
    return bot


class TestTelegramTransport:
    def test_satisfies_protocol(self, bot):
        assert isinstance(TelegramTransport(bot), Transport)

    def test_send_returns_message_id(self, bot):
        transport = TelegramTransport(bot)
        message_id = asyncio.run(transport.send_message(
            -100500, "<b>hi</b>", html=True, reply_to=9, thread_id=3,
            buttons=[[Button("Go", url="https://t.me/gate_bot?start=verify")]],
        ))

        assert message_id == 314
        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["parse_mode"] == ParseMode.HTML
        assert kwargs["reply_parameters"].message_id == 9
        assert kwargs["message_thread_id"] == 3
        [[button]] = kwargs["reply_markup"].inline_keyboard
        assert button.url == "https://t.me/gate_bot?start=verify"

    def test_plain_send_has_no_markup(self, bot):
        asyncio.run(TelegramTransport(bot).send_message(42, "hello"))
        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["parse_mode"] is None
        assert kwargs["reply_markup"] is None
        assert kwargs["reply_parameters"] is None

    def test_edit_of_missing_message(self, bot):
        bot.edit_message_text.side_effect = BadRequest("Message to edit not found")
        with pytest.raises(MessageNotFound):
            asyncio.run(TelegramTransport(bot).edit_message(-100500, 1, "text"))

    def test_unchanged_edit_is_success(self, bot):
        bot.edit_message_text.side_effect = BadRequest(
            "Message is not modified: specified new message content and reply markup are exactly the same"
        )
        asyncio.run(TelegramTransport(bot).edit_message(-100500, 1, "text"))

    def test_other_bad_request(self, bot):
        bot.edit_message_text.side_effect = BadRequest("Message can't be edited")
        with pytest.raises(TransportError) as exc_info:
            asyncio.run(TelegramTransport(bot).edit_message(-100500, 1, "text"))
        assert not isinstance(exc_info.value, MessageNotFound)

    def test_blocked_user(self, bot):
        bot.send_message.side_effect = Forbidden("Forbidden: bot was blocked by the user")
        with pytest.raises(TransportError):
            asyncio.run(TelegramTransport(bot).send_message(42, "hello"))

    def test_invite_link_is_single_use(self, bot):
        link = asyncio.run(TelegramTransport(bot).create_invite_link("-100200"))
        assert link == "https://t.me/+once"
        bot.create_chat_invite_link.assert_awaited_once_with(chat_id="-100200", member_limit=1)

    def test_answer_button(self, bot):
        asyncio.run(TelegramTransport(bot).answer_button("cb-1", "done"))
        bot.answer_callback_query.assert_awaited_once_with(callback_query_id="cb-1", text="done")


class TestSweepLoop:
    def test_sweeps_until_stopped(self, settings, transport, monkeypatch):
        monkeypatch.setattr("gatebot.telegram._SWEEP_INTERVAL", 0.01)
        settings.verification_ttl_hours = 1
        sweeps: list[int] = []

        async def scenario() -> TelegramBot:
            bot = TelegramBot(settings)
            bot.dispatcher = build_dispatcher(settings, transport)
            monkeypatch.setattr(bot.dispatcher.workflow.registry, "sweep", lambda: sweeps.append(1) or 0)
            bot._sweep_task = asyncio.create_task(bot._sweep_loop())
            await asyncio.sleep(0.1)
            await bot.stop()
            return bot

        bot = asyncio.run(scenario())
        assert sweeps
        assert bot._sweep_task is None

    def test_stop_ends_a_waiting_sweep(self, settings, transport):
        settings.verification_ttl_hours = 1

        async def scenario() -> None:
            bot = TelegramBot(settings)
            bot.dispatcher = build_dispatcher(settings, transport)
            task = asyncio.create_task(bot._sweep_loop())
            bot._sweep_task = task
            await asyncio.sleep(0)
            # the default interval is an hour; stop must not wait for it
            await asyncio.wait_for(bot.stop(), timeout=1)
            assert task.done()

        asyncio.run(scenario())
