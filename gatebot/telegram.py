"""Telegram bot transport — python-telegram-bot binding and polling lifecycle."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager

from telegram import (
    Bot,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Message,
    ReplyParameters,
    Update,
)
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import Application, CallbackQueryHandler, ContextTypes, MessageHandler, filters

from gatebot.config import Settings
from gatebot.dispatcher import Dispatcher, build_dispatcher
from gatebot.transport import (
    EventKind,
    InboundEvent,
    Keyboard,
    MessageNotFound,
    TransportError,
)

logger = logging.getLogger(__name__)

_SWEEP_INTERVAL = 3600  # seconds
_NOT_FOUND_PHRASES = ("message to edit not found", "message to delete not found", "message not found")


@contextmanager
def _platform_errors() -> Iterator[None]:
    """Re-raise Telegram API errors as :class:`TransportError`."""
    try:
        yield
    except BadRequest as e:
        if any(p in str(e).lower() for p in _NOT_FOUND_PHRASES):
            raise MessageNotFound(str(e)) from e
        raise TransportError(str(e)) from e
    except TelegramError as e:
        raise TransportError(str(e)) from e


def _markup(buttons: Keyboard | None) -> InlineKeyboardMarkup | None:
    if not buttons:
        return None
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(b.label, callback_data=b.callback_data, url=b.url) for b in row]
        for row in buttons
    ])


class TelegramTransport:
    """:class:`~gatebot.transport.Transport` over a python-telegram-bot ``Bot``."""

    def __init__(self, bot: Bot) -> None:
        self.bot = bot

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
        reply = ReplyParameters(message_id=reply_to, allow_sending_without_reply=True) if reply_to else None
        with _platform_errors():
            message = await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML if html else None,
                reply_markup=_markup(buttons),
                reply_parameters=reply,
                message_thread_id=thread_id,
            )
        return message.message_id

    async def edit_message(
        self,
        chat_id: int | str,
        message_id: int,
        text: str,
        *,
        buttons: Keyboard | None = None,
        html: bool = False,
    ) -> None:
        try:
            with _platform_errors():
                await self.bot.edit_message_text(
                    text=text,
                    chat_id=chat_id,
                    message_id=message_id,
                    parse_mode=ParseMode.HTML if html else None,
                    reply_markup=_markup(buttons),
                )
        except TransportError as e:
            # Telegram refuses edits that change nothing; the message is already current
            if "message is not modified" in str(e).lower():
                logger.debug("Message %s already up to date", message_id)
                return
            raise

    async def delete_message(self, chat_id: int | str, message_id: int) -> None:
        with _platform_errors():
            await self.bot.delete_message(chat_id=chat_id, message_id=message_id)

    async def answer_button(self, callback_id: str, text: str | None = None) -> None:
        with _platform_errors():
            await self.bot.answer_callback_query(callback_query_id=callback_id, text=text)

    async def create_invite_link(self, chat_id: int | str) -> str:
        with _platform_errors():
            link = await self.bot.create_chat_invite_link(chat_id=chat_id, member_limit=1)
        return link.invite_link


def _sender_name(user) -> str:
    return user.full_name or user.username or str(user.id)


def _is_reply(message: Message) -> bool:
    """True for genuine replies.

    Messages inside a forum topic carry the topic's creation message as
    ``reply_to_message``; that does not count.
    """
    target = message.reply_to_message
    if target is None:
        return False
    if message.is_topic_message and target.message_id == message.message_thread_id:
        return False
    return True


def event_from_update(update: Update) -> InboundEvent | None:
    """Reduce a Telegram update to an :class:`InboundEvent`, or None if irrelevant."""
    query = update.callback_query
    if query is not None:
        message = query.message
        chat = message.chat if message is not None else None
        return InboundEvent(
            kind=EventKind.BUTTON,
            sender_id=query.from_user.id,
            sender_name=_sender_name(query.from_user),
            chat_id=chat.id if chat else query.from_user.id,
            chat_type=chat.type if chat else "private",
            message_id=message.message_id if message is not None else None,
            text=getattr(message, "text", None) or "",
            callback_id=query.id,
            callback_data=query.data or "",
        )

    message = update.message
    if message is None or message.from_user is None:
        return None

    text = message.text or ""
    if text.startswith("/"):
        kind = EventKind.COMMAND
    elif _is_reply(message):
        kind = EventKind.REPLY
    else:
        kind = EventKind.MESSAGE

    return InboundEvent(
        kind=kind,
        sender_id=message.from_user.id,
        sender_name=_sender_name(message.from_user),
        chat_id=message.chat.id,
        chat_type=message.chat.type,
        thread_id=message.message_thread_id if message.is_topic_message else None,
        message_id=message.message_id,
        text=text,
    )


class TelegramBot:
    """Polls Telegram and feeds every update through a :class:`Dispatcher`."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.dispatcher: Dispatcher | None = None
        self._app: Application | None = None
        self._stop_event = asyncio.Event()
        self._sweep_task: asyncio.Task | None = None

    async def _on_update(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        event = event_from_update(update)
        if event is None or self.dispatcher is None:
            return
        logger.debug("Telegram %s from %s: %s", event.kind.value, event.sender_id, (event.text or event.callback_data)[:100])
        await self.dispatcher.handle(event)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("Error while processing Telegram update", exc_info=context.error)

    @staticmethod
    def _on_polling_error(error: TelegramError) -> None:
        logger.error("Telegram polling error: %s", error)

    async def start(self) -> None:
        """Connect and start polling (non-blocking).

        Raises:
            TransportError: the token was rejected or Telegram is unreachable.
        """
        app = (
            Application.builder()
            .token(self.settings.bot_token)
            .concurrent_updates(True)
            .build()
        )
        self.dispatcher = build_dispatcher(self.settings, TelegramTransport(app.bot))
        app.add_handler(CallbackQueryHandler(self._on_update))
        app.add_handler(MessageHandler(filters.UpdateType.MESSAGE, self._on_update))
        app.add_error_handler(self._on_error)

        try:
            await app.initialize()
            await app.start()
            await app.updater.start_polling(
                drop_pending_updates=True,
                allowed_updates=[Update.MESSAGE, Update.CALLBACK_QUERY],
                error_callback=self._on_polling_error,
            )
        except TelegramError as e:
            try:
                await app.shutdown()
            except Exception:
                logger.debug("Telegram shutdown after failed start (ignored)", exc_info=True)
            raise TransportError(f"Could not start Telegram bot: {e}") from e

        self._app = app
        if self.settings.verification_ttl_seconds is not None:
            self._sweep_task = asyncio.create_task(self._sweep_loop(), name="gatebot-sweep")
        logger.info("Telegram bot @%s started", app.bot.username)

    async def _sweep_loop(self) -> None:
        """Periodically drop abandoned sessions and approvals."""
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=_SWEEP_INTERVAL)
                break
            except asyncio.TimeoutError:
                pass
            if self.dispatcher is not None:
                self.dispatcher.workflow.registry.sweep()

    async def stop(self) -> None:
        """Stop polling and shut the application down."""
        self._stop_event.set()
        if self._sweep_task:
            await self._sweep_task
            self._sweep_task = None
        if self._app:
            try:
                await self._app.updater.stop()
            except BaseException:
                logger.debug("Telegram updater stop error (ignored)", exc_info=True)
            try:
                await self._app.stop()
            except BaseException:
                logger.debug("Telegram app stop error (ignored)", exc_info=True)
            try:
                await self._app.shutdown()
            except BaseException:
                logger.debug("Telegram app shutdown error (ignored)", exc_info=True)
            self._app = None
            logger.info("Telegram bot stopped")
