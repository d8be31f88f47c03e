"""Event routing — one inbound event in, workflow or chat responder out.

Routing order for messages:

1. Restricted-topic moderation (non-admin posts are deleted, nothing else runs).
2. Commands (``/start``, ``/chat``, ``/sendverify``).
3. Private text from a user with an open session is their answer.
4. Replies to another message get a completion-service answer.

Each event is isolated: whatever goes wrong is logged here and never
reaches the next event.
"""
from __future__ import annotations

import logging

from gatebot import texts
from gatebot.actions import Action, Approve, Chat, Reject, SendVerify, Start, parse_callback, parse_command
from gatebot.chat import ChatResponder
from gatebot.config import Settings
from gatebot.models import make_chat_model
from gatebot.sessions import NoActiveSession, SessionRegistry
from gatebot.storage import DataStore
from gatebot.transport import EventKind, InboundEvent, Transport, TransportError, split_message
from gatebot.workflow import AdminMessage, ApprovalWorkflow

logger = logging.getLogger(__name__)


class Dispatcher:
    """Routes :class:`InboundEvent` objects to the workflow and chat responder."""

    def __init__(self, workflow: ApprovalWorkflow, chat: ChatResponder) -> None:
        self.workflow = workflow
        self.chat = chat
        self.settings = workflow.settings
        self.transport = workflow.transport

    async def handle(self, event: InboundEvent) -> None:
        try:
            await self._route(event)
        except Exception:
            logger.exception(
                "Error handling %s event from user %s", event.kind.value, event.sender_id,
            )

    async def _route(self, event: InboundEvent) -> None:
        if event.kind is EventKind.BUTTON:
            await self._handle_button(event)
            return

        if await self._moderate_topic(event):
            return
        if not event.text.strip():
            return

        if event.kind is EventKind.COMMAND:
            await self._handle_command(event, parse_command(event.text, self.settings.bot_username))
            return

        if event.is_private and self.workflow.registry.session(event.sender_id):
            try:
                await self.workflow.submit_answer(event.sender_id, event.sender_name, event.text.strip())
                return
            except NoActiveSession:
                # session resolved or expired between the check and the move
                logger.debug("Session of user %s vanished before the answer was recorded", event.sender_id)

        if event.kind is EventKind.REPLY:
            await self._reply_with_completion(event)

    # --- Moderation ---

    async def _moderate_topic(self, event: InboundEvent) -> bool:
        """Delete a non-admin message posted in the restricted topic."""
        topic = self.settings.restricted_topic_id
        if topic is None or event.thread_id != topic or self.workflow.is_admin(event.sender_id):
            return False
        if event.message_id is None:
            return False
        try:
            await self.transport.delete_message(event.chat_id, event.message_id)
            logger.info("Deleted message from user %s in restricted topic", event.sender_id)
        except TransportError:
            logger.exception("Failed to delete message %s in restricted topic", event.message_id)
        return True

    # --- Commands ---

    async def _handle_command(self, event: InboundEvent, action: Action) -> None:
        if isinstance(action, Start):
            if not event.is_private:
                await self._send(
                    event.chat_id, texts.START_IN_PRIVATE, reply_to=event.message_id, thread_id=event.thread_id,
                )
                return
            await self.workflow.begin(event.sender_id)
        elif isinstance(action, Chat):
            await self._handle_chat_command(event, action)
        elif isinstance(action, SendVerify):
            await self.workflow.broadcast_prompt(event.sender_id)
        else:
            logger.debug("Unknown command from user %s: %s", event.sender_id, event.text[:50])

    async def _handle_chat_command(self, event: InboundEvent, action: Chat) -> None:
        user_id = event.sender_id
        if not self.workflow.is_admin(user_id):
            await self._send(user_id, texts.ADMIN_ONLY)
            return
        if not self.chat.enabled:
            await self._send(user_id, texts.CHAT_DISABLED)
            return
        if not action.text:
            await self._send(user_id, texts.CHAT_USAGE)
            return

        await self._send(user_id, texts.CHAT_THINKING)
        response = await self.chat.respond(action.text)
        for chunk in split_message(response):
            await self._send(user_id, chunk)

    # --- Buttons ---

    async def _handle_button(self, event: InboundEvent) -> None:
        action = parse_callback(event.callback_data)
        ack: str | None = None
        try:
            if isinstance(action, (Approve, Reject)):
                admin_message = None
                if event.message_id is not None:
                    admin_message = AdminMessage(event.chat_id, event.message_id, event.text)
                ack = await self.workflow.decide(event.sender_id, action, admin_message)
            elif isinstance(action, Start):
                await self.workflow.begin(event.sender_id)
            else:
                logger.debug("Unknown button from user %s: %s", event.sender_id, event.callback_data)
        finally:
            if event.callback_id:
                try:
                    await self.transport.answer_button(event.callback_id, ack)
                except TransportError:
                    logger.warning("Failed to acknowledge button press %s", event.callback_id)

    # --- Reply chat ---

    async def _reply_with_completion(self, event: InboundEvent) -> None:
        if not self.chat.enabled:
            await self._send(event.sender_id, texts.CHAT_DISABLED)
            return

        await self._send(event.chat_id, texts.CHAT_THINKING, thread_id=event.thread_id)
        response = await self.chat.respond(event.text.strip())
        for chunk in split_message(response):
            await self._send(
                event.chat_id, chunk, reply_to=event.message_id, thread_id=event.thread_id,
            )

    async def _send(self, chat_id: int, text: str, **kwargs) -> None:
        try:
            await self.transport.send_message(chat_id, text, **kwargs)
        except TransportError:
            logger.exception("Failed to send message to %s", chat_id)


def build_dispatcher(settings: Settings, transport: Transport) -> Dispatcher:
    """Wire store, registry, workflow and chat responder for one bot process."""
    store = DataStore(settings.data_dir)
    registry = SessionRegistry(store, ttl=settings.verification_ttl_seconds)
    workflow = ApprovalWorkflow(settings, registry, store, transport)
    chat = ChatResponder(make_chat_model(settings), store.load_reference_data())
    logger.info(
        "Loaded %d verified users; AI chat %s",
        registry.verified_count, "enabled" if chat.enabled else "disabled",
    )
    return Dispatcher(workflow, chat)
