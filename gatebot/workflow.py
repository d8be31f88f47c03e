"""Approval workflow — drives a user from unverified to approved or rejected.

    Unverified ──begin──▶ AwaitingAnswer ──submit_answer──▶ AwaitingAdminDecision
        ▲                                                    │
        └────────────── decide(Reject) ◀─────────────────────┤
                                                             └─ decide(Approve) ──▶ Verified

State lives in :class:`~gatebot.sessions.SessionRegistry`; this module adds
admin authorization and all outbound messaging. Delivery failures are logged
and reported to whoever can act on them, but never undo a decision.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from gatebot import texts
from gatebot.actions import Approve, Reject, approve_callback, reject_callback
from gatebot.config import Settings
from gatebot.sessions import (
    AlreadyVerified,
    ApprovalExpiredOrUnknown,
    Decision,
    PendingApproval,
    SessionExists,
    SessionRegistry,
    VerificationSession,
)
from gatebot.storage import BroadcastPointer, DataStore
from gatebot.transport import TELEGRAM_MAX_MESSAGE, Button, MessageNotFound, Transport, TransportError

logger = logging.getLogger(__name__)


@dataclass
class AdminMessage:
    """The decision request a button press came from."""

    chat_id: int
    message_id: int
    text: str = ""


class ApprovalWorkflow:
    """Verification state machine bound to one registry and one transport."""

    def __init__(
        self,
        settings: Settings,
        registry: SessionRegistry,
        store: DataStore,
        transport: Transport,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.store = store
        self.transport = transport
        self.pointer: BroadcastPointer = store.load_broadcast_pointer()
        self._broadcast_lock = asyncio.Lock()

    def is_admin(self, user_id: int) -> bool:
        return user_id == self.settings.admin_id

    async def _notify(self, chat_id: int | str, text: str, **kwargs) -> bool:
        """Best-effort send. Returns False (and logs) when delivery fails."""
        try:
            await self.transport.send_message(chat_id, text, **kwargs)
        except TransportError:
            logger.exception("Failed to send message to %s", chat_id)
            return False
        return True

    # --- Unverified → AwaitingAnswer ---

    async def begin(self, user_id: int) -> VerificationSession | None:
        """Open a session and ask the verification question.

        Returns the session, or ``None`` when the user was turned away or the
        question could not be delivered.
        """
        question = self.settings.verification_question
        try:
            session = await self.registry.start_session(user_id, question)
        except AlreadyVerified:
            await self._notify(user_id, texts.ALREADY_VERIFIED)
            return None
        except SessionExists:
            await self._notify(user_id, texts.ALREADY_IN_PROGRESS)
            return None

        try:
            await self.transport.send_message(user_id, texts.question_message(question), html=True)
        except TransportError:
            logger.exception("Failed to send verification question to user %s", user_id)
            await self.registry.cancel_session(user_id)
            await self._notify(user_id, texts.START_FAILED)
            return None
        return session

    # --- AwaitingAnswer → AwaitingAdminDecision ---

    async def submit_answer(self, user_id: int, sender_name: str, answer: str) -> PendingApproval | None:
        """Record the answer and forward it to the admin with approve/reject buttons.

        Raises:
            NoActiveSession: the user has no open session.
        """
        entry = await self.registry.submit_answer(user_id, answer)
        buttons = [
            [Button(texts.APPROVE_BUTTON, callback_data=approve_callback(user_id))],
            [Button(texts.REJECT_BUTTON, callback_data=reject_callback(user_id))],
        ]
        try:
            await self.transport.send_message(
                self.settings.admin_id,
                texts.admin_request(user_id, sender_name, entry.question, answer),
                buttons=buttons,
                html=True,
            )
        except TransportError:
            logger.exception("Failed to forward answer of user %s to the admin", user_id)
            await self.registry.reopen(user_id)
            await self._notify(user_id, texts.ANSWER_FAILED)
            return None

        await self._notify(user_id, texts.ANSWER_FORWARDED)
        return entry

    # --- AwaitingAdminDecision → Verified | Rejected ---

    async def decide(
        self,
        actor_id: int,
        action: Approve | Reject,
        admin_message: AdminMessage | None = None,
    ) -> str:
        """Apply an admin decision. Returns the text to acknowledge the button with."""
        if not self.is_admin(actor_id):
            logger.warning("User %s tried to %s user %s", actor_id, type(action).__name__.lower(), action.user_id)
            return texts.ADMIN_ACTION_ONLY

        decision = Decision.APPROVE if isinstance(action, Approve) else Decision.REJECT
        try:
            await self.registry.resolve(action.user_id, decision)
        except ApprovalExpiredOrUnknown:
            logger.info("Decision for user %s ignored: no pending approval", action.user_id)
            return texts.APPROVAL_EXPIRED

        if admin_message is not None:
            await self._mark_decided(admin_message, decision)

        if decision is Decision.APPROVE:
            return await self._deliver_approval(action.user_id)
        if await self._notify(action.user_id, texts.REJECTED):
            return texts.REJECTED_ACK
        return texts.REJECTED_ACK_UNDELIVERED

    async def _deliver_approval(self, user_id: int) -> str:
        if not await self._notify(user_id, texts.VERIFIED):
            return texts.APPROVED_ACK_UNDELIVERED
        if self.settings.private_group_id:
            await self._deliver_invite(user_id)
        return texts.APPROVED_ACK

    async def _deliver_invite(self, user_id: int) -> None:
        group_id = self.settings.private_group_id
        try:
            link = await self.transport.create_invite_link(group_id)
            await self.transport.send_message(user_id, texts.INVITE_SENT.format(link=link))
            logger.info("Sent private group invite to user %s", user_id)
            return
        except TransportError:
            logger.exception("Failed to invite user %s to private group %s", user_id, group_id)

        await self._notify(user_id, texts.INVITE_FALLBACK.format(link=self.settings.private_group_invite_link))
        await self._notify(self.settings.admin_id, texts.INVITE_FAILED_ADMIN.format(user_id=user_id))

    async def _mark_decided(self, message: AdminMessage, decision: Decision) -> None:
        """Replace the request's buttons with the outcome so it can't be pressed again."""
        footer = texts.DECISION_APPROVED_FOOTER if decision is Decision.APPROVE else texts.DECISION_REJECTED_FOOTER
        try:
            text = texts.fit_html(message.text, TELEGRAM_MAX_MESSAGE - len(footer)) + footer
            await self.transport.edit_message(message.chat_id, message.message_id, text, html=True)
        except TransportError:
            logger.debug("Could not update decision message %s", message.message_id, exc_info=True)

    # --- Public prompt ---

    async def broadcast_prompt(self, actor_id: int) -> str:
        """(Re)post the verification prompt to the public channel.

        Edits the recorded message in place when possible so repeated calls
        leave a single prompt behind. Returns the notice sent to the actor.
        """
        if not self.is_admin(actor_id):
            await self._notify(actor_id, texts.ADMIN_ONLY)
            return texts.ADMIN_ONLY

        async with self._broadcast_lock:
            notice = await self._publish_prompt()
        await self._notify(actor_id, notice)
        return notice

    async def _publish_prompt(self) -> str:
        channel = self.settings.public_channel_id
        buttons = [[Button(texts.PROMPT_BUTTON, url=self.settings.deep_link)]]

        notice = texts.PROMPT_SENT
        if self.pointer.message_id is not None:
            try:
                await self.transport.edit_message(channel, self.pointer.message_id, texts.PROMPT, buttons=buttons)
                logger.info("Updated verification message %s in channel %s", self.pointer.message_id, channel)
                return texts.PROMPT_UPDATED
            except MessageNotFound:
                logger.warning("Verification message %s is gone, sending a new one", self.pointer.message_id)
                notice = texts.PROMPT_REPLACED
            except TransportError:
                logger.exception("Failed to update verification message %s", self.pointer.message_id)
                notice = texts.PROMPT_REPLACED_AFTER_ERROR

        try:
            message_id = await self.transport.send_message(channel, texts.PROMPT, buttons=buttons)
        except TransportError:
            logger.exception("Failed to send verification message to channel %s", channel)
            return texts.PROMPT_FAILED

        self.pointer = BroadcastPointer(message_id=message_id)
        self.store.save_broadcast_pointer(self.pointer)
        logger.info("Sent verification message %s to channel %s", message_id, channel)
        return notice
