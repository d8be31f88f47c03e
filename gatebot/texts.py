"""User-facing message text.

Strings passed with ``html=True`` use Telegram's HTML subset; anything
user-supplied must be escaped before it is formatted in.
"""
from __future__ import annotations

from html import escape

from gatebot.transport import TELEGRAM_MAX_MESSAGE

# --- Verification: user side ---
ALREADY_VERIFIED = "✅ You are already a verified user."
ALREADY_IN_PROGRESS = "⏳ Your verification is already in progress. Please answer the question or wait for the admin."
START_FAILED = "❌ Could not start verification. Please try again later."
ANSWER_FORWARDED = "⏳ Your answer has been sent to the admin. Please wait for approval..."
ANSWER_FAILED = "❌ Sorry, there was an error processing your answer. Please send it again later."
START_IN_PRIVATE = "➡️ Open a private chat with me to start verification."
VERIFIED = "🎉 Congratulations! Your account has been verified."
INVITE_SENT = "🎉 You can now join the private group for verified users: {link}"
INVITE_FALLBACK = "⚠️ Could not create a personal invite to the private group. Please join with this link: {link}"
REJECTED = "❌ Your verification request has been rejected."

# --- Verification: admin side ---
ADMIN_ONLY = "❌ This command is for the admin only."
ADMIN_ACTION_ONLY = "❌ Admin actions only!"
APPROVAL_EXPIRED = "⚠️ This approval request has expired or does not exist."
APPROVED_ACK = "✅ User verified!"
APPROVED_ACK_UNDELIVERED = "✅ Verified (could not message the user) - check the logs!"
REJECTED_ACK = "❌ User rejected"
REJECTED_ACK_UNDELIVERED = "❌ Rejected (could not message the user) - check the logs!"
INVITE_FAILED_ADMIN = "⚠️ Could not create a private group invite for user {user_id}. The fallback invite link was sent instead."
DECISION_APPROVED_FOOTER = "\n\n✅ <b>Approved</b>"
DECISION_REJECTED_FOOTER = "\n\n❌ <b>Rejected</b>"
APPROVE_BUTTON = "✅ Approve"
REJECT_BUTTON = "❌ Reject"

# --- Broadcast ---
PROMPT = "📢 Would you like to get verified? Press the button below to start."
PROMPT_BUTTON = "📝 Apply for verification"
PROMPT_UPDATED = "✅ Verification message updated!"
PROMPT_SENT = "✅ Verification message sent!"
PROMPT_REPLACED = "✅ The previous verification message was gone, so a new one was sent."
PROMPT_REPLACED_AFTER_ERROR = "⚠️ Updating the message failed, but a new verification message was sent!"
PROMPT_FAILED = "❌ Failed to send or update the verification message. Check the logs."

# --- Chat ---
CHAT_DISABLED = "⚠️ AI chat is disabled because TOGETHER_AI_API_KEY is not set."
CHAT_UNAVAILABLE = "⚠️ The AI service is currently unavailable. Please try again later."
CHAT_EMPTY = "❌ I could not generate a response."
CHAT_THINKING = "🤖 Thinking..."
CHAT_USAGE = "➡️ Usage: /chat <your question>"


# Caps for user-controlled fields; the answer gets whatever room is left
_NAME_LIMIT = 128
_QUESTION_LIMIT = 1024
_ELLIPSIS = "…"


def fit_html(text: str, limit: int) -> str:
    """Escape ``text`` for HTML, cutting it so the result is at most ``limit`` characters.

    Characters are dropped whole, so an entity like ``&amp;`` is never split.
    """
    escaped = escape(text)
    if len(escaped) <= limit:
        return escaped
    room = limit - len(_ELLIPSIS)
    pieces: list[str] = []
    for ch in text:
        piece = escape(ch)
        if len(piece) > room:
            break
        pieces.append(piece)
        room -= len(piece)
    return "".join(pieces) + _ELLIPSIS


def question_message(question: str) -> str:
    return f"📝 <b>Verification question:</b>\n{fit_html(question, _QUESTION_LIMIT)}\n\n💡 <b>Send your answer now.</b>"


def admin_request(user_id: int, user_name: str, question: str, answer: str) -> str:
    """Decision request for the admin, trimmed to fit in one Telegram message."""
    head = (
        "🔔 <b>New verification request!</b>\n"
        f"👤 User: {fit_html(user_name or str(user_id), _NAME_LIMIT)} (ID: <code>{user_id}</code>)\n\n"
        f"📝 <b>Verification question:</b>\n{fit_html(question, _QUESTION_LIMIT)}\n\n"
        "✍️ <b>User's answer:</b>\n"
    )
    return head + fit_html(answer, TELEGRAM_MAX_MESSAGE - len(head))
