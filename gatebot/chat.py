"""Chat responder — free-form questions answered by the completion service.

Stateless: it never touches verification state, and it never raises. A
missing model or a failing call turns into a fixed text the caller can send
as-is.
"""
from __future__ import annotations

import logging

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from gatebot import texts
from gatebot.storage import ReferenceData

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You are a courteous, knowledgeable assistant for a community on Telegram. "
    "Answer thoroughly and clearly, without emojis. "
    "If the user asks about verification in this community, explain that they "
    "press the 'Apply for verification' button in the pinned message of the "
    "public channel, answer the verification question, and wait for the admin "
    "to review the answer; once approved they can join the private group for "
    "verified members."
)


class ChatResponder:
    """Turns a prompt into a reply string.

    Args:
        model: LangChain chat model, or ``None`` when the service is disabled.
        reference: Static reference data appended to the system prompt.
    """

    def __init__(self, model: BaseChatModel | None, reference: ReferenceData | None = None) -> None:
        self.model = model
        self.reference = reference or ReferenceData()

    @property
    def enabled(self) -> bool:
        return self.model is not None

    def _system_prompt(self) -> str:
        prompt = _SYSTEM_PROMPT
        if self.reference.verification_reference:
            prompt += f"\n\nReference about verification:\n{self.reference.verification_reference}"
        if self.reference.verification_keywords:
            prompt += "\nRelated keywords: " + ", ".join(self.reference.verification_keywords)
        return prompt

    async def respond(self, prompt: str) -> str:
        if self.model is None:
            return texts.CHAT_DISABLED
        try:
            result = await self.model.ainvoke([
                SystemMessage(content=self._system_prompt()),
                HumanMessage(content=prompt),
            ])
        except Exception:
            logger.exception("Completion service call failed")
            return texts.CHAT_UNAVAILABLE

        content = result.content if isinstance(result.content, str) else str(result.content)
        return content.strip() or texts.CHAT_EMPTY
