"""Model factory — chat model for the completion service.

Together AI (the default) and any other OpenAI-compatible endpoint are
reached through ``langchain_openai.ChatOpenAI`` with a custom ``base_url``.
"""
from __future__ import annotations

import logging

from langchain_core.language_models import BaseChatModel

from gatebot.config import Settings

logger = logging.getLogger(__name__)


def make_chat_model(settings: Settings) -> BaseChatModel | None:
    """Create the completion model, or ``None`` when no API key is configured."""
    if not settings.completion_api_key:
        return None

    from langchain_openai import ChatOpenAI

    logger.debug(
        "Completion model %s at %s", settings.completion_model, settings.completion_base_url,
    )
    return ChatOpenAI(
        model=settings.completion_model,
        api_key=settings.completion_api_key,
        base_url=settings.completion_base_url,
        max_retries=1,
    )
