"""gatebot — Telegram bot for admin-approved member verification.

Public API::

    from gatebot import Dispatcher, build_dispatcher, settings_from_env

    settings = settings_from_env()
    dispatcher = build_dispatcher(settings, transport)
    await dispatcher.handle(event)
"""
from __future__ import annotations

from gatebot.config import ConfigError, Settings, settings_from_env
from gatebot.dispatcher import Dispatcher, build_dispatcher
from gatebot.sessions import SessionRegistry
from gatebot.workflow import ApprovalWorkflow

__version__ = "0.1.0"

__all__ = [
    "ApprovalWorkflow",
    "ConfigError",
    "Dispatcher",
    "SessionRegistry",
    "Settings",
    "build_dispatcher",
    "settings_from_env",
]
