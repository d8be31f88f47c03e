"""Configuration — loads .env, validates bot settings.

Required values abort startup with a :class:`ConfigError`; optional ones
disable their feature and leave a warning on ``Settings.warnings`` so the
CLI can print it once.
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_INVITE_LINK = "https://t.me/+zgS8UCh32NUwMTc0"
DEFAULT_QUESTION = "What is the purpose of verification in this community?"

# Together AI exposes an OpenAI-compatible chat/completions endpoint
DEFAULT_COMPLETION_BASE_URL = "https://api.together.xyz/v1"
DEFAULT_COMPLETION_MODEL = "meta-llama/Llama-3.3-70B-Instruct-Turbo"


class ConfigError(ValueError):
    """Raised when required settings are missing or invalid."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(
            f"Configuration invalid ({len(errors)} error(s)):\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


@dataclass
class Settings:
    """Validated bot configuration. Build with :func:`settings_from_env`."""

    bot_token: str
    admin_id: int
    public_channel_id: int
    bot_username: str

    # --- Completion service ---
    completion_api_key: str = ""
    completion_base_url: str = DEFAULT_COMPLETION_BASE_URL
    completion_model: str = DEFAULT_COMPLETION_MODEL

    # --- Optional features ---
    restricted_topic_id: int | None = None
    private_group_id: str = ""
    private_group_invite_link: str = DEFAULT_INVITE_LINK

    # --- Workflow ---
    verification_question: str = DEFAULT_QUESTION
    verification_ttl_hours: float = 0.0  # 0 = entries never expire

    data_dir: Path = field(default_factory=Path.cwd)
    warnings: list[str] = field(default_factory=list)

    @property
    def chat_enabled(self) -> bool:
        return bool(self.completion_api_key)

    @property
    def verification_ttl_seconds(self) -> float | None:
        if self.verification_ttl_hours <= 0:
            return None
        return self.verification_ttl_hours * 3600

    @property
    def deep_link(self) -> str:
        """Link that opens a private chat with the bot and sends ``/start verify``."""
        return f"https://t.me/{self.bot_username}?start=verify"


def _parse_int(raw: str | None) -> int | None:
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def settings_from_env(env: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from environment variables.

    Args:
        env: Mapping to read from. Defaults to ``os.environ``.

    Raises:
        ConfigError: listing every fatal problem at once.
    """
    env = os.environ if env is None else env
    errors: list[str] = []
    warnings: list[str] = []

    bot_token = env.get("TELEGRAM_BOT_TOKEN", "").strip()
    if not bot_token:
        errors.append("TELEGRAM_BOT_TOKEN is missing. Set your Telegram bot token.")

    admin_id = _parse_int(env.get("ADMIN_ID"))
    if admin_id is None:
        errors.append("ADMIN_ID is missing or not a valid number.")

    public_channel_id = _parse_int(env.get("PUBLIC_CHANNEL_ID"))
    if public_channel_id is None:
        errors.append("PUBLIC_CHANNEL_ID is missing or not a valid number.")

    bot_username = env.get("BOT_USERNAME", "").strip().lstrip("@")
    if not bot_username:
        errors.append("BOT_USERNAME is missing. It is needed to build the verification deep link.")

    completion_api_key = env.get("TOGETHER_AI_API_KEY", "").strip()
    if not completion_api_key:
        warnings.append("TOGETHER_AI_API_KEY is missing. AI chat features are disabled.")

    raw_topic = env.get("RESTRICTED_TOPIC_ID", "")
    restricted_topic_id = _parse_int(raw_topic)
    if restricted_topic_id is None:
        if raw_topic.strip():
            warnings.append("RESTRICTED_TOPIC_ID is not a valid number. Topic restriction is disabled.")
        else:
            warnings.append("RESTRICTED_TOPIC_ID is missing. Topic restriction is disabled.")

    private_group_id = env.get("PRIVATE_GROUP_ID", "").strip()
    if not private_group_id:
        warnings.append("PRIVATE_GROUP_ID is missing. Invites to the private group after verification are disabled.")

    ttl_raw = env.get("VERIFICATION_TTL_HOURS", "0").strip() or "0"
    try:
        ttl_hours = float(ttl_raw)
    except ValueError:
        errors.append(f"VERIFICATION_TTL_HOURS must be a number, got {ttl_raw!r}.")
        ttl_hours = 0.0

    if errors:
        raise ConfigError(errors)

    data_dir = Path(env.get("GATEBOT_DATA_DIR", "") or Path.cwd()).expanduser()

    return Settings(
        bot_token=bot_token,
        admin_id=admin_id,
        public_channel_id=public_channel_id,
        bot_username=bot_username,
        completion_api_key=completion_api_key,
        completion_base_url=env.get("COMPLETION_BASE_URL", "") or DEFAULT_COMPLETION_BASE_URL,
        completion_model=env.get("COMPLETION_MODEL", "") or DEFAULT_COMPLETION_MODEL,
        restricted_topic_id=restricted_topic_id,
        private_group_id=private_group_id,
        private_group_invite_link=env.get("PRIVATE_GROUP_INVITE_LINK", "") or DEFAULT_INVITE_LINK,
        verification_question=env.get("VERIFICATION_QUESTION", "") or DEFAULT_QUESTION,
        verification_ttl_hours=ttl_hours,
        data_dir=data_dir,
        warnings=warnings,
    )


def load_settings(env_file: str | Path | None = None) -> Settings:
    """Load ``.env`` files into the process environment, then validate.

    An explicit ``env_file`` is loaded first; ``load_dotenv`` won't override
    variables already set, so it wins over the workspace ``.env``.
    """
    if env_file:
        load_dotenv(env_file)
    load_dotenv(Path.cwd() / ".env")
    return settings_from_env()
