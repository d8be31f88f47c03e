"""JSON document storage for verified users, broadcast pointer and reference data.

Each document has a pydantic schema. Loading never raises: a missing file
logs a warning, an unreadable or invalid one logs an error, and both return
the schema's default. Saving never raises either; failures are logged and
the caller's in-memory copy stays authoritative.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field, RootModel, ValidationError

logger = logging.getLogger(__name__)

VERIFIED_USERS_FILE = "verified_users.json"
BROADCAST_POINTER_FILE = "last_verification_message.json"
REFERENCE_DATA_FILE = "data.json"

_DEFAULT_REFERENCE = "⚠️ Verification data unavailable. Please check data.json."


class VerifiedUsers(RootModel[dict[str, bool]]):
    """``{"<user_id>": true, ...}``. Entries are only ever added."""

    root: dict[str, bool] = Field(default_factory=dict)

    def is_verified(self, user_id: int) -> bool:
        return self.root.get(str(user_id), False)

    def mark(self, user_id: int) -> None:
        self.root[str(user_id)] = True

    def __len__(self) -> int:
        return sum(1 for v in self.root.values() if v)


class BroadcastPointer(BaseModel):
    """Id of the last verification prompt posted to the public channel."""

    model_config = ConfigDict(populate_by_name=True)

    message_id: int | None = Field(default=None, alias="messageId")


class ReferenceData(BaseModel):
    """Static reference text, read-only at runtime."""

    verification_keywords: list[str] = Field(default_factory=list)
    verification_reference: str = _DEFAULT_REFERENCE


_M = TypeVar("_M", bound=BaseModel)


class DataStore:
    """Reads and writes the three JSON documents under ``data_dir``."""

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)

    # -- verified users --

    def load_verified_users(self) -> VerifiedUsers:
        return self._load(VERIFIED_USERS_FILE, VerifiedUsers)

    def save_verified_users(self, users: VerifiedUsers) -> bool:
        return self._save(VERIFIED_USERS_FILE, users.model_dump_json(indent=2))

    # -- broadcast pointer --

    def load_broadcast_pointer(self) -> BroadcastPointer:
        return self._load(BROADCAST_POINTER_FILE, BroadcastPointer)

    def save_broadcast_pointer(self, pointer: BroadcastPointer) -> bool:
        return self._save(BROADCAST_POINTER_FILE, pointer.model_dump_json(by_alias=True))

    # -- reference data --

    def load_reference_data(self) -> ReferenceData:
        return self._load(REFERENCE_DATA_FILE, ReferenceData)

    # -- internal --

    def _load(self, name: str, model: type[_M]) -> _M:
        path = self.data_dir / name
        if not path.is_file():
            logger.warning("%s not found, starting with defaults", path)
            return model()
        try:
            return model.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.error("Failed to load %s, starting with defaults: %s", path, e)
            return model()

    def _save(self, name: str, content: str) -> bool:
        path = self.data_dir / name
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(content + "\n", encoding="utf-8")
            os.replace(tmp, path)
        except OSError:
            logger.exception("Failed to save %s", path)
            return False
        return True

    def __repr__(self) -> str:
        return f"DataStore(data_dir={self.data_dir!r})"
