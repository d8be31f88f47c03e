"""Session registry — per-user verification state held in memory.

A user moves from an open :class:`VerificationSession` (question asked) to a
:class:`PendingApproval` (answer submitted) and out again when the admin
decides. A user id is never present in both maps. Every mutation runs under
that user's lock, so a check and the write that depends on it cannot be
interleaved with another event for the same user.

Sessions and pending approvals are not persisted; only the verified-user
set is, through :class:`~gatebot.storage.DataStore`.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from gatebot.storage import DataStore, VerifiedUsers

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
    """Base class for verification precondition violations."""

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__(f"{type(self).__name__}: user {user_id}")


class AlreadyVerified(WorkflowError):
    """The user is already in the verified set."""


class SessionExists(WorkflowError):
    """The user already has an open session or a pending approval."""


class NoActiveSession(WorkflowError):
    """An answer arrived for a user with no open session."""


class ApprovalExpiredOrUnknown(WorkflowError):
    """A decision arrived for a user with no pending approval."""


class Decision(enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


@dataclass
class VerificationSession:
    user_id: int
    question: str
    created_at: float = 0.0


@dataclass
class PendingApproval:
    user_id: int
    question: str
    answer: str
    created_at: float = 0.0


class KeyedLock:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, key: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class SessionRegistry:
    """Owns the session, pending-approval and verified-user maps.

    Args:
        store: Where the verified-user set is loaded from and saved to.
        ttl: Seconds after which an unresolved entry counts as absent.
            ``None`` keeps entries until they are resolved.
        clock: Time source, injectable for tests.
    """

    def __init__(
        self,
        store: DataStore,
        *,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._verified: VerifiedUsers = store.load_verified_users()
        self._sessions: dict[int, VerificationSession] = {}
        self._pending: dict[int, PendingApproval] = {}
        self._locks = KeyedLock()

    # --- Queries ---

    def is_verified(self, user_id: int) -> bool:
        return self._verified.is_verified(user_id)

    def session(self, user_id: int) -> VerificationSession | None:
        entry = self._sessions.get(user_id)
        return entry if entry and not self._expired(entry.created_at) else None

    def pending(self, user_id: int) -> PendingApproval | None:
        entry = self._pending.get(user_id)
        return entry if entry and not self._expired(entry.created_at) else None

    @property
    def verified_count(self) -> int:
        return len(self._verified)

    # --- Transitions ---

    async def start_session(self, user_id: int, question: str) -> VerificationSession:
        """Open a session holding ``question`` for ``user_id``.

        Raises:
            AlreadyVerified: the user is verified.
            SessionExists: a live session or pending approval exists.
        """
        async with self._locks.hold(user_id):
            if self.is_verified(user_id):
                raise AlreadyVerified(user_id)
            if self.session(user_id) or self.pending(user_id):
                raise SessionExists(user_id)
            # drop any expired leftovers before inserting
            self._pending.pop(user_id, None)
            entry = VerificationSession(user_id, question, self._clock())
            self._sessions[user_id] = entry
            logger.info("Verification session opened for user %s", user_id)
            return entry

    async def submit_answer(self, user_id: int, answer: str) -> PendingApproval:
        """Move the user's session to pending approval with ``answer`` attached.

        Raises:
            NoActiveSession: the user has no live session.
        """
        async with self._locks.hold(user_id):
            session = self.session(user_id)
            if session is None:
                raise NoActiveSession(user_id)
            del self._sessions[user_id]
            entry = PendingApproval(user_id, session.question, answer, self._clock())
            self._pending[user_id] = entry
            logger.info("User %s submitted an answer, awaiting admin decision", user_id)
            return entry

    async def resolve(self, user_id: int, decision: Decision) -> PendingApproval:
        """Remove the user's pending approval and apply ``decision``.

        Approval marks the user verified and saves the verified set before
        returning, so nothing the caller does afterwards can leave the user
        unmarked. A failed save is logged by the store; the in-memory set
        still counts the user as verified.

        Raises:
            ApprovalExpiredOrUnknown: no live pending approval exists.
        """
        async with self._locks.hold(user_id):
            entry = self.pending(user_id)
            if entry is None:
                raise ApprovalExpiredOrUnknown(user_id)
            del self._pending[user_id]
            if decision is Decision.APPROVE:
                self._verified.mark(user_id)
                self._store.save_verified_users(self._verified)
            logger.info("Verification for user %s resolved: %s", user_id, decision.value)
            return entry

    async def cancel_session(self, user_id: int) -> bool:
        """Drop an open session, e.g. when its question could not be delivered."""
        async with self._locks.hold(user_id):
            return self._sessions.pop(user_id, None) is not None

    async def reopen(self, user_id: int) -> bool:
        """Turn a pending approval back into an open session.

        Used when the admin could not be told about the answer, so the user
        can send it again.
        """
        async with self._locks.hold(user_id):
            entry = self._pending.pop(user_id, None)
            if entry is None:
                return False
            self._sessions[user_id] = VerificationSession(user_id, entry.question, self._clock())
            return True

    # --- Expiry ---

    def _expired(self, created_at: float) -> bool:
        return self._ttl is not None and self._clock() - created_at > self._ttl

    def sweep(self) -> int:
        """Drop expired sessions and pending approvals. Returns how many went."""
        if self._ttl is None:
            return 0
        stale_sessions = [u for u, s in self._sessions.items() if self._expired(s.created_at)]
        stale_pending = [u for u, p in self._pending.items() if self._expired(p.created_at)]
        for user_id in stale_sessions:
            del self._sessions[user_id]
        for user_id in stale_pending:
            del self._pending[user_id]
        removed = len(stale_sessions) + len(stale_pending)
        if removed:
            logger.info("Expired %d abandoned verification entries", removed)
        return removed

