"""Conversation sessions: per-phone checkout state with a TTL and a per-phone lock."""

import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from commerce_bot.cache import Cache
from commerce_bot.config import config

logger = logging.getLogger(__name__)


class ConversationState(str, Enum):
    NONE = "NONE"
    AWAITING_ADDRESS_CONFIRMATION = "AWAITING_ADDRESS_CONFIRMATION"
    AWAITING_ADDRESS_INPUT = "AWAITING_ADDRESS_INPUT"


class ConversationSession(BaseModel):
    user_id: str
    state: ConversationState = ConversationState.NONE


class SessionStore:
    """At most one session per phone number; entering a state overwrites the previous one.

    Sessions expire after ``ttl_minutes`` so an abandoned checkout cannot
    reactivate on an unrelated later message.
    """

    def __init__(self, ttl_minutes: int = None):
        self.ttl_seconds = (ttl_minutes if ttl_minutes is not None else config.SESSION_TTL_MINUTES) * 60
        self._sessions = Cache(default_ttl=self.ttl_seconds)
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def get(self, phone_number: str) -> Optional[ConversationSession]:
        return self._sessions.get(phone_number)

    def enter(self, phone_number: str, user_id: str, state: ConversationState) -> ConversationSession:
        session = ConversationSession(user_id=user_id, state=state)
        self._sessions.set(phone_number, session)
        logger.info(f"Session {phone_number} -> {state.value}")
        return session

    def clear(self, phone_number: str) -> None:
        if self._sessions.get(phone_number) is not None:
            logger.info(f"Session {phone_number} cleared")
        self._sessions.delete(phone_number)

    def clear_all(self) -> None:
        self._sessions.clear()

    @asynccontextmanager
    async def lock(self, phone_number: str):
        """Serialise message processing for one phone number.

        The lock entry is dropped once its last holder or waiter leaves.
        """
        lock = self._locks.get(phone_number)
        if lock is None:
            lock = self._locks[phone_number] = asyncio.Lock()
        self._lock_users[phone_number] = self._lock_users.get(phone_number, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[phone_number] -= 1
            if not self._lock_users[phone_number]:
                del self._lock_users[phone_number]
                del self._locks[phone_number]

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    def prune(self) -> int:
        """Drop expired sessions; returns how many were removed."""
        return self._sessions.purge_expired()

    def __len__(self) -> int:
        return len(self._sessions)
