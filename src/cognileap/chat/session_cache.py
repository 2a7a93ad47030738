"""Conversation → upstream session id cache.

Creation is serialized per conversation id: concurrent first turns of one
conversation wait on the same lock, and the second one finds the session
the first created instead of opening a duplicate.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger()


class SessionCache:
    def __init__(self) -> None:
        self._sessions: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, conversation_id: str) -> str | None:
        return self._sessions.get(conversation_id)

    def set(self, conversation_id: str, session_id: str) -> None:
        self._sessions[conversation_id] = session_id

    def invalidate(self, conversation_id: str) -> None:
        self._sessions.pop(conversation_id, None)

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    async def get_or_create(
        self,
        conversation_id: str,
        is_valid: Callable[[str], bool],
        create: Callable[[], Awaitable[str]],
    ) -> tuple[str, bool]:
        """Return ``(session_id, is_new)`` for a conversation.

        A cached id that ``is_valid`` rejects is replaced by a fresh one
        from ``create``; the new id always overwrites the old entry.
        """
        async with self._lock_for(conversation_id):
            session_id = self._sessions.get(conversation_id)
            if session_id is not None and is_valid(session_id):
                return session_id, False

            if session_id is not None:
                logger.info(
                    "session_cache_stale",
                    conversation_id=conversation_id,
                    session_id=session_id,
                )
            new_id = await create()
            self._sessions[conversation_id] = new_id
            return new_id, True
