"""Conversation context cache.

Keeps the last assembled context per conversation so follow-up turns do
not rebuild it. An entry is only served back when it was built from the
same document set and is younger than the TTL. Expired entries are swept
on the next write; there is no background timer.

All writes replace the whole entry. Callers that rebuild an entry should
hold ``lock_for(conversation_id)`` so two turns of one conversation do not
assemble the same context twice.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Iterable

import structlog

from cognileap.config import settings
from cognileap.context.budget import ContextBudget

logger = structlog.get_logger()


def document_key(document_ids: Iterable[str]) -> str:
    """Order-insensitive key for a set of document ids."""
    return ",".join(sorted(set(document_ids)))


@dataclass(frozen=True)
class CachedContext:
    conversation_id: str
    document_key: str
    context: str
    total_tokens: int
    budget: ContextBudget
    last_updated: float


class ConversationContextCache:
    """Per-conversation context cache with TTL and document-set invalidation."""

    def __init__(
        self,
        ttl_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_s = settings.context_cache_ttl_s if ttl_s is None else ttl_s
        self._clock = clock
        self._entries: dict[str, CachedContext] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def lock_for(self, conversation_id: str) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    def _is_expired(self, entry: CachedContext, now: float) -> bool:
        return now - entry.last_updated > self._ttl_s

    def get(self, conversation_id: str, document_ids: Iterable[str]) -> CachedContext | None:
        """Return the cached entry if it is still valid for these documents."""
        entry = self._entries.get(conversation_id)
        if entry is None:
            return None

        key = document_key(document_ids)
        if entry.document_key != key:
            logger.info(
                "context_cache_documents_changed",
                conversation_id=conversation_id,
                cached=entry.document_key,
                requested=key,
            )
            return None
        if self._is_expired(entry, self._clock()):
            logger.info("context_cache_expired", conversation_id=conversation_id)
            return None
        return entry

    def put(
        self,
        conversation_id: str,
        document_ids: Iterable[str],
        context: str,
        budget: ContextBudget,
    ) -> CachedContext:
        now = self._clock()
        self._sweep(now)
        entry = CachedContext(
            conversation_id=conversation_id,
            document_key=document_key(document_ids),
            context=context,
            total_tokens=budget.total_tokens,
            budget=budget,
            last_updated=now,
        )
        self._entries[conversation_id] = entry
        return entry

    def _sweep(self, now: float) -> None:
        expired = [cid for cid, e in self._entries.items() if self._is_expired(e, now)]
        for cid in expired:
            del self._entries[cid]
            lock = self._locks.get(cid)
            if lock is not None and not lock.locked():
                del self._locks[cid]
        if expired:
            logger.debug("context_cache_swept", removed=len(expired))
