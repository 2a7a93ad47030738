"""Upstream stateful chat sessions.

A session holds the system prompt, the document context and the running
history of one conversation, so a turn only has to send the new user
message. Sessions live in process memory and expire after
``upstream_session_ttl_s`` of inactivity; expired sessions are pruned
lazily whenever a session is created.

Unknown or expired session ids raise SessionNotFoundError. Failures while
streaming are raised to the caller rather than papered over with a canned
reply.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

import structlog

from cognileap.config import settings
from cognileap.core.errors import SessionNotFoundError
from cognileap.core.tokens import estimate_tokens
from cognileap.generation.client import GenerationConfig, StreamChunk

logger = structlog.get_logger()

PRIMER_ACK = "I understand. I'm ready to help you according to these instructions."


@dataclass
class UpstreamSession:
    id: str
    conversation_id: str
    model: str
    system_prompt: str
    document_context: str | None
    history: list[dict[str, Any]]
    created_at: float
    last_activity_at: float
    system_tokens: int = 0
    document_tokens: int = 0
    token_count_method: str = "estimation"
    turns: int = field(default=0)


class StatefulChatService:
    """In-process session store in front of the streaming generation call."""

    def __init__(
        self,
        client,
        model: str | None = None,
        ttl_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._model = model or settings.chat_model
        self._ttl_s = settings.upstream_session_ttl_s if ttl_s is None else ttl_s
        self._clock = clock
        self._sessions: dict[str, UpstreamSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def create_session(
        self,
        conversation_id: str,
        system_prompt: str,
        document_context: str | None = None,
        history: list[dict[str, Any]] | None = None,
    ) -> str:
        """Create a session and return its id."""
        now = self._clock()
        self._prune(now)

        session = UpstreamSession(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            model=self._model,
            system_prompt=system_prompt,
            document_context=document_context or None,
            history=list(history or []),
            created_at=now,
            last_activity_at=now,
            system_tokens=estimate_tokens(system_prompt),
            document_tokens=estimate_tokens(document_context),
        )
        self._sessions[session.id] = session
        logger.info(
            "upstream_session_created",
            session_id=session.id,
            conversation_id=conversation_id,
            model=session.model,
            history_turns=len(session.history),
            system_tokens=session.system_tokens,
            document_tokens=session.document_tokens,
        )
        return session.id

    def get_session(self, session_id: str) -> UpstreamSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._clock() - session.last_activity_at > self._ttl_s:
            del self._sessions[session_id]
            logger.info("upstream_session_expired", session_id=session_id)
            return None
        return session

    def has_session(self, session_id: str) -> bool:
        return self.get_session(session_id) is not None

    def close_session(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    async def send_message(self, session_id: str, message: str) -> AsyncIterator[StreamChunk]:
        """Stream the reply to ``message`` within a session.

        The turn is appended to the session history only after the stream
        completes, so an aborted turn leaves the history unchanged.

        Raises:
            SessionNotFoundError: If the session is unknown or expired.
        """
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.last_activity_at = self._clock()

        contents: list[dict[str, Any]] = []
        primer = session.system_prompt
        if session.document_context:
            primer = f"{primer}\n\n{session.document_context}" if primer else session.document_context
        if primer:
            contents.append({"role": "user", "parts": [{"text": primer}]})
            contents.append({"role": "model", "parts": [{"text": PRIMER_ACK}]})
        contents.extend(session.history)
        contents.append({"role": "user", "parts": [{"text": message}]})

        config = GenerationConfig(
            temperature=settings.chat_temperature,
            max_output_tokens=settings.chat_max_output_tokens,
        )

        reply: list[str] = []
        usage: dict[str, int] | None = None
        async for chunk in self._client.stream(session.model, contents, config):
            if chunk.is_complete:
                usage = chunk.usage
                break
            if chunk.text:
                reply.append(chunk.text)
                yield chunk

        full_reply = "".join(reply)
        session.history.append({"role": "user", "parts": [{"text": message}]})
        session.history.append({"role": "model", "parts": [{"text": full_reply}]})
        session.turns += 1
        session.last_activity_at = self._clock()

        if not usage:
            usage = {"totalTokens": estimate_tokens(message) + estimate_tokens(full_reply)}
        yield StreamChunk(is_complete=True, usage=usage)

    def _prune(self, now: float) -> None:
        expired = [
            sid for sid, s in self._sessions.items()
            if now - s.last_activity_at > self._ttl_s
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("upstream_sessions_pruned", removed=len(expired))
