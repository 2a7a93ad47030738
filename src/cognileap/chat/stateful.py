"""Turn-based chat over upstream sessions.

A turn resolves (or creates) the conversation's upstream session, sends
only the newest user message to it and relays the reply as wire frames.
Creating a session is where the document context gets built: the system
prompt plus the assembled documents plus the prior turns become the
session's starting state.

Request problems are raised as InvalidRequestError before any frame is
produced; failures after that end the stream with an error frame.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Sequence

import structlog

from cognileap.chat.prompts import system_prompt_for
from cognileap.chat.session_cache import SessionCache
from cognileap.chat.stream import StreamEmitter
from cognileap.chat.upstream import StatefulChatService
from cognileap.config import settings
from cognileap.context.strategy import ContextStrategySelector
from cognileap.core.errors import InvalidRequestError, SessionNotFoundError
from cognileap.core.tokens import (
    estimate_conversation,
    estimate_tokens,
    optimal_document_budget,
    truncate_to_tokens,
)
from cognileap.generation.client import StreamChunk

logger = structlog.get_logger()


@dataclass(frozen=True)
class ChatTurn:
    role: str
    content: str


@dataclass
class ChatRequest:
    conversation_id: str
    messages: Sequence[ChatTurn]
    chat_type: str = "general"
    document_ids: list[str] = field(default_factory=list)
    user_id: str | None = None


def to_upstream_history(turns: Sequence[ChatTurn]) -> list[dict[str, Any]]:
    return [
        {"role": "user" if t.role == "user" else "model", "parts": [{"text": t.content}]}
        for t in turns
    ]


class StatefulChatHandler:
    def __init__(
        self,
        upstream: StatefulChatService,
        store,
        selector: ContextStrategySelector,
        sessions: SessionCache | None = None,
        recorder=None,
        emitter: StreamEmitter | None = None,
    ) -> None:
        self._upstream = upstream
        self._store = store
        self._selector = selector
        self._sessions = sessions or SessionCache()
        self._recorder = recorder
        self._emitter = emitter or StreamEmitter()

    @property
    def sessions(self) -> SessionCache:
        return self._sessions

    def _validate(self, request: ChatRequest) -> ChatTurn:
        if not request.messages:
            raise InvalidRequestError("No messages provided")
        if not request.conversation_id:
            raise InvalidRequestError("Conversation ID required for stateful chat")
        last = request.messages[-1]
        if last.role != "user":
            raise InvalidRequestError("Last message must be from user")
        if not last.content.strip():
            raise InvalidRequestError("Message content is empty")
        return last

    async def open(self, request: ChatRequest) -> AsyncIterator[str]:
        """Prepare the turn and return its frame stream.

        Raises:
            InvalidRequestError: Before any upstream work, for malformed turns.
        """
        last = self._validate(request)
        conversation_id = request.conversation_id

        conversation = estimate_conversation((t.role, t.content) for t in request.messages)
        document_budget = optimal_document_budget(conversation.total)

        async def create_session() -> str:
            documents = await self._store.get_documents(request.document_ids, request.user_id)
            assembled = await self._selector.assemble(
                documents,
                conversation_id,
                last.content,
                output_cap=settings.chat_max_output_tokens,
            )
            document_context = None
            if assembled is not None:
                document_context = truncate_to_tokens(assembled.context, document_budget)
                if len(document_context) < len(assembled.context):
                    logger.info(
                        "document_context_trimmed",
                        conversation_id=conversation_id,
                        context_tokens=estimate_tokens(assembled.context),
                        document_budget=document_budget,
                    )
            return await self._upstream.create_session(
                conversation_id,
                system_prompt_for(request.chat_type, has_documents=assembled is not None),
                document_context=document_context,
                history=to_upstream_history(request.messages[:-1]),
            )

        session_id, is_new = await self._sessions.get_or_create(
            conversation_id, self._upstream.has_session, create_session,
        )
        session = self._upstream.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        logger.info(
            "chat_turn_started",
            conversation_id=conversation_id,
            session_id=session_id,
            is_new_session=is_new,
            messages=len(request.messages),
            conversation_tokens=conversation.total,
            warning_level=conversation.warning_level,
        )

        token_budget = {
            "conversation": conversation.total,
            "conversationLevel": conversation.warning_level,
            "document": document_budget,
        }
        token_breakdown = {
            "systemPrompt": session.system_tokens,
            "documentContext": session.document_tokens,
            "method": session.token_count_method,
            "isNewSession": is_new,
        }

        def build_metadata(reply: str, usage: dict[str, int] | None) -> dict[str, Any]:
            user_tokens = estimate_tokens(last.content)
            assistant_tokens = estimate_tokens(reply)
            usage = usage or {}
            metadata = {
                "usage": {
                    "totalTokens": usage.get("totalTokens") or user_tokens + assistant_tokens,
                    "promptTokens": usage.get("promptTokens"),
                    "completionTokens": usage.get("completionTokens"),
                },
                "model": session.model,
                "sessionId": session_id,
                "isNewSession": is_new,
                "tokenBudget": token_budget,
                "tokenBreakdown": token_breakdown,
                "messageTokens": {
                    "user": user_tokens,
                    "assistant": assistant_tokens,
                    "method": "estimation",
                },
            }
            if self._recorder is not None:
                self._recorder.record_turn(
                    conversation_id,
                    last.content,
                    reply,
                    user_metadata={
                        "chatType": request.chat_type,
                        "documentIds": list(request.document_ids),
                        "sessionId": session_id,
                        "isNewSession": is_new,
                        "tokenBudget": token_budget,
                    },
                    assistant_metadata={
                        "model": session.model,
                        "tokens": metadata["usage"]["totalTokens"],
                        "sessionId": session_id,
                        "isNewSession": is_new,
                    },
                    chat_type=request.chat_type,
                    token_breakdown={
                        "systemPromptTokens": session.system_tokens,
                        "documentContextTokens": session.document_tokens,
                        "tokenCountMethod": session.token_count_method,
                    } if is_new else None,
                )
            return metadata

        return self._emitter.relay(
            self._send(conversation_id, session_id, last.content), build_metadata,
        )

    async def _send(
        self,
        conversation_id: str,
        session_id: str,
        message: str,
    ) -> AsyncIterator[StreamChunk]:
        try:
            async for chunk in self._upstream.send_message(session_id, message):
                yield chunk
        except SessionNotFoundError:
            self._sessions.invalidate(conversation_id)
            raise
