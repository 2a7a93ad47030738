"""Message and output store over SQLAlchemy async.

Conversations are created on first write. Message sequence numbers are
assigned by reading the current maximum and adding one; two writers racing
on one conversation can end up with the same number, which ordering by
(sequence_number, created_at) tolerates.
"""

from __future__ import annotations

import uuid
from typing import Any, Sequence

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cognileap.context.strategy import SourceDocument
from cognileap.db.models import Conversation, Document, Message, StudyOutput
from cognileap.db.session import db_session

logger = structlog.get_logger()

_TITLE_CHARS = 50


def conversation_title(first_message: str) -> str:
    title = first_message[:_TITLE_CHARS]
    return title + "..." if len(first_message) > _TITLE_CHARS else title


class MessageStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._factory = session_factory

    # ── Documents ───────────────────────────────────────────────────────

    async def get_documents(
        self,
        document_ids: Sequence[str],
        user_id: str | None = None,
    ) -> list[SourceDocument]:
        """Load documents that have extracted text, in the requested order."""
        if not document_ids:
            return []
        async with db_session(self._factory) as db:
            stmt = select(Document).where(Document.id.in_(list(document_ids)))
            if user_id is not None:
                stmt = stmt.where(Document.user_id == user_id)
            rows = (await db.execute(stmt)).scalars().all()

        by_id = {row.id: row for row in rows}
        documents = [
            SourceDocument(id=row.id, title=row.title, content=row.content)
            for row in (by_id.get(i) for i in document_ids)
            if row is not None and row.content and row.content.strip()
        ]
        if len(documents) < len(document_ids):
            logger.info(
                "documents_missing_or_empty",
                requested=len(document_ids),
                usable=len(documents),
            )
        return documents

    async def get_document(self, document_id: str, user_id: str | None = None) -> Document | None:
        async with db_session(self._factory) as db:
            doc = await db.get(Document, document_id)
        if doc is None or (user_id is not None and doc.user_id != user_id):
            return None
        return doc

    async def add_document(
        self,
        title: str,
        content: str,
        user_id: str | None = None,
        document_id: str | None = None,
    ) -> str:
        async with db_session(self._factory) as db:
            doc = Document(
                id=document_id or str(uuid.uuid4()),
                title=title,
                content=content,
                user_id=user_id,
            )
            db.add(doc)
            await db.flush()
            return doc.id

    # ── Conversations ───────────────────────────────────────────────────

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        async with db_session(self._factory) as db:
            return await db.get(Conversation, conversation_id)

    async def append_turn(
        self,
        conversation_id: str,
        user_content: str,
        assistant_content: str,
        user_metadata: dict[str, Any] | None = None,
        assistant_metadata: dict[str, Any] | None = None,
        chat_type: str = "general",
        token_breakdown: dict[str, Any] | None = None,
    ) -> tuple[str, str]:
        """Append a user/assistant exchange in one transaction.

        The token breakdown is only stored when the conversation has none yet.
        """
        async with db_session(self._factory) as db:
            conversation = await self._get_or_add_conversation(
                db, conversation_id, "user", user_content, chat_type,
            )
            user_msg_id = await self._append(
                db, conversation_id, "user", user_content, user_metadata,
            )
            assistant_msg_id = await self._append(
                db, conversation_id, "assistant", assistant_content, assistant_metadata,
            )
            if token_breakdown:
                existing = conversation.meta or {}
                if "systemPromptTokens" not in existing and "documentContextTokens" not in existing:
                    conversation.meta = {**existing, **token_breakdown}
            return user_msg_id, assistant_msg_id

    async def _get_or_add_conversation(
        self,
        db: AsyncSession,
        conversation_id: str,
        role: str,
        content: str,
        chat_type: str,
    ) -> Conversation:
        conversation = await db.get(Conversation, conversation_id)
        if conversation is None:
            conversation = Conversation(
                id=conversation_id,
                title=conversation_title(content) if role == "user" else "New conversation",
                chat_type=chat_type,
                meta={},
            )
            db.add(conversation)
            await db.flush()
        return conversation

    async def _append(
        self,
        db: AsyncSession,
        conversation_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None,
    ) -> str:
        current = await db.scalar(
            select(func.max(Message.sequence_number))
            .where(Message.conversation_id == conversation_id)
        )
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            sequence_number=(current or 0) + 1,
            meta=metadata or {},
        )
        db.add(message)
        await db.flush()
        return message.id

    async def list_messages(self, conversation_id: str) -> list[Message]:
        async with db_session(self._factory) as db:
            rows = await db.execute(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.sequence_number, Message.created_at)
            )
            return list(rows.scalars().all())

    # ── Study outputs ───────────────────────────────────────────────────

    async def save_output(
        self,
        document_id: str,
        artifact_type: str,
        title: str,
        content: str,
        metadata: dict[str, Any] | None = None,
        output_id: str | None = None,
        user_id: str | None = None,
    ) -> str:
        async with db_session(self._factory) as db:
            output = StudyOutput(
                id=output_id or str(uuid.uuid4()),
                document_id=document_id,
                user_id=user_id,
                type=artifact_type,
                title=title,
                content=content,
                meta=metadata or {},
            )
            db.add(output)
            await db.flush()
            return output.id

    async def list_outputs(self, document_id: str) -> list[StudyOutput]:
        async with db_session(self._factory) as db:
            rows = await db.execute(
                select(StudyOutput)
                .where(StudyOutput.document_id == document_id)
                .order_by(StudyOutput.created_at)
            )
            return list(rows.scalars().all())
