"""One-shot study-tool generation.

Resolves the source (a document, or a conversation transcript), builds the
prompts, runs them through the model fallback chain and records the
output in the background. Request problems surface as InvalidRequestError
before any model is called.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from cognileap.config import settings
from cognileap.context.strategy import ContextStrategySelector, SourceDocument
from cognileap.core.errors import (
    ErrorCategory,
    ExhaustedError,
    FlashcardFormatError,
    InvalidRequestError,
)
from cognileap.generation.orchestrator import ModelFallbackOrchestrator
from cognileap.generation.tiers import ArtifactType
from cognileap.generation.validator import parse_flashcards
from cognileap.study_tools.prompts import FlashcardOptions, build_prompts, output_title

logger = structlog.get_logger()

# Stored type names used by the outputs table
_STORED_TYPES = {
    ArtifactType.SUMMARY: "summary",
    ArtifactType.NOTES: "notes",
    ArtifactType.GUIDE: "study_guide",
    ArtifactType.FLASHCARDS: "flashcards",
}


@dataclass
class StudyToolRequest:
    type: str | None
    document_id: str | None = None
    conversation_id: str | None = None
    flashcard_options: FlashcardOptions | None = None
    user_id: str | None = None


@dataclass
class StudyToolResult:
    id: str | None
    title: str
    content: str
    type: str
    document_id: str | None
    conversation_id: str | None
    metadata: dict[str, Any]
    cards: list[dict[str, Any]] | None = None
    options: FlashcardOptions | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": True,
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "type": self.type,
            "documentId": self.document_id,
            "conversationId": self.conversation_id,
            "metadata": self.metadata,
        }
        if self.cards is not None:
            body["cards"] = self.cards
            if self.options is not None:
                body["options"] = {
                    "numberOfCards": self.options.number_of_cards,
                    "difficulty": self.options.difficulty,
                    "customInstructions": self.options.custom_instructions,
                }
        return body


@dataclass
class _Source:
    title: str
    content: str
    document: SourceDocument
    cache_key: str
    save_document_id: str | None = field(default=None)


def conversation_transcript(messages) -> str:
    parts = []
    for message in messages:
        label = "User" if message.role == "user" else "Assistant"
        parts.append(f"## {label}\n\n{message.content}\n\n---\n\n")
    return "".join(parts).strip()


class StudyToolService:
    def __init__(
        self,
        orchestrator: ModelFallbackOrchestrator,
        store,
        selector: ContextStrategySelector | None = None,
        recorder=None,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._selector = selector
        self._recorder = recorder

    async def generate(self, request: StudyToolRequest) -> StudyToolResult:
        """Generate one study artifact.

        Raises:
            InvalidRequestError: Bad type, missing ids, unknown or unusable source.
            ExhaustedError: Every model tier failed.
            FlashcardFormatError: Flashcard output could not be parsed.
        """
        if not request.type:
            raise InvalidRequestError("Invalid study tool type")
        try:
            artifact_type = ArtifactType.parse(request.type)
        except ValueError:
            raise InvalidRequestError("Invalid study tool type", type=request.type) from None
        if not request.document_id and not request.conversation_id:
            raise InvalidRequestError("Either documentId or conversationId is required")

        source = await self._load_source(request)
        if len(source.content) < settings.min_source_chars:
            raise InvalidRequestError(
                "Insufficient content for generating meaningful study materials",
                status_code=422,
            )

        content = source.content
        if self._selector is not None:
            assembled = await self._selector.assemble(
                [source.document],
                source.cache_key,
                f"Key concepts for a {artifact_type.value}",
                output_cap=artifact_type.output_allocation,
            )
            if assembled is not None:
                content = assembled.context

        system_prompt, user_prompt = build_prompts(
            artifact_type, content, source.title, request.flashcard_options,
        )

        t0 = time.monotonic()
        result = await self._orchestrator.generate(system_prompt, user_prompt, artifact_type)
        total_ms = round((time.monotonic() - t0) * 1000)

        cards = None
        if artifact_type is ArtifactType.FLASHCARDS:
            cards = parse_flashcards(result.text)

        title = output_title(artifact_type, source.title)
        metadata: dict[str, Any] = {
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "model": result.tier,
            "attempt": result.attempt,
            "duration": result.duration_ms,
            "totalDuration": total_ms,
            "contentLength": len(result.text),
            "sourceContentLength": len(source.content),
            "fallbackStrategy": "applied" if result.fallback_reason else "none",
            "fallbackReason": result.fallback_reason,
        }
        if cards is not None:
            options = request.flashcard_options or FlashcardOptions()
            metadata["totalCards"] = len(cards)
            metadata["avgDifficulty"] = options.difficulty

        output_id = None
        if source.save_document_id and self._recorder is not None:
            output_id = str(uuid.uuid4())
            self._recorder.record_output(
                output_id,
                source.save_document_id,
                _STORED_TYPES[artifact_type],
                title,
                result.text,
                {**metadata, "conversationId": request.conversation_id},
            )

        logger.info(
            "study_tool_generated",
            artifact_type=artifact_type.value,
            document_id=request.document_id,
            conversation_id=request.conversation_id,
            model=result.tier,
            attempt=result.attempt,
            content_length=len(result.text),
            total_ms=total_ms,
        )
        return StudyToolResult(
            id=output_id,
            title=title,
            content=result.text,
            type=request.type,
            document_id=request.document_id,
            conversation_id=request.conversation_id,
            metadata=metadata,
            cards=cards,
            options=request.flashcard_options if cards is not None else None,
        )

    async def _load_source(self, request: StudyToolRequest) -> _Source:
        if request.document_id:
            doc = await self._store.get_document(request.document_id, request.user_id)
            if doc is None:
                raise InvalidRequestError("Document not found or inaccessible", status_code=404)
            if doc.processing_status != "completed":
                raise InvalidRequestError(
                    "Document is still processing. Please wait for processing to complete.",
                    status_code=422,
                )
            if not doc.content:
                raise InvalidRequestError(
                    "Document has no content available for study tool generation",
                    status_code=422,
                )
            return _Source(
                title=doc.title,
                content=doc.content,
                document=SourceDocument(id=doc.id, title=doc.title, content=doc.content),
                cache_key=f"study:{doc.id}",
                save_document_id=doc.id,
            )

        conversation = await self._store.get_conversation(request.conversation_id)
        if conversation is None:
            raise InvalidRequestError("Conversation not found", status_code=404)
        messages = await self._store.list_messages(request.conversation_id)
        if not messages:
            raise InvalidRequestError(
                "Conversation has no content available for study tool generation",
                status_code=422,
            )
        transcript = conversation_transcript(messages)
        title = conversation.title or "Conversation"
        return _Source(
            title=title,
            content=transcript,
            # A new message changes the id, which invalidates the cached context
            document=SourceDocument(
                id=f"{conversation.id}#{len(messages)}", title=title, content=transcript,
            ),
            cache_key=f"study:{conversation.id}",
        )


# ─────────────────────────────────────────────────────────────────────────────
# Failure → response mapping
# ─────────────────────────────────────────────────────────────────────────────

_UNAVAILABLE = (ErrorCategory.OVERLOADED, ErrorCategory.NETWORK, ErrorCategory.TIMEOUT)


def describe_failure(exc: Exception) -> tuple[int, dict[str, Any]]:
    """Map a generation failure to ``(status_code, body)``."""
    if isinstance(exc, InvalidRequestError):
        return exc.status_code, {"error": str(exc), "retryable": False, **exc.details}

    if isinstance(exc, FlashcardFormatError):
        return 500, {
            "error": (
                "Failed to parse generated flashcards. "
                "The AI response was not in the expected format."
            ),
            "retryable": True,
            "reason": str(exc),
        }

    if isinstance(exc, ExhaustedError):
        category = exc.classification.category
        body: dict[str, Any] = {"retryable": exc.retryable, "reason": exc.reason}
        if exc.retryable and exc.retry_after_ms is not None:
            body["estimatedRetryIn"] = round(exc.retry_after_ms / 1000)

        if category is ErrorCategory.RATE_LIMITED:
            body["error"] = (
                "Study tool generation temporarily rate limited. Please try again shortly."
            )
            return 429, body
        if category in _UNAVAILABLE:
            body["error"] = "AI service temporarily unavailable. Please try again shortly."
            return 503, body
        body["error"] = (
            "Failed to generate study tool. "
            "Please try again with different content or parameters."
        )
        body["details"] = str(exc.last_error) if exc.last_error else str(exc)
        return 500, body

    return 500, {
        "error": "Failed to generate study tool. Please try again.",
        "retryable": False,
        "reason": "unexpected error",
    }
