"""CogniLeap application entry point (FastAPI).

Endpoints:
- GET  /health                    liveness
- GET  /health/db                 database connectivity
- POST /api/study-tools/generate  one-shot study artifact generation
- POST /api/chat/stateful         turn-based chat, streamed as wire frames
"""

from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Literal

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from cognileap import __version__
from cognileap.chat.session_cache import SessionCache
from cognileap.chat.stateful import ChatRequest, ChatTurn, StatefulChatHandler
from cognileap.chat.upstream import StatefulChatService
from cognileap.config import settings
from cognileap.context.retrieval import HybridContextRetriever
from cognileap.context.strategy import ContextStrategySelector
from cognileap.core.errors import CogniLeapError, InvalidRequestError
from cognileap.db.session import close_db, get_engine, init_db
from cognileap.generation.client import close_generation_client, get_generation_client
from cognileap.generation.orchestrator import ModelFallbackOrchestrator
from cognileap.persistence.recorder import TurnRecorder
from cognileap.persistence.store import MessageStore
from cognileap.study_tools.prompts import FlashcardOptions
from cognileap.study_tools.service import StudyToolRequest, StudyToolService, describe_failure

logger = structlog.get_logger()

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
        if settings.env == "production"
        else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)


# ═══════════════════════════════════════════════════════════════════════════════
# SERVICE WIRING
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Services:
    study_tools: StudyToolService
    chat: StatefulChatHandler
    recorder: TurnRecorder


def build_services() -> Services:
    client = get_generation_client()
    store = MessageStore()
    recorder = TurnRecorder(store)
    selector = ContextStrategySelector(retriever=HybridContextRetriever(embedder=client.embed))
    return Services(
        study_tools=StudyToolService(
            ModelFallbackOrchestrator(client), store, selector=selector, recorder=recorder,
        ),
        chat=StatefulChatHandler(
            StatefulChatService(client), store, selector,
            sessions=SessionCache(), recorder=recorder,
        ),
        recorder=recorder,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("app_starting", env=settings.env, version=__version__)
    if settings.env == "development":
        logger.info("database_initializing")
        await init_db()
    app.state.services = build_services()

    yield

    logger.info("app_shutting_down")
    await app.state.services.recorder.drain()
    await close_generation_client()
    await close_db()


api = FastAPI(
    title="CogniLeap",
    version=__version__,
    description="Study-tool generation and document chat backed by Gemini",
    lifespan=lifespan,
)


# ═══════════════════════════════════════════════════════════════════════════════
# REQUEST MODELS
# ═══════════════════════════════════════════════════════════════════════════════

class FlashcardOptionsBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    number_of_cards: str = Field("10", alias="numberOfCards")
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    custom_instructions: str | None = Field(None, alias="customInstructions")

    @field_validator("number_of_cards", mode="before")
    @classmethod
    def _stringify(cls, value: object) -> str:
        return str(value)


class StudyToolGenerateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str | None = None
    document_id: str | None = Field(None, alias="documentId")
    conversation_id: str | None = Field(None, alias="conversationId")
    flashcard_options: FlashcardOptionsBody | None = Field(None, alias="flashcardOptions")


class ChatMessageBody(BaseModel):
    id: str | None = None
    role: Literal["user", "assistant"]
    content: str
    timestamp: str | None = None


class SelectedDocumentBody(BaseModel):
    id: str
    title: str | None = None


class StatefulChatBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessageBody] = Field(default_factory=list)
    chat_type: Literal["course", "lesson", "document", "general"] = Field(
        "general", alias="chatType"
    )
    document_id: str | None = Field(None, alias="documentId")
    selected_documents: list[SelectedDocumentBody] = Field(
        default_factory=list, alias="selectedDocuments"
    )
    conversation_id: str | None = Field(None, alias="conversationId")

    def document_ids(self) -> list[str]:
        if self.selected_documents:
            return [d.id for d in self.selected_documents]
        return [self.document_id] if self.document_id else []


# ═══════════════════════════════════════════════════════════════════════════════
# ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@api.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "service": "cognileap"}


@api.get("/health/db")
async def health_db() -> dict[str, str]:
    try:
        from sqlalchemy import text

        async with get_engine().connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.scalar()
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.error("db_health_check_failed", error=str(e))
        return {"status": "error", "database": "disconnected"}


@api.post("/api/study-tools/generate")
async def generate_study_tool(
    body: StudyToolGenerateBody,
    services: Services = Depends(get_services),
):
    options = None
    if body.flashcard_options is not None:
        options = FlashcardOptions(
            number_of_cards=body.flashcard_options.number_of_cards,
            difficulty=body.flashcard_options.difficulty,
            custom_instructions=body.flashcard_options.custom_instructions,
        )
    request = StudyToolRequest(
        type=body.type,
        document_id=body.document_id,
        conversation_id=body.conversation_id,
        flashcard_options=options,
    )
    try:
        result = await services.study_tools.generate(request)
    except CogniLeapError as e:
        status, payload = describe_failure(e)
        logger.warning(
            "study_tool_request_failed",
            status_code=status,
            error_type=type(e).__name__,
            error=str(e)[:300],
        )
        return JSONResponse(payload, status_code=status)
    return result.to_dict()


@api.post("/api/chat/stateful")
async def stateful_chat(
    body: StatefulChatBody,
    services: Services = Depends(get_services),
):
    request = ChatRequest(
        conversation_id=body.conversation_id or "",
        messages=[ChatTurn(role=m.role, content=m.content) for m in body.messages],
        chat_type=body.chat_type,
        document_ids=body.document_ids(),
    )
    try:
        frames = await services.chat.open(request)
    except InvalidRequestError as e:
        return JSONResponse({"error": str(e)}, status_code=e.status_code)
    except CogniLeapError as e:
        logger.error("chat_turn_setup_failed", error=str(e))
        return JSONResponse({"error": str(e)}, status_code=500)

    return StreamingResponse(
        frames,
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


# ═══════════════════════════════════════════════════════════════════════════════
# MAIN ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════

def main() -> None:
    import uvicorn

    parser = argparse.ArgumentParser(description="Run the CogniLeap API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=3000)
    args = parser.parse_args()

    logger.info("starting_cognileap", mode="http", port=args.port)
    uvicorn.run(
        "cognileap.app:api",
        host=args.host,
        port=args.port,
        reload=(settings.env == "development"),
    )


if __name__ == "__main__":
    main()
