"""Detached persistence of chat turns and study outputs.

Writes run as background tasks so the response never waits on the
database. Each write retries a bounded number of times with exponential
backoff; a write that still fails is logged and dropped.

``drain()`` waits for outstanding writes (shutdown hook and tests).
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from cognileap.config import settings

logger = structlog.get_logger()


class TurnRecorder:
    def __init__(
        self,
        store,
        max_attempts: int | None = None,
        wait=None,
    ) -> None:
        self._store = store
        self._max_attempts = max_attempts or settings.persistence_max_attempts
        self._wait = wait or wait_exponential(multiplier=1, min=1, max=4)
        self._tasks: set[asyncio.Task] = set()
        self.failures = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def record_turn(
        self,
        conversation_id: str,
        user_content: str,
        assistant_content: str,
        user_metadata: dict[str, Any] | None = None,
        assistant_metadata: dict[str, Any] | None = None,
        chat_type: str = "general",
        token_breakdown: dict[str, Any] | None = None,
    ) -> asyncio.Task:
        """Persist a user/assistant exchange in the background."""

        async def _write() -> None:
            await self._store.append_turn(
                conversation_id,
                user_content,
                assistant_content,
                user_metadata,
                assistant_metadata,
                chat_type=chat_type,
                token_breakdown=token_breakdown,
            )

        return self._spawn("turn", _write, conversation_id=conversation_id)

    def record_output(
        self,
        output_id: str,
        document_id: str,
        artifact_type: str,
        title: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> asyncio.Task:
        """Persist a generated study artifact in the background."""

        async def _write() -> None:
            await self._store.save_output(
                document_id, artifact_type, title, content, metadata, output_id=output_id,
            )

        return self._spawn("output", _write, output_id=output_id, document_id=document_id)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _spawn(
        self,
        kind: str,
        write: Callable[[], Awaitable[None]],
        **context: Any,
    ) -> asyncio.Task:
        @retry(
            stop=stop_after_attempt(self._max_attempts),
            wait=self._wait,
            reraise=True,
        )
        async def _with_retry() -> None:
            await write()

        async def _run() -> None:
            try:
                await _with_retry()
                logger.debug("persist_succeeded", kind=kind, **context)
            except Exception as e:
                self.failures += 1
                logger.error(
                    "persist_failed",
                    kind=kind,
                    attempts=self._max_attempts,
                    error=str(e),
                    **context,
                )

        task = asyncio.create_task(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
