"""Line-framed streaming wire format.

Each frame is one line, ``<tag>:<json>\\n``:

  0:"text fragment"
  8:{"usage": ..., "model": ..., "sessionId": ..., "isNewSession": ...}
  error:{"error": "message"}

Exactly one terminal frame (``8`` or ``error``) ends every stream.
"""

from __future__ import annotations

import inspect
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Union

import structlog

from cognileap.generation.client import StreamChunk

logger = structlog.get_logger()

TEXT_TAG = "0"
METADATA_TAG = "8"
ERROR_TAG = "error"

MetadataBuilder = Callable[
    [str, "dict[str, int] | None"],
    Union[dict[str, Any], Awaitable[dict[str, Any]]],
]


def _dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class StreamEmitter:
    """Encodes generation output as wire frames."""

    @staticmethod
    def encode_text(fragment: str) -> str:
        return f"{TEXT_TAG}:{_dumps(fragment)}\n"

    @staticmethod
    def encode_metadata(metadata: dict[str, Any]) -> str:
        return f"{METADATA_TAG}:{_dumps(metadata)}\n"

    @staticmethod
    def encode_error(message: str) -> str:
        return f"{ERROR_TAG}:{_dumps({'error': message})}\n"

    async def relay(
        self,
        chunks: AsyncIterator[StreamChunk],
        build_metadata: MetadataBuilder,
    ) -> AsyncIterator[str]:
        """Relay chunks as frames, finishing with metadata or an error.

        ``build_metadata(full_text, usage)`` is called once the generation
        completes. Any failure, including one raised by the builder, ends
        the stream with a single error frame. Cancellation is not caught.
        """
        parts: list[str] = []
        usage: dict[str, int] | None = None
        try:
            async for chunk in chunks:
                if chunk.text:
                    parts.append(chunk.text)
                    yield self.encode_text(chunk.text)
                if chunk.is_complete:
                    usage = chunk.usage
                    break

            metadata = build_metadata("".join(parts), usage)
            if inspect.isawaitable(metadata):
                metadata = await metadata
        except Exception as e:
            logger.error("stream_failed", error=str(e), emitted_chars=sum(map(len, parts)))
            yield self.encode_error(str(e) or type(e).__name__)
            return

        yield self.encode_metadata(metadata)
