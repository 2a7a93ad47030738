"""Generation client for CogniLeap.

Talks to the Gemini REST API (generativelanguage.googleapis.com) directly
over httpx. The client performs exactly one upstream call per method
invocation: retries and model fallback belong to the orchestrator, which
needs to see every failure to classify it.

Failures are raised as GenerationClientError with the HTTP status and the
upstream error body folded into the message ("status 429 RESOURCE_EXHAUSTED
..."), which is what the error classifier reads.
"""

from __future__ import annotations

import json as _json
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Sequence

import certifi
import httpx
import structlog

from cognileap.config import settings
from cognileap.core.errors import GenerationClientError

logger = structlog.get_logger()

# batchEmbedContents rejects more than 100 requests per call
EMBED_BATCH_LIMIT = 100


@dataclass
class GenerationConfig:
    """Sampling parameters for a single generation call."""

    temperature: float = 0.7
    max_output_tokens: int = 4096
    top_k: int | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_output_tokens,
        }
        if self.top_k is not None:
            payload["topK"] = self.top_k
        return payload


@dataclass
class GenerationResponse:
    """Response from a one-shot generation call."""

    text: str
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str | None = None


@dataclass
class StreamChunk:
    """One increment of a streamed generation."""

    text: str = ""
    is_complete: bool = False
    usage: dict[str, int] | None = None


def _usage_from(data: dict[str, Any]) -> dict[str, int]:
    meta = data.get("usageMetadata") or {}
    usage: dict[str, int] = {}
    if "promptTokenCount" in meta:
        usage["promptTokens"] = meta["promptTokenCount"]
    if "candidatesTokenCount" in meta:
        usage["completionTokens"] = meta["candidatesTokenCount"]
    if "totalTokenCount" in meta:
        usage["totalTokens"] = meta["totalTokenCount"]
    return usage


def _text_from(data: dict[str, Any]) -> tuple[str, str | None]:
    candidates = data.get("candidates") or []
    if not candidates:
        feedback = data.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise GenerationClientError(
                f"Prompt blocked by safety filter: {feedback['blockReason']}"
            )
        return "", None
    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
    return text, candidate.get("finishReason")


def _error_message(status: int, body: str) -> str:
    """Fold the upstream error body into a classifiable message."""
    detail = body[:500]
    try:
        err = _json.loads(body).get("error", {})
        detail = f"{err.get('status', '')} {err.get('message', '')}".strip() or detail
    except (ValueError, AttributeError):
        pass
    return f"Gemini request failed: status {status} {detail}"


class GeminiClient:
    """HTTP client for the Gemini generation and embedding endpoints."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        api_key = api_key or settings.gemini_api_key
        if not api_key:
            raise RuntimeError(
                "COGNILEAP_GEMINI_API_KEY not set. "
                "Add api_key to keys.json under gemini."
            )

        self._client = httpx.AsyncClient(
            base_url=base_url or settings.gemini_base_url,
            headers={
                "x-goog-api-key": api_key,
                "Content-Type": "application/json",
            },
            verify=certifi.where(),
            timeout=httpx.Timeout(
                connect=settings.generation_connect_timeout,
                read=settings.generation_read_timeout,
                write=10.0,
                pool=15.0,
            ),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=transport,
        )
        logger.info("generation_client_initialized", base_url=str(self._client.base_url))

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("generation_client_closed")

    async def generate(
        self,
        model: str,
        prompt_parts: Sequence[str],
        config: GenerationConfig,
    ) -> GenerationResponse:
        """Run one non-streaming generation with the prompt parts joined."""
        payload = {
            "contents": [
                {"role": "user", "parts": [{"text": "\n\n".join(prompt_parts)}]},
            ],
            "generationConfig": config.to_payload(),
        }
        t0 = time.monotonic()
        data = await self._post_json(f"/models/{model}:generateContent", payload)
        text, finish_reason = _text_from(data)
        usage = _usage_from(data)

        logger.info(
            "generation_success",
            model=model,
            llm_ms=round((time.monotonic() - t0) * 1000),
            content_length=len(text),
            finish_reason=finish_reason,
            prompt_tokens=usage.get("promptTokens"),
            completion_tokens=usage.get("completionTokens"),
        )
        return GenerationResponse(text=text, usage=usage, finish_reason=finish_reason)

    async def stream(
        self,
        model: str,
        contents: list[dict[str, Any]],
        config: GenerationConfig,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a multi-turn generation as server-sent events.

        Yields text chunks followed by one chunk with ``is_complete=True``
        carrying usage counts.
        """
        payload = {"contents": contents, "generationConfig": config.to_payload()}
        usage: dict[str, int] = {}
        try:
            async with self._client.stream(
                "POST",
                f"/models/{model}:streamGenerateContent",
                params={"alt": "sse"},
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise GenerationClientError(
                        _error_message(response.status_code, body),
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    raw = line[len("data:"):].strip()
                    if not raw:
                        continue
                    data = _json.loads(raw)
                    text, _ = _text_from(data)
                    usage = _usage_from(data) or usage
                    if text:
                        yield StreamChunk(text=text)
        except httpx.TimeoutException as e:
            raise GenerationClientError(f"Gemini stream timeout: {e}") from e
        except httpx.TransportError as e:
            raise GenerationClientError(f"Gemini connection error: {e}") from e

        yield StreamChunk(is_complete=True, usage=usage)

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts with the configured embedding model.

        Requests go out in batches of at most ``EMBED_BATCH_LIMIT`` texts;
        vectors come back in input order.
        """
        model = settings.gemini_embedding_model
        vectors: list[list[float]] = []
        for start in range(0, len(texts), EMBED_BATCH_LIMIT):
            batch = texts[start:start + EMBED_BATCH_LIMIT]
            payload = {
                "requests": [
                    {"model": f"models/{model}", "content": {"parts": [{"text": t}]}}
                    for t in batch
                ],
            }
            data = await self._post_json(f"/models/{model}:batchEmbedContents", payload)
            vectors.extend(e.get("values", []) for e in data.get("embeddings", []))
        return vectors

    async def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(
                "generation_request_failed",
                path=path,
                status_code=status,
                response=e.response.text[:500],
            )
            raise GenerationClientError(
                _error_message(status, e.response.text), status_code=status,
            ) from e
        except httpx.TimeoutException as e:
            logger.warning("generation_request_timeout", path=path, error=str(e))
            raise GenerationClientError(f"Gemini request timeout: {e}") from e
        except httpx.TransportError as e:
            logger.warning("generation_request_network_error", path=path, error=str(e))
            raise GenerationClientError(f"Gemini connection error: {e}") from e


_client: GeminiClient | None = None


def get_generation_client() -> GeminiClient:
    global _client
    if _client is None:
        _client = GeminiClient()
    return _client


async def close_generation_client() -> None:
    global _client
    if _client is not None:
        await _client.close()
        _client = None
