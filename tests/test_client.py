"""Tests for the Gemini REST client against a mocked transport."""

from __future__ import annotations

import json

import httpx
import pytest

from cognileap.core.errors import ErrorCategory, GenerationClientError, classify_error
from cognileap.generation.client import EMBED_BATCH_LIMIT, GeminiClient, GenerationConfig

BASE_URL = "https://gemini.test/v1beta"


def client_for(handler) -> GeminiClient:
    return GeminiClient(api_key="test", base_url=BASE_URL, transport=httpx.MockTransport(handler))


def completion(text: str, finish: str = "STOP") -> dict:
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": finish}],
        "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 5, "totalTokenCount": 15},
    }


# ─────────────────────────────────────────────────────────────────────────────
# generate
# ─────────────────────────────────────────────────────────────────────────────

class TestGenerate:
    @pytest.mark.asyncio
    async def test_request_shape_and_parsing(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["key"] = request.headers["x-goog-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion("Answer"))

        client = client_for(handler)
        result = await client.generate(
            "gemini-2.5-pro", ["system", "user"], GenerationConfig(0.7, 8192, 40),
        )
        await client.close()

        assert seen["path"].endswith("/models/gemini-2.5-pro:generateContent")
        assert seen["key"] == "test"
        assert seen["body"]["contents"][0]["parts"][0]["text"] == "system\n\nuser"
        assert seen["body"]["generationConfig"] == {
            "temperature": 0.7, "maxOutputTokens": 8192, "topK": 40,
        }
        assert result.text == "Answer"
        assert result.finish_reason == "STOP"
        assert result.usage == {"promptTokens": 10, "completionTokens": 5, "totalTokens": 15}

    @pytest.mark.asyncio
    async def test_http_error_is_classifiable(self):
        def handler(request):
            return httpx.Response(
                429, json={"error": {"status": "RESOURCE_EXHAUSTED", "message": "Quota exceeded"}},
            )

        client = client_for(handler)
        with pytest.raises(GenerationClientError) as info:
            await client.generate("gemini-2.5-pro", ["p"], GenerationConfig())
        await client.close()

        assert info.value.status_code == 429
        assert "status 429 RESOURCE_EXHAUSTED" in str(info.value)
        assert classify_error(info.value).category is ErrorCategory.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_service_unavailable_is_overloaded(self):
        client = client_for(lambda request: httpx.Response(503, text="Service Unavailable"))
        with pytest.raises(GenerationClientError) as info:
            await client.generate("gemini-2.5-pro", ["p"], GenerationConfig())
        await client.close()

        assert classify_error(info.value).category is ErrorCategory.OVERLOADED

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = client_for(handler)
        with pytest.raises(GenerationClientError, match="Gemini connection error"):
            await client.generate("gemini-2.5-pro", ["p"], GenerationConfig())
        await client.close()

    @pytest.mark.asyncio
    async def test_blocked_prompt(self):
        client = client_for(
            lambda request: httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})
        )
        with pytest.raises(GenerationClientError, match="SAFETY"):
            await client.generate("gemini-2.5-pro", ["p"], GenerationConfig())
        await client.close()

    def test_missing_key(self, monkeypatch):
        from cognileap.config import settings

        monkeypatch.setattr(settings, "gemini_api_key", "")
        with pytest.raises(RuntimeError):
            GeminiClient()


# ─────────────────────────────────────────────────────────────────────────────
# stream and embed
# ─────────────────────────────────────────────────────────────────────────────

class TestStream:
    @pytest.mark.asyncio
    async def test_sse_chunks_then_usage(self):
        events = [
            {"candidates": [{"content": {"parts": [{"text": "Hel"}]}}]},
            {"candidates": [{"content": {"parts": [{"text": "lo"}]}}]},
            completion(""),
        ]
        body = "".join(f"data: {json.dumps(e)}\n\n" for e in events)
        seen = {}

        def handler(request):
            seen["alt"] = request.url.params.get("alt")
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        client = client_for(handler)
        chunks = [c async for c in client.stream("gemini-2.5-flash", [], GenerationConfig())]
        await client.close()

        assert seen["alt"] == "sse"
        assert [c.text for c in chunks if not c.is_complete] == ["Hel", "lo"]
        assert chunks[-1].is_complete is True
        assert chunks[-1].usage["totalTokens"] == 15

    @pytest.mark.asyncio
    async def test_stream_http_error(self):
        client = client_for(lambda request: httpx.Response(500, text="internal"))
        with pytest.raises(GenerationClientError, match="status 500"):
            [c async for c in client.stream("gemini-2.5-flash", [], GenerationConfig())]
        await client.close()


class TestEmbed:
    @pytest.mark.asyncio
    async def test_batch_embeddings(self):
        def handler(request):
            body = json.loads(request.content)
            return httpx.Response(200, json={
                "embeddings": [{"values": [float(i)]} for i, _ in enumerate(body["requests"])],
            })

        client = client_for(handler)
        vectors = await client.embed(["a", "b"])
        await client.close()

        assert vectors == [[0.0], [1.0]]

    @pytest.mark.asyncio
    async def test_large_input_split_into_batches(self):
        batch_sizes = []

        def handler(request):
            requests = json.loads(request.content)["requests"]
            batch_sizes.append(len(requests))
            return httpx.Response(200, json={
                "embeddings": [
                    {"values": [float(r["content"]["parts"][0]["text"])]} for r in requests
                ],
            })

        client = client_for(handler)
        vectors = await client.embed([str(i) for i in range(EMBED_BATCH_LIMIT * 2 + 5)])
        await client.close()

        assert batch_sizes == [EMBED_BATCH_LIMIT, EMBED_BATCH_LIMIT, 5]
        assert vectors == [[float(i)] for i in range(EMBED_BATCH_LIMIT * 2 + 5)]
