"""Tests for the model fallback orchestrator.

The client is scripted per model and backoff goes through a recording
sleep, so no test waits on a real delay.
"""

from __future__ import annotations

import asyncio
import json

import pytest

from conftest import LONG_TEXT, ScriptedClient, SleepRecorder
from cognileap.core.errors import (
    ErrorCategory,
    ExhaustedError,
    GenerationClientError,
)
from cognileap.generation.orchestrator import ModelFallbackOrchestrator
from cognileap.generation.tiers import DEFAULT_CHAIN, ArtifactType, ModelTier

PRO, FLASH, LITE = (t.name for t in DEFAULT_CHAIN)


def rate_limited() -> GenerationClientError:
    return GenerationClientError("Gemini request failed: status 429 quota exceeded", 429)


def overloaded() -> GenerationClientError:
    return GenerationClientError("The model is overloaded", 503)


def make(client, sleep=None, chain=DEFAULT_CHAIN) -> ModelFallbackOrchestrator:
    return ModelFallbackOrchestrator(client, chain=chain, sleep=sleep or SleepRecorder())


# ─────────────────────────────────────────────────────────────────────────────
# Happy path
# ─────────────────────────────────────────────────────────────────────────────

class TestFirstTierSucceeds:
    @pytest.mark.asyncio
    async def test_returns_first_tier_result(self, sleep_recorder):
        client = ScriptedClient()
        result = await make(client, sleep_recorder).generate("sys", "user", ArtifactType.SUMMARY)

        assert result.tier == PRO
        assert result.attempt == 1
        assert result.text == LONG_TEXT
        assert result.fallback_reason is None
        assert client.models_called == [PRO]
        assert sleep_recorder.delays == []

    @pytest.mark.asyncio
    async def test_output_cap_follows_artifact(self):
        client = ScriptedClient()
        await make(client).generate("sys", "user", "flashcards")

        _, config = client.calls[0]
        assert config.max_output_tokens == 8192
        assert config.top_k == 40

    @pytest.mark.asyncio
    async def test_truncated_output_still_returned(self):
        text = "x" * 60 + "..."
        client = ScriptedClient({PRO: [text]})
        result = await make(client).generate("sys", "user", ArtifactType.SUMMARY)
        assert result.text == text

    @pytest.mark.asyncio
    async def test_short_valid_flashcards_accepted(self):
        payload = json.dumps([{"id": "1", "question": "What is ATP?", "answer": "Energy"}])
        client = ScriptedClient({PRO: [payload]})
        result = await make(client).generate("sys", "user", ArtifactType.FLASHCARDS)
        assert result.text == payload


# ─────────────────────────────────────────────────────────────────────────────
# Retries and fallback
# ─────────────────────────────────────────────────────────────────────────────

class TestRetryAndFallback:
    @pytest.mark.asyncio
    async def test_retry_within_tier_then_success(self, sleep_recorder):
        client = ScriptedClient({PRO: [overloaded()]})
        result = await make(client, sleep_recorder).generate("sys", "user", "summary")

        assert result.tier == PRO
        assert result.attempt == 2
        assert sleep_recorder.delays == [15]

    @pytest.mark.asyncio
    async def test_falls_back_after_tier_retries(self, sleep_recorder):
        client = ScriptedClient({PRO: [overloaded()] * 3})
        result = await make(client, sleep_recorder).generate("sys", "user", "summary")

        assert result.tier == FLASH
        assert result.attempt == 1
        assert result.fallback_reason == f"{PRO}: overloaded"
        assert client.models_called == [PRO, PRO, PRO, FLASH]
        # No backoff after the tier's final attempt
        assert sleep_recorder.delays == [15, 30]

    @pytest.mark.asyncio
    async def test_rate_limited_everywhere_exhausts(self, sleep_recorder):
        client = ScriptedClient({PRO: [rate_limited()] * 3, FLASH: [rate_limited()] * 3,
                                 LITE: [rate_limited()] * 2})

        with pytest.raises(ExhaustedError) as info:
            await make(client, sleep_recorder).generate("sys", "user", "notes")

        exc = info.value
        assert len(client.calls) == 8
        assert sleep_recorder.delays == [60, 120, 60, 120, 60]
        assert exc.classification.category is ErrorCategory.RATE_LIMITED
        assert exc.retryable is True
        assert exc.retry_after_ms == 120_000
        assert exc.tiers_tried == [PRO, FLASH, LITE]

    @pytest.mark.asyncio
    async def test_short_content_escalates_without_retry(self, sleep_recorder):
        client = ScriptedClient({PRO: ["a" * 30]})
        result = await make(client, sleep_recorder).generate("sys", "user", "summary")

        assert result.tier == FLASH
        assert client.models_called == [PRO, FLASH]
        assert sleep_recorder.delays == []
        assert result.fallback_reason == f"{PRO}: unknown"

    @pytest.mark.asyncio
    async def test_unknown_error_moves_to_next_tier(self, sleep_recorder):
        client = ScriptedClient({PRO: [ValueError("prompt blocked by safety")]})
        result = await make(client, sleep_recorder).generate("sys", "user", "summary")

        assert result.tier == FLASH
        assert sleep_recorder.delays == []

    @pytest.mark.asyncio
    async def test_unknown_everywhere_is_not_retryable(self):
        boom = ValueError("prompt blocked by safety")
        client = ScriptedClient({PRO: [boom], FLASH: [boom], LITE: [boom]})

        with pytest.raises(ExhaustedError) as info:
            await make(client).generate("sys", "user", "summary")

        assert info.value.retryable is False
        assert info.value.last_error is boom
        assert len(client.calls) == 3

    @pytest.mark.asyncio
    async def test_rejected_request_is_never_retried(self, sleep_recorder):
        def invalid_key() -> GenerationClientError:
            return GenerationClientError(
                "Gemini request failed: status 400 INVALID_ARGUMENT API key not valid. "
                "Please pass a valid API key.",
                400,
            )

        client = ScriptedClient({PRO: [invalid_key()], FLASH: [invalid_key()], LITE: [invalid_key()]})

        with pytest.raises(ExhaustedError) as info:
            await make(client, sleep_recorder).generate("sys", "user", "summary")

        assert client.models_called == [PRO, FLASH, LITE]
        assert sleep_recorder.delays == []
        assert info.value.retryable is False
        assert info.value.reason == "AI service authentication error"


# ─────────────────────────────────────────────────────────────────────────────
# Input limits and cancellation
# ─────────────────────────────────────────────────────────────────────────────

class TestInputLimits:
    @pytest.mark.asyncio
    async def test_oversized_tier_is_skipped(self, sleep_recorder):
        chain = (
            ModelTier("small", 10, 1024, 0.7, 40, 3),
            ModelTier("large", 1_000_000, 1024, 0.7, 40, 3),
        )
        client = ScriptedClient()
        result = await make(client, sleep_recorder, chain).generate("s" * 40, "u" * 40, "summary")

        assert result.tier == "large"
        assert client.models_called == ["large"]
        assert sleep_recorder.delays == []
        assert result.fallback_reason == "small: input too large"

    @pytest.mark.asyncio
    async def test_all_tiers_too_small(self, sleep_recorder):
        chain = (ModelTier("small", 10, 1024, 0.7, 40, 3),)
        client = ScriptedClient()

        with pytest.raises(ExhaustedError) as info:
            await make(client, sleep_recorder, chain).generate("s" * 400, "u", "summary")

        assert client.calls == []
        assert sleep_recorder.delays == []
        assert info.value.retryable is False
        assert info.value.retry_after_ms is None
        assert info.value.tiers_tried == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self):
        started = asyncio.Event()

        async def blocking_sleep(seconds: float) -> None:
            started.set()
            await asyncio.Event().wait()

        client = ScriptedClient({PRO: [overloaded()] * 3})
        orchestrator = ModelFallbackOrchestrator(client, sleep=blocking_sleep)
        task = asyncio.create_task(orchestrator.generate("sys", "user", "summary"))

        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert client.models_called == [PRO]
