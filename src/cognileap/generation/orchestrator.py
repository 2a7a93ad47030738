"""Model fallback orchestrator.

Drives the tier chain for one-shot generations:

  for each tier (most capable first):
      skip if the prompt exceeds the tier's input window
      attempt up to tier.max_retries times:
          call the model, reject completions under MIN_CONTENT_CHARS
          on failure classify the error; non-retryable or last attempt
          moves on to the next tier, otherwise back off per policy

A tier that has been left is never called again within the same request.
Backoff uses ``asyncio.sleep`` so cancelling the request task cancels a
pending backoff as well.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Sequence

import structlog

from cognileap.core.errors import (
    ClassificationRule,
    ContentTooShortError,
    DEFAULT_RULES,
    ErrorCategory,
    ErrorClassification,
    ExhaustedError,
    classify_error,
)
from cognileap.core.tokens import estimate_tokens
from cognileap.generation.client import GenerationConfig
from cognileap.generation.retry_policy import RetryPolicyTable
from cognileap.generation.tiers import DEFAULT_CHAIN, ArtifactType, ModelTier, validate_chain
from cognileap.generation.validator import is_content_complete

logger = structlog.get_logger()

MIN_CONTENT_CHARS = 50


@dataclass(frozen=True)
class GenerationAttemptResult:
    """A successful generation and where it came from."""

    tier: str
    attempt: int
    text: str
    duration_ms: int
    fallback_reason: str | None = None


class ModelFallbackOrchestrator:
    """Runs a generation through the fallback chain until one tier succeeds."""

    def __init__(
        self,
        client,
        chain: Iterable[ModelTier] = DEFAULT_CHAIN,
        policies: RetryPolicyTable | None = None,
        rules: Sequence[ClassificationRule] = DEFAULT_RULES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._chain = validate_chain(chain)
        self._policies = policies or RetryPolicyTable()
        self._rules = rules
        self._sleep = sleep

    @property
    def chain(self) -> tuple[ModelTier, ...]:
        return self._chain

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        artifact_type: ArtifactType | str,
    ) -> GenerationAttemptResult:
        """Generate an artifact, falling back through the chain.

        Raises:
            ExhaustedError: Every tier was skipped or used up its attempts.
        """
        kind = ArtifactType.parse(artifact_type) if isinstance(artifact_type, str) else artifact_type
        prompt_tokens = estimate_tokens(system_prompt) + estimate_tokens(user_prompt)

        last_error: Exception | None = None
        last_classification: ErrorClassification | None = None
        retry_after_ms: int | None = None
        tiers_tried: list[str] = []
        fallback_reasons: list[str] = []

        for tier in self._chain:
            if prompt_tokens > tier.max_input_tokens:
                logger.info(
                    "tier_skipped_input_too_large",
                    tier=tier.name,
                    prompt_tokens=prompt_tokens,
                    max_input_tokens=tier.max_input_tokens,
                )
                fallback_reasons.append(f"{tier.name}: input too large")
                continue

            tiers_tried.append(tier.name)
            config = GenerationConfig(
                temperature=tier.temperature,
                max_output_tokens=tier.output_cap(kind),
                top_k=tier.top_k,
            )

            for attempt in range(1, tier.max_retries + 1):
                t0 = time.monotonic()
                try:
                    response = await self._client.generate(
                        tier.name, [system_prompt, user_prompt], config,
                    )
                    text = response.text
                    if len(text) < MIN_CONTENT_CHARS:
                        raise ContentTooShortError(len(text))
                except Exception as e:
                    classification = classify_error(e, self._rules)
                    policy = self._policies.for_category(classification.category)
                    delay_ms = policy.delay_for(attempt)
                    last_error = e
                    last_classification = classification
                    retry_after_ms = delay_ms

                    is_last = attempt >= tier.max_retries
                    logger.warning(
                        "tier_attempt_failed",
                        tier=tier.name,
                        attempt=attempt,
                        max_retries=tier.max_retries,
                        category=classification.category.value,
                        retryable=classification.retryable,
                        error=str(e)[:300],
                    )
                    if is_last or not classification.retryable:
                        fallback_reasons.append(
                            f"{tier.name}: {classification.category.value}"
                        )
                        break

                    logger.info(
                        "tier_retry_backoff",
                        tier=tier.name,
                        attempt=attempt,
                        delay_ms=delay_ms,
                    )
                    await self._sleep(delay_ms / 1000)
                    continue

                duration_ms = round((time.monotonic() - t0) * 1000)
                if not is_content_complete(kind, text):
                    logger.warning(
                        "content_possibly_truncated",
                        tier=tier.name,
                        artifact_type=kind.value,
                        content_length=len(text),
                    )

                logger.info(
                    "generation_completed",
                    tier=tier.name,
                    attempt=attempt,
                    duration_ms=duration_ms,
                    artifact_type=kind.value,
                    fell_back=bool(fallback_reasons),
                )
                return GenerationAttemptResult(
                    tier=tier.name,
                    attempt=attempt,
                    text=text,
                    duration_ms=duration_ms,
                    fallback_reason="; ".join(fallback_reasons) or None,
                )

        if last_classification is None:
            last_classification = ErrorClassification(
                category=ErrorCategory.UNKNOWN,
                retryable=False,
                reason="prompt exceeds every model's input limit",
            )

        logger.error(
            "generation_exhausted",
            tiers_tried=tiers_tried,
            prompt_tokens=prompt_tokens,
            category=last_classification.category.value,
            retry_after_ms=retry_after_ms,
        )
        raise ExhaustedError(
            last_error=last_error,
            classification=last_classification,
            retry_after_ms=retry_after_ms,
            tiers_tried=tiers_tried,
        )
