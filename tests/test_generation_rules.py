"""Tests for retry policies, model tiers, completeness checks and token estimates."""

from __future__ import annotations

import json

import pytest

from cognileap.core.errors import ErrorCategory, FlashcardFormatError
from cognileap.core.tokens import (
    MAX_DOCUMENT_BUDGET,
    MIN_DOCUMENT_BUDGET,
    estimate_conversation,
    estimate_tokens,
    optimal_document_budget,
    truncate_to_tokens,
    warning_level_for,
)
from cognileap.generation.retry_policy import (
    DEFAULT_DELAY_MS,
    DEFAULT_POLICY,
    RetryPolicy,
    RetryPolicyTable,
)
from cognileap.generation.tiers import (
    DEFAULT_CHAIN,
    ArtifactType,
    ModelTier,
    validate_chain,
)
from cognileap.generation.validator import (
    is_content_complete,
    parse_flashcards,
    strip_code_fence,
)


# ─────────────────────────────────────────────────────────────────────────────
# Retry policies
# ─────────────────────────────────────────────────────────────────────────────

class TestRetryPolicy:
    def test_delay_follows_schedule(self):
        policy = RetryPolicy(ErrorCategory.OVERLOADED, 3, (15_000, 30_000, 60_000))
        assert [policy.delay_for(a) for a in (1, 2, 3)] == [15_000, 30_000, 60_000]

    def test_last_delay_reused_past_schedule(self):
        policy = RetryPolicy(ErrorCategory.RATE_LIMITED, 2, (60_000, 120_000))
        assert policy.delay_for(5) == 120_000

    def test_empty_schedule_uses_default(self):
        policy = RetryPolicy(None, 1, ())
        assert policy.delay_for(1) == DEFAULT_DELAY_MS

    def test_rejects_zero_retries(self):
        with pytest.raises(ValueError):
            RetryPolicy(None, 0, (1,))


class TestRetryPolicyTable:
    @pytest.mark.parametrize(
        "category, retries, delays",
        [
            (ErrorCategory.OVERLOADED, 3, (15_000, 30_000, 60_000)),
            (ErrorCategory.RATE_LIMITED, 2, (60_000, 120_000)),
            (ErrorCategory.INTERNAL, 2, (30_000, 45_000)),
            (ErrorCategory.TIMEOUT, 2, (15_000, 30_000)),
            (ErrorCategory.NETWORK, 2, (15_000, 30_000)),
        ],
    )
    def test_default_table(self, category, retries, delays):
        policy = RetryPolicyTable().for_category(category)
        assert policy.max_retries == retries
        assert policy.delays_ms == delays

    def test_unknown_gets_default(self):
        assert RetryPolicyTable().for_category(ErrorCategory.UNKNOWN) is DEFAULT_POLICY

    def test_custom_table(self):
        fast = RetryPolicy(ErrorCategory.TIMEOUT, 1, (10,))
        table = RetryPolicyTable({ErrorCategory.TIMEOUT: fast})
        assert table.for_category(ErrorCategory.TIMEOUT) is fast
        assert table.for_category(ErrorCategory.OVERLOADED) is table.default


# ─────────────────────────────────────────────────────────────────────────────
# Tiers and artifact types
# ─────────────────────────────────────────────────────────────────────────────

class TestArtifactType:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("summary", ArtifactType.SUMMARY),
            ("smart-summary", ArtifactType.SUMMARY),
            ("smart-notes", ArtifactType.NOTES),
            ("study-guide", ArtifactType.GUIDE),
            ("study_guide", ArtifactType.GUIDE),
            (" Flashcards ", ArtifactType.FLASHCARDS),
        ],
    )
    def test_parse(self, raw, expected):
        assert ArtifactType.parse(raw) is expected

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            ArtifactType.parse("quiz")

    def test_output_allocations(self):
        assert ArtifactType.SUMMARY.output_allocation == 16_384
        assert ArtifactType.NOTES.output_allocation == 32_768
        assert ArtifactType.GUIDE.output_allocation == 32_768
        assert ArtifactType.FLASHCARDS.output_allocation == 8_192


class TestModelTier:
    def test_default_chain_order(self):
        assert [t.name for t in DEFAULT_CHAIN] == [
            "gemini-2.5-pro",
            "gemini-2.5-flash",
            "gemini-2.5-flash-lite",
        ]
        assert [t.max_retries for t in DEFAULT_CHAIN] == [3, 3, 2]

    def test_output_cap_is_min_of_allocation_and_base(self):
        small = ModelTier("tiny", 1000, 4096, 0.5, 10, 1)
        assert small.output_cap(ArtifactType.NOTES) == 4096
        assert DEFAULT_CHAIN[0].output_cap(ArtifactType.NOTES) == 32_768

    def test_validate_chain_rejects_empty(self):
        with pytest.raises(ValueError):
            validate_chain([])

    def test_validate_chain_rejects_zero_attempt_tier(self):
        with pytest.raises(ValueError):
            validate_chain([ModelTier("x", 1, 1, 0.1, 1, 0)])


# ─────────────────────────────────────────────────────────────────────────────
# Completeness and flashcard parsing
# ─────────────────────────────────────────────────────────────────────────────

PARAGRAPH = "This paragraph explains the topic in enough depth to stand on its own. " * 4


class TestIsContentComplete:
    def test_short_prose_is_incomplete(self):
        assert is_content_complete(ArtifactType.SUMMARY, "Too short.") is False

    def test_summary_ending_with_ellipsis(self):
        assert is_content_complete(ArtifactType.SUMMARY, PARAGRAPH + "and then...") is False

    def test_complete_summary(self):
        assert is_content_complete(ArtifactType.SUMMARY, PARAGRAPH) is True

    def test_notes_with_short_last_block(self):
        text = PARAGRAPH + "\n\n## Next"
        assert is_content_complete(ArtifactType.NOTES, text) is False

    def test_notes_with_full_last_block(self):
        text = "## Intro\n\n" + PARAGRAPH + "\n\n" + PARAGRAPH
        assert is_content_complete("smart-notes", text) is True

    def test_short_flashcards_json_is_complete(self):
        payload = json.dumps([{"id": "1", "question": "Q?", "answer": "A"}])
        assert len(payload) < 200
        assert is_content_complete(ArtifactType.FLASHCARDS, payload) is True

    def test_broken_flashcards_json(self):
        assert is_content_complete(ArtifactType.FLASHCARDS, '[{"id": "1", "quest') is False
        assert is_content_complete("flashcards", "{invalid json") is False
        assert is_content_complete("flashcards", '[{"question":"q","answer":"a"}]') is True

    def test_unknown_type_only_checks_length(self):
        assert is_content_complete("quiz", PARAGRAPH) is True


class TestParseFlashcards:
    def test_strips_code_fence(self):
        assert strip_code_fence('```json\n[1]\n```') == "[1]"

    def test_parses_fenced_cards(self):
        cards = [{"id": "card-1", "question": "What is ATP?", "answer": "Energy currency"}]
        parsed = parse_flashcards("```json\n" + json.dumps(cards) + "\n```")
        assert parsed == cards

    def test_not_json(self):
        with pytest.raises(FlashcardFormatError):
            parse_flashcards("Here are your cards!")

    def test_not_array(self):
        with pytest.raises(FlashcardFormatError, match="not an array"):
            parse_flashcards('{"id": "1"}')

    def test_missing_fields(self):
        with pytest.raises(FlashcardFormatError, match="index 1"):
            parse_flashcards(json.dumps([
                {"id": "1", "question": "Q", "answer": "A"},
                {"id": "2", "question": "Q"},
            ]))


# ─────────────────────────────────────────────────────────────────────────────
# Token estimation
# ─────────────────────────────────────────────────────────────────────────────

class TestTokens:
    def test_estimate_rounds_up(self):
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0
        assert estimate_tokens(None) == 0

    def test_conversation_by_role(self):
        summary = estimate_conversation([("user", "a" * 40), ("assistant", "b" * 80)])
        assert (summary.total, summary.user, summary.assistant) == (30, 10, 20)
        assert summary.warning_level == "none"

    @pytest.mark.parametrize(
        "tokens, level",
        [(0, "none"), (150_000, "caution"), (180_000, "warning"), (200_000, "critical")],
    )
    def test_warning_levels(self, tokens, level):
        assert warning_level_for(tokens) == level

    def test_document_budget_bounds(self):
        assert optimal_document_budget(0) == MAX_DOCUMENT_BUDGET
        assert optimal_document_budget(190_000) == MIN_DOCUMENT_BUDGET
        assert optimal_document_budget(120_000) == 60_000

    def test_truncate_to_tokens(self):
        assert truncate_to_tokens("abcdefghij", 2) == "abcdefgh"
        assert truncate_to_tokens("abc", 2) == "abc"
        assert estimate_tokens(truncate_to_tokens("x" * 1001, 250)) == 250
