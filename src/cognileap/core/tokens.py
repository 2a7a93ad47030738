"""Token estimation heuristics.

Everything here is a character-length approximation (~4 characters per
token). Exact counts need an upstream round-trip and are not worth it for
budgeting decisions.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Literal

CHARS_PER_TOKEN = 4

# Practical context limits for good answer quality
PRACTICAL_INPUT_MAX = 200_000
WARNING_THRESHOLD = 150_000
CRITICAL_THRESHOLD = 180_000
RESPONSE_RESERVE = 20_000
MIN_DOCUMENT_BUDGET = 20_000
MAX_DOCUMENT_BUDGET = 100_000

WarningLevel = Literal["none", "caution", "warning", "critical"]


def estimate_tokens(text: str | None) -> int:
    """Approximate token count for arbitrary text."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass
class ConversationTokens:
    """Per-role token totals for a conversation."""

    total: int = 0
    user: int = 0
    assistant: int = 0
    warning_level: WarningLevel = "none"


def warning_level_for(total_tokens: int) -> WarningLevel:
    if total_tokens >= PRACTICAL_INPUT_MAX:
        return "critical"
    if total_tokens >= CRITICAL_THRESHOLD:
        return "warning"
    if total_tokens >= WARNING_THRESHOLD:
        return "caution"
    return "none"


def estimate_conversation(turns: Iterable[tuple[str, str]]) -> ConversationTokens:
    """Estimate tokens for (role, content) pairs."""
    summary = ConversationTokens()
    for role, content in turns:
        tokens = estimate_tokens(content)
        summary.total += tokens
        if role == "user":
            summary.user += tokens
        elif role == "assistant":
            summary.assistant += tokens
    summary.warning_level = warning_level_for(summary.total)
    return summary


def optimal_document_budget(conversation_tokens: int) -> int:
    """Document token budget left after the conversation so far.

    Always between MIN_DOCUMENT_BUDGET and MAX_DOCUMENT_BUDGET.
    """
    remaining = max(0, PRACTICAL_INPUT_MAX - conversation_tokens)
    available = max(0, remaining - RESPONSE_RESERVE)
    return max(MIN_DOCUMENT_BUDGET, min(available, MAX_DOCUMENT_BUDGET))


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut ``text`` so its estimate stays within ``max_tokens``."""
    max_chars = max(0, max_tokens) * CHARS_PER_TOKEN
    return text if len(text) <= max_chars else text[:max_chars]
