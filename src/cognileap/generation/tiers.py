"""Model tiers and artifact types for the generation fallback chain.

The chain is ordered most capable (and most expensive) first. Quality is
preferred while capacity exists; a lower tier is only reached after a tier
has used up its own retries.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

# All Gemini 2.5 models support up to 65,536 output tokens
GEMINI_MAX_OUTPUT_TOKENS = 65_536
GEMINI_MAX_INPUT_TOKENS = 1_000_000


class ArtifactType(str, Enum):
    """Study artifact kinds the generator produces."""

    SUMMARY = "summary"
    NOTES = "notes"
    GUIDE = "guide"
    FLASHCARDS = "flashcards"

    @classmethod
    def parse(cls, value: str) -> ArtifactType:
        """Accept both canonical names and the web client's tool names."""
        key = value.strip().lower()
        if key in _ALIASES:
            return _ALIASES[key]
        return cls(key)

    @property
    def output_allocation(self) -> int:
        return OUTPUT_ALLOCATIONS[self]


_ALIASES: dict[str, ArtifactType] = {
    "smart-summary": ArtifactType.SUMMARY,
    "smart-notes": ArtifactType.NOTES,
    "study-guide": ArtifactType.GUIDE,
    "study_guide": ArtifactType.GUIDE,
}

# Long-form content needs more room; flashcard JSON needs less
OUTPUT_ALLOCATIONS: dict[ArtifactType, int] = {
    ArtifactType.SUMMARY: 16_384,
    ArtifactType.NOTES: 32_768,
    ArtifactType.GUIDE: 32_768,
    ArtifactType.FLASHCARDS: 8_192,
}


@dataclass(frozen=True)
class ModelTier:
    """Static configuration for one model in the fallback chain."""

    name: str
    max_input_tokens: int
    base_output_tokens: int
    temperature: float
    top_k: int
    max_retries: int

    def output_cap(self, artifact_type: ArtifactType) -> int:
        return min(artifact_type.output_allocation, self.base_output_tokens)


DEFAULT_CHAIN: tuple[ModelTier, ...] = (
    ModelTier(
        name="gemini-2.5-pro",
        max_input_tokens=GEMINI_MAX_INPUT_TOKENS,
        base_output_tokens=GEMINI_MAX_OUTPUT_TOKENS,
        temperature=0.7,
        top_k=40,
        max_retries=3,
    ),
    ModelTier(
        name="gemini-2.5-flash",
        max_input_tokens=GEMINI_MAX_INPUT_TOKENS,
        base_output_tokens=GEMINI_MAX_OUTPUT_TOKENS,
        temperature=0.75,
        top_k=35,
        max_retries=3,
    ),
    ModelTier(
        name="gemini-2.5-flash-lite",
        max_input_tokens=GEMINI_MAX_INPUT_TOKENS,
        base_output_tokens=GEMINI_MAX_OUTPUT_TOKENS,
        temperature=0.8,
        top_k=30,
        max_retries=2,  # Last resort gets fewer retries
    ),
)


def validate_chain(tiers: Iterable[ModelTier]) -> tuple[ModelTier, ...]:
    """Return the chain as a tuple, rejecting an empty one."""
    chain = tuple(tiers)
    if not chain:
        raise ValueError("Fallback chain must contain at least one tier.")
    for tier in chain:
        if tier.max_retries < 1:
            raise ValueError(f"Tier {tier.name} must allow at least one attempt.")
    return chain
