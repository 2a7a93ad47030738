"""Context strategy selection.

The strategy is a pure function of the estimated source size:

  total < threshold   SIMPLE  (concatenate every document)
  total >= threshold  RAG     (retrieve the relevant sections)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

DEFAULT_RAG_THRESHOLD = 100_000


class ContextStrategy(str, Enum):
    SIMPLE = "SIMPLE"
    RAG = "RAG"


@dataclass(frozen=True)
class ContextBudget:
    """How a context was (or will be) assembled."""

    strategy: ContextStrategy
    total_tokens: int
    output_cap: int
    rag_threshold: int = DEFAULT_RAG_THRESHOLD

    def to_dict(self) -> dict:
        return {
            "strategy": self.strategy.value,
            "totalTokens": self.total_tokens,
            "outputCap": self.output_cap,
            "ragThreshold": self.rag_threshold,
        }


def select_strategy(total_tokens: int, threshold: int = DEFAULT_RAG_THRESHOLD) -> ContextStrategy:
    return ContextStrategy.RAG if total_tokens >= threshold else ContextStrategy.SIMPLE
