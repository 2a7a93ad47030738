"""Context assembly: strategy selection, caching and retrieval."""

from cognileap.context.budget import ContextBudget, ContextStrategy
from cognileap.context.cache import CachedContext, ConversationContextCache
from cognileap.context.strategy import (
    AssembledContext,
    ContextStrategySelector,
    SourceDocument,
)

__all__ = [
    "AssembledContext",
    "CachedContext",
    "ContextBudget",
    "ContextStrategy",
    "ContextStrategySelector",
    "ConversationContextCache",
    "SourceDocument",
]
