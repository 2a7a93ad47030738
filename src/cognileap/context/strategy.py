"""Context strategy selector.

Turns the documents attached to a conversation into one context string.
Small document sets are concatenated whole (SIMPLE); large ones go through
the retrieval collaborator (RAG). A failing retriever never fails the turn:
the selector falls back to a truncated concatenation instead.

Assembled contexts are cached per conversation in ConversationContextCache.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import structlog

from cognileap.config import settings
from cognileap.context.budget import ContextBudget, ContextStrategy, select_strategy
from cognileap.context.cache import ConversationContextCache
from cognileap.context.retrieval import HybridContextRetriever, RetrievalOptions
from cognileap.core.tokens import estimate_tokens

logger = structlog.get_logger()


@dataclass(frozen=True)
class SourceDocument:
    id: str
    title: str
    content: str


@dataclass(frozen=True)
class AssembledContext:
    context: str
    budget: ContextBudget
    from_cache: bool = False

    @property
    def strategy(self) -> ContextStrategy:
        return self.budget.strategy


def default_retrieval_options() -> RetrievalOptions:
    return RetrievalOptions(
        max_tokens=settings.rag_max_tokens,
        chunk_size=settings.rag_chunk_size,
        overlap=settings.rag_chunk_overlap,
        use_semantic_search=True,
        hybrid_weight=settings.rag_hybrid_weight,
        min_relevance_score=settings.rag_min_relevance_score,
        max_chunks=settings.rag_max_chunks,
    )


def concatenate(documents: Sequence[SourceDocument], max_chars: int | None = None) -> str:
    """Join documents under titled sections, optionally truncated."""
    text = "".join(f"\n\n=== {doc.title} ===\n{doc.content}" for doc in documents)
    if max_chars is not None and len(text) > max_chars:
        return text[:max_chars]
    return text


class ContextStrategySelector:
    """Chooses SIMPLE or RAG assembly and caches the result."""

    def __init__(
        self,
        retriever=None,
        cache: ConversationContextCache | None = None,
        rag_threshold: int | None = None,
        max_context_chars: int | None = None,
        max_prompt_chars: int | None = None,
        options: RetrievalOptions | None = None,
    ) -> None:
        self._retriever = retriever or HybridContextRetriever()
        self._cache = cache if cache is not None else ConversationContextCache()
        self._threshold = (
            rag_threshold if rag_threshold is not None else settings.rag_threshold_tokens
        )
        self._max_context_chars = (
            max_context_chars if max_context_chars is not None else settings.rag_max_context_chars
        )
        self._max_prompt_chars = (
            max_prompt_chars if max_prompt_chars is not None else settings.max_prompt_chars
        )
        self._options = options or default_retrieval_options()

    @property
    def cache(self) -> ConversationContextCache:
        return self._cache

    async def assemble(
        self,
        documents: Sequence[SourceDocument],
        conversation_id: str,
        query: str,
        output_cap: int = 0,
    ) -> AssembledContext | None:
        """Build (or reuse) the context for a conversation's documents.

        Returns None when there are no documents, leaving the caller's
        base prompt untouched.
        """
        if not documents:
            return None

        document_ids = [doc.id for doc in documents]
        async with self._cache.lock_for(conversation_id):
            cached = self._cache.get(conversation_id, document_ids)
            if cached is not None:
                logger.info(
                    "context_cache_hit",
                    conversation_id=conversation_id,
                    strategy=cached.budget.strategy.value,
                )
                return AssembledContext(cached.context, cached.budget, from_cache=True)

            total_tokens = estimate_tokens("".join(doc.content for doc in documents))
            strategy = select_strategy(total_tokens, self._threshold)
            budget = ContextBudget(
                strategy=strategy,
                total_tokens=total_tokens,
                output_cap=output_cap,
                rag_threshold=self._threshold,
            )

            if strategy is ContextStrategy.RAG:
                context = await self._assemble_rag(documents, conversation_id, query)
            else:
                context = concatenate(documents, self._max_prompt_chars)

            logger.info(
                "context_assembled",
                conversation_id=conversation_id,
                strategy=strategy.value,
                documents=len(documents),
                total_tokens=total_tokens,
                context_chars=len(context),
            )
            self._cache.put(conversation_id, document_ids, context, budget)
            return AssembledContext(context, budget)

    async def _assemble_rag(
        self,
        documents: Sequence[SourceDocument],
        conversation_id: str,
        query: str,
    ) -> str:
        label = documents[0].title if len(documents) == 1 else f"{len(documents)} documents"
        try:
            context = await self._retriever.build_context(
                query, label, concatenate(documents), self._options,
            )
        except Exception as e:
            logger.warning(
                "rag_assembly_failed_using_truncated_context",
                conversation_id=conversation_id,
                error=str(e),
                max_chars=self._max_context_chars,
            )
            return concatenate(documents, self._max_context_chars)
        return context[:self._max_context_chars]
