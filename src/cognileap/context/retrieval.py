"""Retrieval collaborator for the RAG context strategy.

Splits the combined document text into overlapping word windows, scores
every window against the query and returns the best ones joined as a
single context string that fits the token budget.

Scoring
-------
  lexical   BM25 over the windows (k1=1.5, b=0.75), normalised to [0, 1]
  semantic  cosine similarity of embeddings, when an embedder is supplied
  hybrid    hybrid_weight * semantic + (1 - hybrid_weight) * lexical

Without an embedder, or when embedding fails, the lexical score is used
on its own.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

import structlog

from cognileap.core.errors import RetrievalError
from cognileap.core.tokens import estimate_tokens

logger = structlog.get_logger()

_BM25_K1 = 1.5
_BM25_B = 0.75

# Fallback when nothing clears the relevance floor
_MIN_FALLBACK_CHUNKS = 3

_STOPWORDS = frozenset(
    "a an the and or but of to in for on with by at is are was were be been"
    " have has had do does did will would could should may might can"
    " this that it its they their them what which who whom when where why how".split()
)

Embedder = Callable[[Sequence[str]], Awaitable[list[list[float]]]]


@dataclass(frozen=True)
class RetrievalOptions:
    """Budget and tuning knobs passed to the retriever."""

    max_tokens: int = 200_000
    chunk_size: int = 1000
    overlap: int = 200
    use_semantic_search: bool = True
    hybrid_weight: float = 0.7
    min_relevance_score: float = 0.1
    max_chunks: int = 200

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.overlap < self.chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        if not 0.0 <= self.hybrid_weight <= 1.0:
            raise ValueError("hybrid_weight must be in [0, 1]")


@dataclass
class Chunk:
    index: int
    content: str
    tokens: list[str]
    score: float = 0.0


def tokenise(text: str) -> list[str]:
    """Lower-case alphanumeric tokens with stopwords removed."""
    return [
        t for t in re.findall(r"[a-z0-9]+", text.lower())
        if len(t) > 1 and t not in _STOPWORDS
    ]


def chunk_words(text: str, chunk_size: int, overlap: int) -> list[str]:
    """Split text into windows of ``chunk_size`` words sharing ``overlap`` words."""
    words = text.split()
    step = chunk_size - overlap
    chunks: list[str] = []
    for start in range(0, len(words), step):
        window = words[start:start + chunk_size]
        if window:
            chunks.append(" ".join(window))
        if start + chunk_size >= len(words):
            break
    return chunks


def _compute_idf(corpus: list[list[str]]) -> dict[str, float]:
    n = len(corpus)
    if n == 0:
        return {}
    df: dict[str, int] = {}
    for doc in corpus:
        for tok in set(doc):
            df[tok] = df.get(tok, 0) + 1
    return {
        tok: math.log(1 + (n - freq + 0.5) / (freq + 0.5))
        for tok, freq in df.items()
    }


def bm25_score(
    query_tokens: list[str],
    doc_tokens: list[str],
    idf: dict[str, float],
    avg_doc_len: float,
) -> float:
    if not query_tokens or not doc_tokens:
        return 0.0
    doc_len = len(doc_tokens)
    tf_map: dict[str, int] = {}
    for tok in doc_tokens:
        tf_map[tok] = tf_map.get(tok, 0) + 1

    score = 0.0
    for tok in set(query_tokens):
        tf = tf_map.get(tok)
        if not tf:
            continue
        numerator = tf * (_BM25_K1 + 1)
        denominator = tf + _BM25_K1 * (1 - _BM25_B + _BM25_B * doc_len / max(avg_doc_len, 1))
        score += idf.get(tok, 0.0) * (numerator / denominator)
    return score


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class HybridContextRetriever:
    """Default retrieval collaborator: BM25 with optional embedding blend."""

    def __init__(self, embedder: Embedder | None = None) -> None:
        self._embedder = embedder

    async def build_context(
        self,
        query: str,
        label: str,
        combined_text: str,
        options: RetrievalOptions,
    ) -> str:
        """Return the most relevant sections of ``combined_text`` for ``query``.

        Raises:
            RetrievalError: If the text yields no chunks.
        """
        pieces = chunk_words(combined_text, options.chunk_size, options.overlap)
        if not pieces:
            raise RetrievalError(f"No content to retrieve from for {label}")

        chunks = [Chunk(index=i, content=p, tokens=tokenise(p)) for i, p in enumerate(pieces)]
        query_tokens = tokenise(query)

        idf = _compute_idf([c.tokens for c in chunks])
        avg_len = sum(len(c.tokens) for c in chunks) / len(chunks)
        lexical = [bm25_score(query_tokens, c.tokens, idf, avg_len) for c in chunks]
        top_lexical = max(lexical) if lexical else 0.0
        lexical = [s / top_lexical if top_lexical > 0 else 0.0 for s in lexical]

        semantic: list[float] | None = None
        if options.use_semantic_search and self._embedder is not None and query.strip():
            try:
                vectors = await self._embedder([query] + [c.content for c in chunks])
            except Exception as e:
                logger.warning("retrieval_embedding_failed", label=label, error=str(e))
            else:
                if len(vectors) == len(chunks) + 1:
                    query_vec, chunk_vecs = vectors[0], vectors[1:]
                    semantic = [max(_cosine(query_vec, v), 0.0) for v in chunk_vecs]
                else:
                    logger.warning(
                        "retrieval_embedding_count_mismatch",
                        label=label,
                        expected=len(chunks) + 1,
                        received=len(vectors),
                    )

        for i, chunk in enumerate(chunks):
            if semantic is None:
                chunk.score = lexical[i]
            else:
                chunk.score = (
                    options.hybrid_weight * semantic[i]
                    + (1 - options.hybrid_weight) * lexical[i]
                )

        ranked = sorted(chunks, key=lambda c: c.score, reverse=True)
        relevant = [c for c in ranked if c.score >= options.min_relevance_score]
        if not relevant:
            relevant = ranked[:_MIN_FALLBACK_CHUNKS]

        selected: list[Chunk] = []
        used_tokens = 0
        for chunk in relevant:
            if len(selected) >= options.max_chunks:
                break
            cost = estimate_tokens(chunk.content)
            if used_tokens + cost > options.max_tokens:
                break
            selected.append(chunk)
            used_tokens += cost

        logger.info(
            "retrieval_context_built",
            label=label,
            total_chunks=len(chunks),
            selected=len(selected),
            semantic=semantic is not None,
            context_tokens=used_tokens,
            top_score=round(ranked[0].score, 3),
        )

        body = "\n\n---\n\n".join(c.content for c in selected)
        return (
            f"Relevant sections from {label} "
            f"({len(selected)} of {len(chunks)} sections):\n\n{body}"
        )
