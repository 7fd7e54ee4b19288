"""Relevance-filtered retrieval over a chatbot's vector namespace."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from .config import config
from .document_processing import CHARS_PER_TOKEN, estimate_tokens
from .errors import EmbeddingFailure, VectorStoreUnavailable
from .models import RetrievalOutcome, RetrievalResult, RetrievalStatus

if TYPE_CHECKING:
    from .embeddings import Embedder
    from .vector_store import BaseSQLiteStore

logger = config.get_logger(__name__)


def relevance_score(distance: float) -> float:
    """Map a vector distance to a score in (0, 1].

    Returns:
        1.0 at zero distance, strictly decreasing towards 0 as distance grows.
    """
    if distance == 0:
        return 1.0
    return 1.0 / (1.0 + distance)


class Retriever:
    """Embeds a query, searches the index and keeps sufficiently relevant chunks."""

    def __init__(
        self,
        embedder: Embedder,
        vector_store: BaseSQLiteStore,
        min_relevance: float | None = None,
        max_context_tokens: int | None = None,
    ) -> None:
        """Initialize the retriever.

        Args:
            embedder: Embeds the query text.
            vector_store: Index holding the chatbot namespaces.
            min_relevance: Results scoring below this are dropped. If None,
                uses config.RAG_MIN_RELEVANCE.
            max_context_tokens: Estimated token budget for all returned
                content. If None, uses config.RAG_MAX_CONTEXT_TOKENS.

        Raises:
            ValueError: If the token budget is not positive.
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.min_relevance = (
            min_relevance if min_relevance is not None else config.RAG_MIN_RELEVANCE
        )
        self.max_context_tokens = (
            max_context_tokens
            if max_context_tokens is not None
            else config.RAG_MAX_CONTEXT_TOKENS
        )
        if self.max_context_tokens <= 0:
            msg = f"max_context_tokens must be positive, got {self.max_context_tokens}"
            raise ValueError(msg)

    def search_relevant(
        self, chatbot_id: str, query: str, limit: int | None = None
    ) -> RetrievalOutcome:
        """Retrieve the chunks most relevant to ``query``.

        Store outages and embedding failures do not raise; they produce an
        empty outcome whose status says why.

        Returns:
            Outcome with results ordered by ascending distance.
        """
        limit = limit if limit is not None else config.RAG_TOP_K
        logger.info(
            "Searching chatbot %s for documents relevant to: %r (limit=%d)",
            chatbot_id,
            query[:50],
            limit,
        )

        try:
            query_vector = self.embedder.embed_query(query)
        except EmbeddingFailure:
            logger.exception("Failed to embed query for chatbot %s", chatbot_id)
            return RetrievalOutcome(RetrievalStatus.NO_RELEVANT)

        try:
            hits = self.vector_store.query(chatbot_id, query_vector, limit)
        except VectorStoreUnavailable:
            logger.warning(
                "Vector store unreachable for chatbot %s; retrieving no context",
                chatbot_id,
            )
            return RetrievalOutcome(RetrievalStatus.STORE_UNAVAILABLE)

        scored = [
            RetrievalResult(
                content=item.text,
                metadata=dict(item.metadata),
                distance=distance,
                relevance_score=relevance_score(distance),
            )
            for item, distance in hits
        ]
        for index, result in enumerate(scored):
            logger.info(
                "Doc %d: relevance=%.6f distance=%.6f length=%d",
                index + 1,
                result.relevance_score,
                result.distance,
                len(result.content),
            )

        relevant = [r for r in scored if r.relevance_score >= self.min_relevance]
        results = self._apply_context_budget(relevant)
        logger.info(
            "Kept %d of %d results (threshold %.6f)",
            len(results),
            len(scored),
            self.min_relevance,
        )

        if not relevant:
            return RetrievalOutcome(RetrievalStatus.NO_RELEVANT)
        return RetrievalOutcome(RetrievalStatus.OK, results)

    def _apply_context_budget(
        self, results: list[RetrievalResult]
    ) -> list[RetrievalResult]:
        """Keep results in order until the token budget is spent.

        The first result that does not fit is cut down to the tokens left, so
        an oversized best match is shortened rather than dropped.

        Returns:
            The results that fit, the last one possibly truncated.
        """
        kept: list[RetrievalResult] = []
        used = 0
        for result in results:
            cost = estimate_tokens(result.content)
            if used + cost <= self.max_context_tokens:
                kept.append(result)
                used += cost
                continue
            remaining = self.max_context_tokens - used
            if remaining > 0:
                truncated = result.content[: remaining * CHARS_PER_TOKEN]
                kept.append(replace(result, content=truncated))
            logger.info(
                "Context budget of %d tokens reached after %d results",
                self.max_context_tokens,
                len(kept),
            )
            break
        return kept
