from __future__ import annotations

from collections.abc import Sequence

import structlog

from retrieval_service.domain.models import RetrievalResponse
from shared.embedding.client import EmbeddingProvider
from shared.exceptions import EmbeddingFailureError, IndexUnavailableError, RetrievalTransportError
from shared.schemas.documents import SearchMode, SearchResult, sort_by_score
from shared.vector_index.interfaces import VectorIndexPort

logger = structlog.get_logger(__name__)

RRF_K = 60


def reciprocal_rank_fusion(
    vector_results: Sequence[SearchResult],
    keyword_results: Sequence[SearchResult],
    k: int = RRF_K,
) -> list[SearchResult]:
    """Merge two ranked lists by reciprocal rank.

    Fused scores are normalised so a chunk ranked first in both lists scores
    1.0; chunks found by both strategies are tagged ``hybrid``.
    """
    fused: dict[tuple[str, int], float] = {}
    first_seen: dict[tuple[str, int], SearchResult] = {}
    sources: dict[tuple[str, int], set[SearchMode]] = {}

    for ranked in (vector_results, keyword_results):
        for rank, result in enumerate(ranked, start=1):
            key = result.key
            fused[key] = fused.get(key, 0.0) + 1.0 / (k + rank)
            first_seen.setdefault(key, result)
            sources.setdefault(key, set()).add(result.match_type)

    best_possible = 2.0 / (k + 1)
    merged = [
        first_seen[key].model_copy(
            update={
                "score": min(1.0, score / best_possible),
                "match_type": SearchMode.HYBRID if len(sources[key]) > 1 else first_seen[key].match_type,
            }
        )
        for key, score in fused.items()
    ]
    return sort_by_score(merged)


class RetrievalService:
    """Read path: natural-language query -> ranked chunks of the owner's documents."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: VectorIndexPort,
        collection: str,
        default_limit: int = 5,
        score_threshold: float = 0.3,
        keyword_score_threshold: float = 0.05,
        hybrid_sparse_ratio: float = 0.5,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._collection = collection
        self._default_limit = default_limit
        self._score_threshold = score_threshold
        self._keyword_score_threshold = keyword_score_threshold
        self._sparse_ratio = hybrid_sparse_ratio

    async def search(
        self,
        query: str,
        *,
        owner_id: str,
        document_ids: Sequence[str] | None = None,
        limit: int | None = None,
        mode: SearchMode = SearchMode.HYBRID,
    ) -> RetrievalResponse:
        limit = limit or self._default_limit
        log = logger.bind(owner_id=owner_id, mode=str(mode), limit=limit)

        if not query.strip():
            return RetrievalResponse.empty(query, mode)

        if not await self._index.is_available():
            log.warning("retrieval.skipped.index_unavailable")
            return RetrievalResponse.empty(query, mode, index_available=False)

        try:
            if mode == SearchMode.VECTOR:
                results = await self._vector_search(query, owner_id, document_ids, limit)
            elif mode == SearchMode.KEYWORD:
                results = await self._keyword_search(query, owner_id, document_ids, limit)
            else:
                results = await self._hybrid_search(query, owner_id, document_ids, limit)
        except (EmbeddingFailureError, IndexUnavailableError) as exc:
            log.error("retrieval.search.failed", error_code=exc.error_code, error=str(exc))
            raise RetrievalTransportError(str(exc)) from exc

        results = sort_by_score(results)[:limit]
        log.info(
            "retrieval.search.completed",
            result_count=len(results),
            top_score=results[0].score if results else 0.0,
        )
        return RetrievalResponse(query=query, results=results, search_type=mode)

    async def _vector_search(
        self,
        query: str,
        owner_id: str,
        document_ids: Sequence[str] | None,
        limit: int,
    ) -> list[SearchResult]:
        query_vector = await self._embedder.embed_query(query)
        return await self._index.search(
            self._collection,
            query_vector,
            owner_id=owner_id,
            document_ids=document_ids,
            limit=limit,
            score_threshold=self._score_threshold,
        )

    async def _keyword_search(
        self,
        query: str,
        owner_id: str,
        document_ids: Sequence[str] | None,
        limit: int,
    ) -> list[SearchResult]:
        # Substring-only matches rank 0; hits under the floor never reach fusion.
        results = await self._index.keyword_search(
            self._collection, query, owner_id=owner_id, document_ids=document_ids, limit=limit
        )
        return [r for r in results if r.score >= self._keyword_score_threshold]

    async def _hybrid_search(
        self,
        query: str,
        owner_id: str,
        document_ids: Sequence[str] | None,
        limit: int,
    ) -> list[SearchResult]:
        vector_results = await self._vector_search(query, owner_id, document_ids, limit)
        if len(vector_results) >= limit * self._sparse_ratio:
            return vector_results

        keyword_results = await self._keyword_search(query, owner_id, document_ids, limit)
        logger.debug(
            "retrieval.hybrid.keyword_fallback",
            vector_count=len(vector_results),
            keyword_count=len(keyword_results),
        )
        if not keyword_results:
            return vector_results
        return reciprocal_rank_fusion(vector_results, keyword_results)
