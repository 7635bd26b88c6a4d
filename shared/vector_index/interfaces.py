from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from shared.schemas.documents import IndexedPoint, SearchResult


class VectorIndexPort(ABC):
    """Collection-scoped store of ``(vector, payload)`` points.

    Every read is filtered by owner; a document allowlist narrows it further
    when a generator is scoped to specific source documents.
    """

    @abstractmethod
    async def is_available(self) -> bool:
        """Liveness probe. Never raises."""

    @abstractmethod
    async def upsert(self, collection: str, points: Sequence[IndexedPoint]) -> None:
        """Insert or replace points, idempotent on ``(document_id, chunk_index)``."""

    @abstractmethod
    async def replace_document(
        self,
        collection: str,
        document_id: str,
        points: Sequence[IndexedPoint],
    ) -> None:
        """Delete every point of ``document_id`` and write ``points`` atomically."""

    @abstractmethod
    async def delete_by_document(self, collection: str, document_id: str) -> int:
        """Remove every point of ``document_id``. Returns the number removed."""

    @abstractmethod
    async def search(
        self,
        collection: str,
        query_vector: list[float],
        *,
        owner_id: str,
        document_ids: Sequence[str] | None = None,
        limit: int = 5,
        score_threshold: float = 0.0,
    ) -> list[SearchResult]:
        """Cosine-similarity search, best first."""

    @abstractmethod
    async def keyword_search(
        self,
        collection: str,
        query: str,
        *,
        owner_id: str,
        document_ids: Sequence[str] | None = None,
        limit: int = 5,
    ) -> list[SearchResult]:
        """Lexical search over chunk text, best first."""
