from __future__ import annotations

from abc import ABC, abstractmethod


class IndexingEventPublisherPort(ABC):
    @abstractmethod
    async def publish_document_indexed(
        self,
        owner_id: str,
        document_id: str,
        collection: str,
        chunk_count: int,
        embedding_model: str,
    ) -> None:
        """Emit document.indexed after a successful run."""

    @abstractmethod
    async def publish_indexing_failed(
        self,
        owner_id: str,
        document_id: str,
        error_code: str,
        error_message: str,
    ) -> None:
        """Emit document.indexing_failed; the prior index is untouched."""
