from __future__ import annotations

from typing import Any

import structlog

from indexing_service.domain.chunker import ChunkingService
from indexing_service.domain.interfaces import IndexingEventPublisherPort
from indexing_service.domain.models import Document, DocumentChunk, IndexingReport
from shared.embedding.client import EmbeddingIntent, EmbeddingProvider
from shared.exceptions import RagCoreError
from shared.schemas.documents import DocumentMetadata, IndexedPoint
from shared.vector_index.interfaces import VectorIndexPort

logger = structlog.get_logger(__name__)


class IndexingService:
    """Write path: Document -> chunks -> embeddings -> vector index.

    Failures never propagate to the caller that saved the document; they are
    logged, reported and published, and the document's previous points stay
    in place.
    """

    def __init__(
        self,
        chunker: ChunkingService,
        embedder: EmbeddingProvider,
        index: VectorIndexPort,
        collection: str,
        publisher: IndexingEventPublisherPort | None = None,
    ) -> None:
        self._chunker = chunker
        self._embedder = embedder
        self._index = index
        self._collection = collection
        self._publisher = publisher

    async def index_document(
        self,
        document_id: str,
        owner_id: str,
        text: str,
        metadata: DocumentMetadata | None = None,
    ) -> IndexingReport:
        document = Document(
            document_id=document_id,
            owner_id=owner_id,
            text=text,
            metadata=metadata or DocumentMetadata(),
        )
        log = logger.bind(document_id=document_id, owner_id=owner_id, collection=self._collection)

        if not await self._index.is_available():
            log.warning("indexing.skipped.index_unavailable")
            return self._report(document_id, 0, indexed=False, skipped_reason="INDEX_UNAVAILABLE")

        log.info("indexing.document.started", char_count=len(text))

        chunks = self._chunker.chunk(document)
        try:
            if not chunks:
                # Nothing to embed; drop whatever an earlier version left behind.
                removed = await self._index.delete_by_document(self._collection, document_id)
                log.info("indexing.document.empty", removed=removed)
                return self._report(document_id, 0, indexed=False, skipped_reason="EMPTY_DOCUMENT")

            vectors = await self._embedder.embed_batch(
                [c.text for c in chunks], EmbeddingIntent.DOCUMENT
            )
            points = [
                self._to_point(document, chunk, vector)
                for chunk, vector in zip(chunks, vectors, strict=True)
            ]
            await self._index.replace_document(self._collection, document_id, points)
        except RagCoreError as exc:
            log.error(
                "indexing.document.failed",
                error_code=exc.error_code,
                error=str(exc),
                chunk_count=len(chunks),
            )
            await self._publish(
                "publish_indexing_failed",
                owner_id=owner_id,
                document_id=document_id,
                error_code=exc.error_code,
                error_message=str(exc),
            )
            return self._report(document_id, 0, indexed=False, error_code=exc.error_code)

        await self._publish(
            "publish_document_indexed",
            owner_id=owner_id,
            document_id=document_id,
            collection=self._collection,
            chunk_count=len(points),
            embedding_model=self._embedder.model_name,
        )

        log.info("indexing.document.completed", chunk_count=len(points))
        return self._report(document_id, len(points), indexed=True)

    async def delete_document_index(self, document_id: str) -> int:
        log = logger.bind(document_id=document_id, collection=self._collection)

        if not await self._index.is_available():
            log.warning("indexing.delete.skipped.index_unavailable")
            return 0

        try:
            removed = await self._index.delete_by_document(self._collection, document_id)
        except RagCoreError as exc:
            log.error("indexing.delete.failed", error_code=exc.error_code, error=str(exc))
            return 0

        log.info("indexing.delete.completed", removed=removed)
        return removed

    async def _publish(self, method: str, **fields: Any) -> None:
        """Best-effort event publish; the index write already happened."""
        if not self._publisher:
            return
        try:
            await getattr(self._publisher, method)(**fields)
        except (RagCoreError, OSError) as exc:
            logger.error(
                "indexing.event.publish_failed",
                document_id=fields.get("document_id"),
                publish=method,
                error=str(exc),
            )

    def _to_point(self, document: Document, chunk: DocumentChunk, vector: list[float]) -> IndexedPoint:
        return IndexedPoint(
            collection=self._collection,
            document_id=document.document_id,
            chunk_index=chunk.chunk_index,
            owner_id=document.owner_id,
            text=chunk.text,
            vector=vector,
            metadata={
                **chunk.metadata,
                "token_count": chunk.token_count,
                "overlap_chars": chunk.overlap_chars,
                "start_char": chunk.start_char,
                "end_char": chunk.end_char,
                "embedding_model": self._embedder.model_name,
            },
        )

    def _report(
        self,
        document_id: str,
        chunk_count: int,
        indexed: bool,
        skipped_reason: str | None = None,
        error_code: str | None = None,
    ) -> IndexingReport:
        return IndexingReport(
            document_id=document_id,
            collection=self._collection,
            chunk_count=chunk_count,
            indexed=indexed,
            skipped_reason=skipped_reason,
            error_code=error_code,
        )
