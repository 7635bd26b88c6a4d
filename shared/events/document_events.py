from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import Field

from shared.events.base import BaseEvent
from shared.schemas.documents import DocumentMetadata


class DocumentSavedEvent(BaseEvent):
    """Emitted by the content backend after a user's document text is persisted.

    Consumed by: indexing_service (consumer group: indexing-service-group)
    Topic: document.saved
    Partition key: document_id

    Indexing runs after the primary save has succeeded, so a failure here
    never rolls back the save itself.

    Example payload:
    {
        "event_id": "550e8400-e29b-41d4-a716-446655440000",
        "event_type": "document.saved",
        "correlation_id": "7c9e6679-7425-40de-944b-e07fc1f90ae7",
        "owner_id": "user_42",
        "schema_version": "1.0",
        "timestamp_utc": "2026-02-27T15:00:00.000Z",
        "document_id": "doc_8f1c",
        "text": "## Klimaschutz\\n\\nWir fordern ...",
        "metadata": {"title": "Wahlprogramm 2026", "document_type": "program", "extra": {}}
    }
    """

    event_type: Literal["document.saved"] = Field(
        default="document.saved",
        description="Discriminator field — always 'document.saved'.",
    )
    document_id: str = Field(min_length=1, description="Caller-assigned opaque document id.")
    text: str = Field(description="Plain text of the document.")
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)

    @property
    def topic(self) -> str:
        return "document.saved"


class DocumentDeletedEvent(BaseEvent):
    """Emitted by the content backend after a document is deleted.

    Consumed by: indexing_service, which removes every point of the document.
    Topic: document.deleted
    Partition key: document_id
    """

    event_type: Literal["document.deleted"] = Field(
        default="document.deleted",
        description="Discriminator field — always 'document.deleted'.",
    )
    document_id: str = Field(min_length=1)

    @property
    def topic(self) -> str:
        return "document.deleted"


class DocumentIndexedEvent(BaseEvent):
    """Emitted by indexing_service after all chunks and embeddings are persisted.

    Consumed by: downstream notification handlers.
    Topic: document.indexed
    Partition key: document_id

    Example payload:
    {
        "event_id": "6ba7b810-9dad-11d1-80b4-00c04fd430c8",
        "event_type": "document.indexed",
        "correlation_id": "7c9e6679-7425-40de-944b-e07fc1f90ae7",
        "owner_id": "user_42",
        "schema_version": "1.0",
        "timestamp_utc": "2026-02-27T15:01:42.000Z",
        "indexed_at": "2026-02-27T15:01:42.000Z",
        "document_id": "doc_8f1c",
        "collection": "documents",
        "chunk_count": 9,
        "embedding_model": "text-embedding-3-small"
    }
    """

    event_type: Literal["document.indexed"] = Field(
        default="document.indexed",
        description="Discriminator field — always 'document.indexed'.",
    )
    indexed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Timestamp when the indexing pipeline completed.",
    )
    document_id: str = Field(description="Identifier of the indexed document.")
    collection: str = Field(description="Vector index collection the points were written to.")
    chunk_count: int = Field(ge=0, description="Number of points stored; 0 for empty documents.")
    embedding_model: str = Field(description="Embedding deployment used for the vectors.")

    @property
    def topic(self) -> str:
        return "document.indexed"


class DocumentIndexingFailedEvent(BaseEvent):
    """Emitted by indexing_service when an indexing run fails.

    The prior index of the document is left untouched.

    Consumed by: alerting handlers.
    Topic: document.indexing_failed
    Partition key: document_id

    Example payload:
    {
        "event_id": "6ba7b811-9dad-11d1-80b4-00c04fd430c8",
        "event_type": "document.indexing_failed",
        "correlation_id": "7c9e6679-7425-40de-944b-e07fc1f90ae7",
        "owner_id": "user_42",
        "schema_version": "1.0",
        "timestamp_utc": "2026-02-27T15:01:55.000Z",
        "document_id": "doc_8f1c",
        "error_code": "EMBEDDING_FAILURE",
        "error_message": "Embedding batch of 10 text(s) failed: 503 Service Unavailable"
    }
    """

    event_type: Literal["document.indexing_failed"] = Field(
        default="document.indexing_failed",
        description="Discriminator field — always 'document.indexing_failed'.",
    )
    document_id: str = Field(description="Identifier of the document that failed indexing.")
    error_code: str = Field(description="Machine-readable error code for programmatic handling.")
    error_message: str = Field(description="Human-readable description of the failure cause.")

    @property
    def topic(self) -> str:
        return "document.indexing_failed"
