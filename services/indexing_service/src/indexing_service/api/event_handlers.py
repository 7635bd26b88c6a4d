from __future__ import annotations

from typing import Any

import structlog

from indexing_service.domain.services import IndexingService
from indexing_service.infrastructure.consumer import MessageHandler
from shared.events.document_events import DocumentDeletedEvent, DocumentSavedEvent
from shared.logging.config import bind_request_context, clear_request_context

logger = structlog.get_logger(__name__)


def build_event_handlers(service: IndexingService) -> dict[str, MessageHandler]:
    """Topic -> handler map for the indexing consumer."""

    async def handle_document_saved(payload: dict[str, Any]) -> None:
        event = DocumentSavedEvent.model_validate(payload)
        bind_request_context(correlation_id=str(event.correlation_id), owner_id=event.owner_id)
        try:
            report = await service.index_document(
                document_id=event.document_id,
                owner_id=event.owner_id,
                text=event.text,
                metadata=event.metadata,
            )
            logger.info(
                "indexing.event.handled",
                event_id=str(event.event_id),
                indexed=report.indexed,
                chunk_count=report.chunk_count,
            )
        finally:
            clear_request_context()

    async def handle_document_deleted(payload: dict[str, Any]) -> None:
        event = DocumentDeletedEvent.model_validate(payload)
        bind_request_context(correlation_id=str(event.correlation_id), owner_id=event.owner_id)
        try:
            removed = await service.delete_document_index(event.document_id)
            logger.info("indexing.event.handled", event_id=str(event.event_id), removed=removed)
        finally:
            clear_request_context()

    return {
        "document.saved": handle_document_saved,
        "document.deleted": handle_document_deleted,
    }
