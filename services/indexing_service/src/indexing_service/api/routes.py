from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from indexing_service.domain.models import IndexingReport
from indexing_service.domain.services import IndexingService
from shared.logging.config import bind_request_context
from shared.schemas.documents import DocumentMetadata

logger = structlog.get_logger(__name__)
router = APIRouter()


class IndexDocumentRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner_id: str = Field(min_length=1, max_length=255)
    text: str
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)


class DeleteIndexResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    removed: int


def get_indexing_service(request: Request) -> IndexingService:
    return request.app.state.indexing_service


@router.put("/documents/{document_id}/index", response_model=IndexingReport, tags=["indexing"])
async def index_document(
    request: Request,
    document_id: str,
    body: IndexDocumentRequest,
    service: IndexingService = Depends(get_indexing_service),
) -> IndexingReport:
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
    bind_request_context(correlation_id=correlation_id, owner_id=body.owner_id)

    logger.info("indexing.request.received", document_id=document_id, char_count=len(body.text))
    return await service.index_document(
        document_id=document_id,
        owner_id=body.owner_id,
        text=body.text,
        metadata=body.metadata,
    )


@router.delete("/documents/{document_id}/index", response_model=DeleteIndexResponse, tags=["indexing"])
async def delete_document_index(
    request: Request,
    document_id: str,
    service: IndexingService = Depends(get_indexing_service),
) -> DeleteIndexResponse:
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
    bind_request_context(correlation_id=correlation_id)

    removed = await service.delete_document_index(document_id)
    return DeleteIndexResponse(document_id=document_id, removed=removed)
