from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from generation_service.domain.models import GenerationRequest, GenerationResult
from generation_service.domain.services import GenerationService
from shared.exceptions import GenerationFailedError
from shared.logging.config import bind_request_context
from shared.schemas.base import ErrorResponse

logger = structlog.get_logger(__name__)
router = APIRouter()


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service


@router.post(
    "/generate",
    response_model=GenerationResult,
    responses={502: {"model": ErrorResponse}},
    tags=["generation"],
)
async def generate(
    request: Request,
    body: GenerationRequest,
    service: GenerationService = Depends(get_generation_service),
) -> GenerationResult | JSONResponse:
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
    bind_request_context(correlation_id=correlation_id, owner_id=body.owner_id)

    log = logger.bind(correlation_id=correlation_id)
    log.info(
        "generation.request.received",
        form_field_count=len(body.form_inputs),
        scoped_documents=len(body.document_ids) if body.document_ids is not None else None,
    )

    try:
        result = await service.generate_with_retrieval(
            form_inputs=body.form_inputs,
            system_prompt=body.system_prompt,
            owner_id=body.owner_id,
            document_ids=body.document_ids,
            user_request=body.user_request,
            max_searches=body.max_searches,
            correlation_id=correlation_id,
        )
    except GenerationFailedError as exc:
        log.error("generation.request.failed", reason=exc.reason)
        error = ErrorResponse(error_code=exc.error_code, message=str(exc), correlation_id=correlation_id)
        return JSONResponse(status_code=502, content=error.model_dump())

    log.info(
        "generation.request.completed",
        citation_count=len(result.citations),
        source_count=len(result.sources),
    )
    return result
