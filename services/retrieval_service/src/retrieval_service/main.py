from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request

from retrieval_service.domain.models import RetrievalRequest, RetrievalResponse
from retrieval_service.domain.services import RetrievalService
from retrieval_service.settings import Settings
from shared.embedding.client import AzureOpenAIEmbeddingProvider
from shared.exceptions import RetrievalTransportError
from shared.logging.config import bind_request_context, configure_logging
from shared.schemas.base import HealthResponse
from shared.vector_index.pgvector_index import PgVectorIndex

settings = Settings()
configure_logging(settings.service_name, settings.log_level)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("service.starting", version=settings.app_version)

    embedder = AzureOpenAIEmbeddingProvider(
        endpoint=settings.azure_openai_endpoint,
        api_key=settings.azure_openai_api_key.get_secret_value(),
        api_version=settings.azure_openai_api_version,
        deployment=settings.azure_openai_embedding_deployment,
        dimensions=settings.azure_openai_embedding_dimensions,
        batch_size=settings.embedding_batch_size,
        document_prefix=settings.embedding_document_prefix,
        query_prefix=settings.embedding_query_prefix,
    )
    index = PgVectorIndex(
        database_url=settings.database_url.get_secret_value(),
        dimensions=settings.azure_openai_embedding_dimensions,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        probe_timeout_s=settings.index_probe_timeout_s,
    )

    app.state.index = index
    app.state.retrieval_service = RetrievalService(
        embedder=embedder,
        index=index,
        collection=settings.vector_collection,
        default_limit=settings.retrieval_limit,
        score_threshold=settings.retrieval_score_threshold,
        keyword_score_threshold=settings.keyword_score_threshold,
        hybrid_sparse_ratio=settings.hybrid_sparse_ratio,
    )

    logger.info("service.ready", collection=settings.vector_collection)
    yield

    await embedder.close()
    await index.dispose()
    logger.info("service.stopped")


app = FastAPI(
    title="Retrieval Service",
    description="Vector, keyword and hybrid search over the owner's indexed documents.",
    version=settings.app_version,
    lifespan=lifespan,
)


@app.get("/health", response_model=HealthResponse, tags=["ops"])
async def health() -> HealthResponse:
    index: PgVectorIndex = app.state.index
    return HealthResponse(
        status="ok",
        service=settings.service_name,
        version=settings.app_version,
        index_available=await index.is_available(),
    )


@app.post("/search", response_model=RetrievalResponse, tags=["retrieval"])
async def search(request: Request, body: RetrievalRequest) -> RetrievalResponse:
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
    bind_request_context(correlation_id=correlation_id, owner_id=body.owner_id)

    log = logger.bind(correlation_id=correlation_id, owner_id=body.owner_id)
    log.info("retrieval.request.received", query_length=len(body.query), mode=str(body.mode))

    service: RetrievalService = request.app.state.retrieval_service
    try:
        result = await service.search(
            body.query,
            owner_id=body.owner_id,
            document_ids=body.document_ids,
            limit=body.limit,
            mode=body.mode,
        )
    except RetrievalTransportError as exc:
        raise HTTPException(status_code=503, detail=exc.error_code) from exc

    log.info(
        "retrieval.request.completed",
        index_available=result.index_available,
        result_count=len(result.results),
    )
    return result
