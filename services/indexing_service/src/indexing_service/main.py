from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from indexing_service.api.event_handlers import build_event_handlers
from indexing_service.api.routes import router
from indexing_service.domain.chunker import ChunkingService, build_token_counter
from indexing_service.domain.services import IndexingService
from indexing_service.infrastructure.consumer import RedpandaConsumer
from indexing_service.infrastructure.producer import RedpandaIndexingProducer
from indexing_service.settings import Settings
from shared.embedding.client import AzureOpenAIEmbeddingProvider
from shared.logging.config import configure_logging
from shared.schemas.base import HealthResponse
from shared.vector_index.pgvector_index import PgVectorIndex

settings = Settings()
configure_logging(settings.service_name, settings.log_level)
logger = structlog.get_logger(__name__)

chunker = ChunkingService(
    max_tokens=settings.chunk_max_tokens,
    overlap_tokens=settings.chunk_overlap_tokens,
    preserve_structure=settings.chunk_preserve_structure,
    token_counter=build_token_counter(settings.chunk_tokenizer_encoding),
)


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
    if await index.is_available():
        await index.ensure_schema()
    else:
        logger.warning("service.index_unavailable_at_startup")

    producer = RedpandaIndexingProducer(bootstrap_servers=settings.redpanda_bootstrap_servers)
    await producer.start()

    service = IndexingService(
        chunker=chunker,
        embedder=embedder,
        index=index,
        collection=settings.vector_collection,
        publisher=producer,
    )

    consumer = RedpandaConsumer(
        bootstrap_servers=settings.redpanda_bootstrap_servers,
        handlers=build_event_handlers(service),
        group_id=settings.consumer_group_id,
    )
    await consumer.start()
    consume_task = asyncio.create_task(consumer.consume())

    app.state.indexing_service = service
    app.state.index = index
    app.state.consumer = consumer

    logger.info("service.ready", collection=settings.vector_collection)
    yield

    consume_task.cancel()
    await consumer.stop()
    await producer.stop()
    await embedder.close()
    await index.dispose()
    logger.info("service.stopped")


app = FastAPI(
    title="Indexing Service",
    description="Chunks saved documents, embeds the chunks and writes them to the pgvector index.",
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


app.include_router(router)
