from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from generation_service.api.routes import router
from generation_service.domain.citations import CitationProcessor
from generation_service.domain.services import GenerationService
from generation_service.graph.builder import build_graph
from generation_service.infrastructure.model_client import AzureOpenAIModelClient
from generation_service.infrastructure.retrieval_client import HttpRetrievalClient
from generation_service.settings import Settings
from shared.logging.config import configure_logging
from shared.schemas.base import HealthResponse

settings = Settings()
configure_logging(settings.service_name, settings.log_level)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("service.starting", version=settings.app_version)

    model_client = AzureOpenAIModelClient(
        endpoint=settings.azure_openai_endpoint,
        api_key=settings.azure_openai_api_key.get_secret_value(),
        api_version=settings.azure_openai_api_version,
        deployment=settings.azure_openai_chat_deployment,
        max_tokens=settings.model_max_tokens,
        temperature=settings.model_temperature,
    )
    retrieval_client = HttpRetrievalClient(
        base_url=settings.retrieval_service_url,
        timeout_s=settings.retrieval_timeout_s,
    )
    graph = build_graph(settings=settings, model_client=model_client, search_port=retrieval_client)

    app.state.generation_service = GenerationService(
        graph=graph,
        search_port=retrieval_client,
        citation_processor=CitationProcessor(
            min_overlap_ratio=settings.citation_min_overlap,
            min_shared_words=settings.citation_min_shared_words,
        ),
        max_searches=settings.max_searches,
        run_timeout_s=settings.run_timeout_s,
    )

    logger.info("service.ready", graph_nodes=list(graph.nodes.keys()))
    yield

    await retrieval_client.close()
    await model_client.close()
    logger.info("service.stopped")


app = FastAPI(
    title="Generation Service",
    description="LangGraph orchestrator that lets the model search the owner's documents and cites the evidence.",
    version=settings.app_version,
    lifespan=lifespan,
)


@app.get("/health", response_model=HealthResponse, tags=["ops"])
async def health() -> HealthResponse:
    return HealthResponse(
        status="ok",
        service=settings.service_name,
        version=settings.app_version,
    )


app.include_router(router)
