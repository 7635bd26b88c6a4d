from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI

from indexing_service.api.routes import router
from indexing_service.domain.services import IndexingService
from tests.fakes import COLLECTION


@pytest.fixture
def app(chunker, embedder, index, publisher) -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    app.state.indexing_service = IndexingService(
        chunker=chunker,
        embedder=embedder,
        index=index,
        collection=COLLECTION,
        publisher=publisher,
    )
    return app


async def test_put_then_delete_document_index(app, index):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        put = await client.put(
            "/documents/doc-1/index",
            json={"owner_id": "owner-1", "text": "Radwege für alle.", "metadata": {"title": "Mobilität"}},
        )
        deleted = await client.delete("/documents/doc-1/index")

    assert put.status_code == 200
    assert put.json()["indexed"] is True
    assert put.json()["chunk_count"] == 1
    assert deleted.json() == {"document_id": "doc-1", "removed": 1}
    assert index.document_points(COLLECTION, "doc-1") == []


async def test_put_reports_unavailable_index_without_failing(app, index):
    index.available = False

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.put("/documents/doc-1/index", json={"owner_id": "owner-1", "text": "Text."})

    assert response.status_code == 200
    assert response.json()["indexed"] is False
    assert response.json()["skipped_reason"] == "INDEX_UNAVAILABLE"
