from __future__ import annotations

import json

import httpx
import pytest
import structlog

from generation_service.infrastructure.retrieval_client import HttpRetrievalClient
from shared.exceptions import RetrievalTransportError
from shared.schemas.documents import SearchMode

BASE_URL = "http://retrieval_service:8000"


def _client(handler) -> HttpRetrievalClient:
    transport = httpx.MockTransport(handler)
    return HttpRetrievalClient(BASE_URL, client=httpx.AsyncClient(base_url=BASE_URL, transport=transport))


async def test_search_posts_the_request_and_parses_results():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "query": "Radwege",
                "search_type": "keyword",
                "index_available": True,
                "results": [
                    {
                        "document_id": "verkehr",
                        "chunk_index": 0,
                        "chunk_text": "Radwege entlang der Hauptstraßen.",
                        "score": 0.6,
                        "metadata": {"title": "Mobilität"},
                        "match_type": "keyword",
                    }
                ],
            },
        )

    structlog.contextvars.bind_contextvars(correlation_id="corr-7")
    try:
        response = await _client(handler).search(
            "Radwege", owner_id="owner-1", document_ids=["verkehr"], limit=3, mode=SearchMode.KEYWORD
        )
    finally:
        structlog.contextvars.unbind_contextvars("correlation_id")

    assert response.results[0].document_id == "verkehr"
    assert response.search_type == SearchMode.KEYWORD
    assert seen[0].url.path == "/search"
    assert seen[0].headers["X-Correlation-ID"] == "corr-7"
    assert json.loads(seen[0].content) == {
        "query": "Radwege",
        "owner_id": "owner-1",
        "document_ids": ["verkehr"],
        "limit": 3,
        "mode": "keyword",
    }


async def test_server_error_is_a_transport_error():
    client = _client(lambda request: httpx.Response(503, json={"detail": "RETRIEVAL_TRANSPORT"}))

    with pytest.raises(RetrievalTransportError, match="status 503"):
        await client.search("Radwege", owner_id="owner-1")


async def test_connection_failure_is_a_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RetrievalTransportError):
        await _client(handler).search("Radwege", owner_id="owner-1")


async def test_malformed_body_is_a_transport_error():
    client = _client(lambda request: httpx.Response(200, json={"results": [{"document_id": "x"}]}))

    with pytest.raises(RetrievalTransportError, match="malformed"):
        await client.search("Radwege", owner_id="owner-1")


async def test_is_available_reads_index_flag_from_health():
    healthy = _client(lambda request: httpx.Response(200, json={"status": "ok", "index_available": True}))
    degraded = _client(lambda request: httpx.Response(200, json={"status": "ok", "index_available": False}))

    assert await healthy.is_available() is True
    assert await degraded.is_available() is False


async def test_is_available_never_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert await _client(handler).is_available() is False
