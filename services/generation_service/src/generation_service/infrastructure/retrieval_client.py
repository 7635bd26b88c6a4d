from __future__ import annotations

from collections.abc import Sequence

import httpx
import structlog
from pydantic import ValidationError

from generation_service.domain.interfaces import DocumentSearchPort
from generation_service.domain.models import DocumentSearchResponse
from shared.exceptions import RetrievalTransportError
from shared.schemas.documents import SearchMode

logger = structlog.get_logger(__name__)


class HttpRetrievalClient(DocumentSearchPort):
    """Calls the retrieval service's ``POST /search`` and ``GET /health``."""

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_s)

    async def is_available(self) -> bool:
        try:
            response = await self._client.get("/health")
            response.raise_for_status()
            return response.json().get("index_available") is True
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("retrieval.health.failed", error=str(exc))
            return False

    async def search(
        self,
        query: str,
        *,
        owner_id: str,
        document_ids: Sequence[str] | None = None,
        limit: int | None = None,
        mode: SearchMode = SearchMode.HYBRID,
    ) -> DocumentSearchResponse:
        payload = {
            "query": query,
            "owner_id": owner_id,
            "document_ids": list(document_ids) if document_ids is not None else None,
            "limit": limit,
            "mode": str(mode),
        }
        correlation_id = structlog.contextvars.get_contextvars().get("correlation_id")
        headers = {"X-Correlation-ID": correlation_id} if correlation_id else None

        try:
            response = await self._client.post("/search", json=payload, headers=headers)
            response.raise_for_status()
            return DocumentSearchResponse.model_validate(response.json())
        except httpx.HTTPStatusError as exc:
            raise RetrievalTransportError(f"status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise RetrievalTransportError(f"{type(exc).__name__}: {exc}") from exc
        except (ValidationError, ValueError) as exc:
            raise RetrievalTransportError(f"malformed response: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()
