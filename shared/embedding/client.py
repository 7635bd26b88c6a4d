from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum

import structlog
from openai import AsyncAzureOpenAI, OpenAIError

from shared.exceptions import EmbeddingFailureError

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 10


class EmbeddingIntent(StrEnum):
    DOCUMENT = "document"
    QUERY = "query"


class EmbeddingProvider(ABC):
    """Turns text into fixed-length vectors.

    Document and query embeddings are separate intents: asymmetric models
    bias the vector space by usage, so a query must never be embedded as a
    document or vice versa.
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._batch_size = batch_size

    @property
    @abstractmethod
    def model_name(self) -> str: ...

    @abstractmethod
    async def _embed_request(self, texts: list[str], intent: EmbeddingIntent) -> list[list[float]]:
        """Embed one request worth of texts. Must raise on any failure."""

    async def embed_batch(
        self,
        texts: list[str],
        intent: EmbeddingIntent = EmbeddingIntent.DOCUMENT,
    ) -> list[list[float]]:
        """Embed ``texts`` in order, ``batch_size`` at a time.

        All-or-nothing: if any sub-batch fails, or returns the wrong number of
        vectors, the whole call raises ``EmbeddingFailureError``.
        """
        if not texts:
            return []

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            batch = texts[start : start + self._batch_size]
            try:
                embedded = await self._embed_request(batch, intent)
            except (OpenAIError, OSError, ValueError) as exc:
                logger.warning(
                    "embedding.batch.failed",
                    intent=str(intent),
                    batch_start=start,
                    batch_size=len(batch),
                    error=str(exc),
                )
                raise EmbeddingFailureError(str(exc), batch_size=len(batch)) from exc

            if len(embedded) != len(batch):
                raise EmbeddingFailureError(
                    f"expected {len(batch)} vectors, got {len(embedded)}",
                    batch_size=len(batch),
                )
            vectors.extend(embedded)

        return vectors

    async def embed(self, text: str) -> list[float]:
        results = await self.embed_batch([text], EmbeddingIntent.DOCUMENT)
        return results[0]

    async def embed_query(self, text: str) -> list[float]:
        results = await self.embed_batch([text], EmbeddingIntent.QUERY)
        return results[0]


class AzureOpenAIEmbeddingProvider(EmbeddingProvider):
    def __init__(
        self,
        endpoint: str,
        api_key: str,
        api_version: str,
        deployment: str,
        dimensions: int | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        document_prefix: str = "",
        query_prefix: str = "",
        client: AsyncAzureOpenAI | None = None,
    ) -> None:
        super().__init__(batch_size=batch_size)
        self._client = client or AsyncAzureOpenAI(
            azure_endpoint=endpoint,
            api_key=api_key,
            api_version=api_version,
        )
        self._deployment = deployment
        self._dimensions = dimensions
        self._prefixes = {
            EmbeddingIntent.DOCUMENT: document_prefix,
            EmbeddingIntent.QUERY: query_prefix,
        }

    @property
    def model_name(self) -> str:
        return self._deployment

    async def _embed_request(self, texts: list[str], intent: EmbeddingIntent) -> list[list[float]]:
        prefix = self._prefixes[intent]
        payload = [f"{prefix}{t}" for t in texts] if prefix else texts

        kwargs = {}
        if self._dimensions:
            kwargs["dimensions"] = self._dimensions

        response = await self._client.embeddings.create(
            input=payload,
            model=self._deployment,
            **kwargs,
        )

        # The API may return items out of order; ``index`` is authoritative.
        items = sorted(response.data, key=lambda item: item.index)
        embeddings = [item.embedding for item in items]

        logger.debug(
            "embedding.batch.completed",
            count=len(texts),
            intent=str(intent),
            model=self._deployment,
            total_tokens=response.usage.total_tokens if response.usage else 0,
        )
        return embeddings

    async def close(self) -> None:
        await self._client.close()
