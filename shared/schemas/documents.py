from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MetadataValue = str | int | float | bool | None


class SearchMode(StrEnum):
    VECTOR = "vector"
    HYBRID = "hybrid"
    KEYWORD = "keyword"


class DocumentMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str | None = None
    document_type: str | None = None
    extra: dict[str, MetadataValue] = Field(default_factory=dict)


class IndexedPoint(BaseModel):
    """Persisted unit of the vector index.

    ``(collection, document_id, chunk_index)`` identifies the same logical
    chunk across re-indexing runs, which is what makes upserts idempotent.
    """

    model_config = ConfigDict(frozen=True)

    collection: str
    document_id: str
    chunk_index: int = Field(ge=0)
    owner_id: str
    text: str
    vector: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, int]:
        return (self.document_id, self.chunk_index)


class SearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_index: int
    chunk_text: str
    score: float = Field(ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    match_type: SearchMode = SearchMode.VECTOR

    @property
    def key(self) -> tuple[str, int]:
        return (self.document_id, self.chunk_index)

    @property
    def title(self) -> str | None:
        return self.metadata.get("title")


class Citation(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_index: int = Field(ge=1)
    document_id: str
    chunk_index: int
    matched_span: str
    passage_excerpt: str = Field(max_length=500)
    score: float = Field(ge=0.0, le=1.0)


class Source(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_index: int = Field(ge=1)
    document_id: str
    title: str | None
    document_type: str | None = None
    excerpt: str = Field(max_length=500)
    score: float = Field(ge=0.0, le=1.0)


def sort_by_score(results: list[SearchResult]) -> list[SearchResult]:
    """Descending by score; ``sorted`` is stable so ties keep insertion order."""
    return sorted(results, key=lambda r: r.score, reverse=True)
