from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from shared.schemas.documents import SearchMode, SearchResult


class RetrievalRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str = Field(min_length=1, max_length=4096)
    owner_id: str = Field(min_length=1, max_length=255)
    document_ids: list[str] | None = Field(default=None, max_length=500)
    limit: int | None = Field(default=None, ge=1, le=50)
    mode: SearchMode = SearchMode.HYBRID


class RetrievalResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    results: list[SearchResult]
    search_type: SearchMode
    index_available: bool = True

    @classmethod
    def empty(cls, query: str, search_type: SearchMode, index_available: bool = True) -> "RetrievalResponse":
        return cls(
            query=query,
            results=[],
            search_type=search_type,
            index_available=index_available,
        )
