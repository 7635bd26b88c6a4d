from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shared.schemas.documents import DocumentMetadata


class Document(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str = Field(min_length=1, max_length=255)
    owner_id: str = Field(min_length=1, max_length=255)
    text: str
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)


class DocumentChunk(BaseModel):
    """A bounded slice of a document.

    ``text`` is ``overlap prefix + own region``. The own region is
    ``text[overlap_chars:]`` and equals ``source[start_char:end_char]``;
    concatenating own regions in order reproduces the source exactly.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_index: int = Field(ge=0)
    text: str
    token_count: int = Field(ge=0)
    overlap_chars: int = Field(default=0, ge=0)
    start_char: int = Field(ge=0)
    end_char: int = Field(ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def own_text(self) -> str:
        return self.text[self.overlap_chars :]


class IndexingReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    collection: str
    chunk_count: int
    indexed: bool
    skipped_reason: str | None = None
    error_code: str | None = None
