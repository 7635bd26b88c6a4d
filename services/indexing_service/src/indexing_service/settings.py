from __future__ import annotations

from pydantic import Field, model_validator
from shared.config.base import BaseServiceSettings


class Settings(BaseServiceSettings):
    service_name: str = "indexing_service"

    consumer_group_id: str = Field(default="indexing-service-group")

    chunk_max_tokens: int = Field(default=600, ge=64, le=8192)
    chunk_overlap_tokens: int = Field(default=150, ge=0, le=2048)
    chunk_preserve_structure: bool = Field(default=True)
    # Empty string falls back to the 4-characters-per-token estimate.
    chunk_tokenizer_encoding: str = Field(default="cl100k_base")

    @model_validator(mode="after")
    def overlap_below_chunk_size(self) -> "Settings":
        if self.chunk_overlap_tokens >= self.chunk_max_tokens:
            raise ValueError(
                f"chunk_overlap_tokens ({self.chunk_overlap_tokens}) must be smaller "
                f"than chunk_max_tokens ({self.chunk_max_tokens})"
            )
        return self
