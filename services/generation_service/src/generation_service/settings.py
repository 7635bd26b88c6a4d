from __future__ import annotations

from pydantic import Field
from shared.config.base import BaseServiceSettings


class Settings(BaseServiceSettings):
    service_name: str = "generation_service"

    retrieval_service_url: str = Field(default="http://retrieval_service:8000")
    retrieval_timeout_s: float = Field(default=15.0, gt=0.0)
    retrieval_limit: int = Field(default=5, ge=1, le=50)

    max_searches: int = Field(default=3, ge=0, le=10)
    run_timeout_s: float = Field(default=90.0, gt=0.0)
    # The forced final call has its own timeout; the run deadline may already be spent.
    final_answer_timeout_s: float = Field(default=45.0, gt=0.0)

    model_max_tokens: int = Field(default=4000, ge=1)
    model_temperature: float = Field(default=0.3, ge=0.0, le=2.0)

    citation_min_overlap: float = Field(default=0.5, gt=0.0, le=1.0)
    citation_min_shared_words: int = Field(default=3, ge=1)
