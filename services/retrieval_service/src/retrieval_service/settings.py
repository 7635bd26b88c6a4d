from __future__ import annotations

from pydantic import Field
from shared.config.base import BaseServiceSettings


class Settings(BaseServiceSettings):
    service_name: str = "retrieval_service"

    retrieval_score_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    # ts_rank_cd scores on a lower scale than cosine similarity, so keyword hits get their own floor.
    keyword_score_threshold: float = Field(default=0.05, ge=0.0, le=1.0)
    retrieval_limit: int = Field(default=5, ge=1, le=50)
    # Hybrid mode adds keyword matches when vector hits < limit * ratio.
    hybrid_sparse_ratio: float = Field(default=0.5, ge=0.0, le=1.0)
