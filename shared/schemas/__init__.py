from shared.schemas.base import HealthResponse, ErrorResponse
from shared.schemas.documents import (
    Citation,
    DocumentMetadata,
    IndexedPoint,
    SearchMode,
    SearchResult,
    Source,
    sort_by_score,
)

__all__ = [
    "HealthResponse",
    "ErrorResponse",
    "Citation",
    "DocumentMetadata",
    "IndexedPoint",
    "SearchMode",
    "SearchResult",
    "Source",
    "sort_by_score",
]
