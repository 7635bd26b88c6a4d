from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from generation_service.domain.models import DocumentSearchResponse, ModelResponse, Turn
from shared.schemas.documents import SearchMode


class ModelClient(ABC):
    """Provider-neutral access to a tool-calling chat model."""

    @abstractmethod
    async def complete(
        self,
        turns: Sequence[Turn],
        tools: Sequence[dict[str, Any]] = (),
        allow_tool_calls: bool = True,
    ) -> ModelResponse:
        """Return a ``FinalAnswer`` or a ``ToolRequest``.

        Raises ``ModelProtocolViolationError`` when the response carries
        neither text nor tool calls, or tool calls while they are disallowed,
        and ``ModelUnavailableError`` on transport failure.
        """


class DocumentSearchPort(ABC):
    @abstractmethod
    async def is_available(self) -> bool:
        """Whether document search can currently return results. Never raises."""

    @abstractmethod
    async def search(
        self,
        query: str,
        *,
        owner_id: str,
        document_ids: Sequence[str] | None = None,
        limit: int | None = None,
        mode: SearchMode = SearchMode.HYBRID,
    ) -> DocumentSearchResponse:
        """Raises ``RetrievalTransportError`` when the search backend cannot be reached."""
