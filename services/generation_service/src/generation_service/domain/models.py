from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from shared.schemas.documents import Citation, SearchMode, SearchResult, Source

SEARCH_DOCUMENTS = "search_documents"


class TurnRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    query: str = ""
    search_mode: SearchMode = SearchMode.HYBRID


class Turn(BaseModel):
    """One entry of the conversation sent to the model.

    ``thinking`` is transient model reasoning. It is never replayed, so it is
    stripped before an assistant turn is stored in the conversation.
    """

    model_config = ConfigDict(frozen=True)

    role: TurnRole
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None
    thinking: str | None = None


class FinalAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["final_answer"] = "final_answer"
    content: str = Field(min_length=1)
    thinking: str | None = None


class ToolRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["tool_request"] = "tool_request"
    tool_calls: list[ToolCall] = Field(min_length=1)
    content: str = ""
    thinking: str | None = None


ModelResponse = Annotated[FinalAnswer | ToolRequest, Field(discriminator="kind")]


class DocumentSearchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: list[SearchResult] = Field(default_factory=list)
    search_type: SearchMode = SearchMode.HYBRID
    index_available: bool = True


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    form_inputs: dict[str, Any] = Field(default_factory=dict)
    system_prompt: str = Field(min_length=1, max_length=32_000)
    owner_id: str = Field(min_length=1, max_length=255)
    document_ids: list[str] | None = Field(default=None, max_length=500)
    user_request: str | None = Field(default=None, max_length=8_000)
    max_searches: int | None = Field(default=None, ge=0, le=10)


class GenerationMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str
    rounds: int
    search_queries: list[str]
    retrieved_document_ids: list[str]
    uncited_document_ids: list[str]
    forced_final_answer: bool
    timed_out: bool
    retrieval_available: bool
    duration_ms: int


class GenerationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    sources: list[Source]
    citations: list[Citation]
    metadata: GenerationMetadata
