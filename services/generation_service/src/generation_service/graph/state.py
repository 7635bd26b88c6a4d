from __future__ import annotations

from enum import StrEnum
from typing import TypedDict

from generation_service.domain.models import ToolCall, Turn
from shared.schemas.documents import SearchResult


class OrchestratorStep(StrEnum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    FORCING_FINAL_ANSWER = "forcing_final_answer"
    DONE = "done"
    ABORTED = "aborted"


class OrchestratorState(TypedDict):
    # Identity
    run_id: str
    correlation_id: str
    owner_id: str
    document_ids: list[str] | None

    # Conversation
    turns: list[Turn]
    pending_tool_calls: list[ToolCall]

    # Evidence
    accumulated_results: list[SearchResult]
    search_queries: list[str]
    retrieval_available: bool

    # Limits
    rounds_completed: int
    max_searches: int
    deadline: float

    # Outcome
    answer: str | None
    forced_final_answer: bool
    timed_out: bool

    # Control
    current_step: str
    error_message: str | None
