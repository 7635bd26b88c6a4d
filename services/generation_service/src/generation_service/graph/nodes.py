from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

import structlog

from generation_service.domain.interfaces import DocumentSearchPort, ModelClient
from generation_service.domain.models import SEARCH_DOCUMENTS, FinalAnswer, ToolCall, Turn, TurnRole
from generation_service.domain.prompts import (
    FORCE_FINAL_INSTRUCTION,
    SEARCH_DOCUMENTS_TOOL,
    format_search_failure,
    format_search_results,
    format_unknown_tool,
)
from generation_service.graph.state import OrchestratorState, OrchestratorStep
from generation_service.settings import Settings
from shared.exceptions import RagCoreError, RetrievalTransportError
from shared.schemas.documents import SearchResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ToolOutcome:
    call: ToolCall
    content: str
    results: list[SearchResult] = field(default_factory=list)


def _run_logger(state: OrchestratorState):
    return logger.bind(run_id=state["run_id"], correlation_id=state["correlation_id"])


def _tools_for(state: OrchestratorState) -> list[dict]:
    if state["retrieval_available"] and state["max_searches"] > 0:
        return [SEARCH_DOCUMENTS_TOOL]
    return []


async def node_call_model(state: OrchestratorState, model_client: ModelClient) -> OrchestratorState:
    log = _run_logger(state)

    remaining = state["deadline"] - time.monotonic()
    if remaining <= 0:
        log.warning("orchestrator.deadline.exceeded", rounds_completed=state["rounds_completed"])
        return {**state, "timed_out": True, "current_step": OrchestratorStep.FORCING_FINAL_ANSWER}

    try:
        async with asyncio.timeout(remaining):
            response = await model_client.complete(state["turns"], tools=_tools_for(state))
    except TimeoutError:
        log.warning("orchestrator.model.timeout", rounds_completed=state["rounds_completed"])
        return {**state, "timed_out": True, "current_step": OrchestratorStep.FORCING_FINAL_ANSWER}
    except RagCoreError as exc:
        log.error("orchestrator.model.failed", error_code=exc.error_code, error=str(exc))
        return {**state, "current_step": OrchestratorStep.ABORTED, "error_message": exc.error_code}

    if isinstance(response, FinalAnswer):
        log.info(
            "orchestrator.answer.received",
            answer_length=len(response.content),
            rounds_completed=state["rounds_completed"],
        )
        turn = Turn(role=TurnRole.ASSISTANT, content=response.content)
        return {
            **state,
            "turns": [*state["turns"], turn],
            "answer": response.content,
            "current_step": OrchestratorStep.DONE,
        }

    # Thinking is dropped here, the stored turn carries only content and tool calls.
    turn = Turn(role=TurnRole.ASSISTANT, content=response.content, tool_calls=response.tool_calls)
    log.info(
        "orchestrator.tools.requested",
        round=state["rounds_completed"] + 1,
        call_count=len(response.tool_calls),
        had_thinking=response.thinking is not None,
    )
    return {
        **state,
        "turns": [*state["turns"], turn],
        "pending_tool_calls": list(response.tool_calls),
        "current_step": OrchestratorStep.EXECUTING_TOOLS,
    }


async def _run_tool_call(
    call: ToolCall,
    state: OrchestratorState,
    search_port: DocumentSearchPort,
    settings: Settings,
) -> ToolOutcome:
    if call.name != SEARCH_DOCUMENTS:
        return ToolOutcome(call=call, content=format_unknown_tool(call.name))
    if not call.query.strip():
        return ToolOutcome(call=call, content=format_search_failure("empty query"))

    try:
        response = await search_port.search(
            call.query,
            owner_id=state["owner_id"],
            document_ids=state["document_ids"],
            limit=settings.retrieval_limit,
            mode=call.search_mode,
        )
    except RetrievalTransportError as exc:
        _run_logger(state).warning(
            "orchestrator.search.failed",
            error_code=exc.error_code,
            error=str(exc),
        )
        return ToolOutcome(call=call, content=format_search_failure(exc.error_code))

    return ToolOutcome(
        call=call,
        content=format_search_results(response),
        results=list(response.results),
    )


def merge_results(existing: list[SearchResult], new: list[SearchResult]) -> list[SearchResult]:
    """Append results not yet seen, keyed on ``(document_id, chunk_index)``."""
    seen = {result.key for result in existing}
    merged = list(existing)
    for result in new:
        if result.key not in seen:
            seen.add(result.key)
            merged.append(result)
    return merged


async def node_execute_tools(
    state: OrchestratorState,
    search_port: DocumentSearchPort,
    settings: Settings,
) -> OrchestratorState:
    log = _run_logger(state)
    calls = state["pending_tool_calls"]
    round_number = state["rounds_completed"] + 1

    timed_out = False
    remaining = max(state["deadline"] - time.monotonic(), 0.0)
    try:
        async with asyncio.timeout(remaining):
            outcomes = await asyncio.gather(
                *(_run_tool_call(call, state, search_port, settings) for call in calls)
            )
    except TimeoutError:
        timed_out = True
        log.warning("orchestrator.tools.timeout", round=round_number, call_count=len(calls))
        outcomes = [ToolOutcome(call=call, content=format_search_failure("timed out")) for call in calls]

    turns = list(state["turns"])
    accumulated = state["accumulated_results"]
    for outcome in outcomes:
        turns.append(Turn(role=TurnRole.TOOL, content=outcome.content, tool_call_id=outcome.call.id))
        accumulated = merge_results(accumulated, outcome.results)

    rounds_completed = round_number
    timed_out = timed_out or time.monotonic() >= state["deadline"]
    if timed_out or rounds_completed >= state["max_searches"]:
        next_step = OrchestratorStep.FORCING_FINAL_ANSWER
    else:
        next_step = OrchestratorStep.AWAITING_MODEL

    log.info(
        "orchestrator.round.completed",
        round=rounds_completed,
        call_count=len(calls),
        new_result_count=len(accumulated) - len(state["accumulated_results"]),
        accumulated_count=len(accumulated),
        next_step=str(next_step),
    )
    return {
        **state,
        "turns": turns,
        "pending_tool_calls": [],
        "accumulated_results": accumulated,
        "search_queries": [*state["search_queries"], *(c.query for c in calls if c.name == SEARCH_DOCUMENTS)],
        "rounds_completed": rounds_completed,
        "timed_out": state["timed_out"] or timed_out,
        "current_step": next_step,
    }


async def node_force_final_answer(
    state: OrchestratorState,
    model_client: ModelClient,
    settings: Settings,
) -> OrchestratorState:
    log = _run_logger(state)

    turns = list(state["turns"])
    if state["rounds_completed"] > 0 or state["timed_out"]:
        turns.append(Turn(role=TurnRole.USER, content=FORCE_FINAL_INSTRUCTION))
    # The tool stays declared so earlier tool turns remain valid, but calls are refused.
    tools = [SEARCH_DOCUMENTS_TOOL] if any(turn.tool_calls for turn in turns) else []

    try:
        async with asyncio.timeout(settings.final_answer_timeout_s):
            response = await model_client.complete(turns, tools=tools, allow_tool_calls=False)
    except TimeoutError:
        log.error("orchestrator.final_answer.timeout", timeout_s=settings.final_answer_timeout_s)
        return {**state, "current_step": OrchestratorStep.ABORTED, "error_message": "FINAL_ANSWER_TIMEOUT"}
    except RagCoreError as exc:
        log.error("orchestrator.final_answer.failed", error_code=exc.error_code, error=str(exc))
        return {**state, "current_step": OrchestratorStep.ABORTED, "error_message": exc.error_code}

    if not isinstance(response, FinalAnswer):
        log.error("orchestrator.final_answer.missing", kind=response.kind)
        return {
            **state,
            "current_step": OrchestratorStep.ABORTED,
            "error_message": "MODEL_PROTOCOL_VIOLATION",
        }

    log.info(
        "orchestrator.final_answer.forced",
        answer_length=len(response.content),
        rounds_completed=state["rounds_completed"],
        timed_out=state["timed_out"],
    )
    return {
        **state,
        "turns": [*turns, Turn(role=TurnRole.ASSISTANT, content=response.content)],
        "answer": response.content,
        "forced_final_answer": True,
        "current_step": OrchestratorStep.DONE,
    }
