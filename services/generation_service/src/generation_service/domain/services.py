from __future__ import annotations

import time
import uuid
from typing import Any

import structlog

from generation_service.domain.citations import CitationProcessor
from generation_service.domain.interfaces import DocumentSearchPort
from generation_service.domain.models import GenerationMetadata, GenerationResult, Turn, TurnRole
from generation_service.domain.prompts import DEFAULT_USER_REQUEST, build_system_prompt
from generation_service.graph.builder import recursion_limit_for
from generation_service.graph.state import OrchestratorState, OrchestratorStep
from shared.exceptions import GenerationFailedError

logger = structlog.get_logger(__name__)


class GenerationService:
    """Runs one retrieval-augmented generation and attaches citations.

    The compiled graph is shared between runs; every run gets its own state.
    """

    def __init__(
        self,
        graph: Any,
        search_port: DocumentSearchPort,
        citation_processor: CitationProcessor,
        max_searches: int = 3,
        run_timeout_s: float = 90.0,
    ) -> None:
        self._graph = graph
        self._search_port = search_port
        self._citations = citation_processor
        self._max_searches = max_searches
        self._run_timeout_s = run_timeout_s

    async def generate_with_retrieval(
        self,
        form_inputs: dict[str, Any],
        system_prompt: str,
        owner_id: str,
        document_ids: list[str] | None = None,
        *,
        user_request: str | None = None,
        max_searches: int | None = None,
        correlation_id: str | None = None,
    ) -> GenerationResult:
        run_id = str(uuid.uuid4())
        started = time.monotonic()
        rounds_allowed = self._max_searches if max_searches is None else max_searches
        correlation_id = correlation_id or run_id
        log = logger.bind(run_id=run_id, correlation_id=correlation_id, owner_id=owner_id)

        retrieval_available = rounds_allowed > 0 and await self._search_port.is_available()
        if rounds_allowed > 0 and not retrieval_available:
            log.warning("generation.retrieval.unavailable")

        turns = [
            Turn(
                role=TurnRole.SYSTEM,
                content=build_system_prompt(
                    system_prompt,
                    form_inputs,
                    tools_enabled=retrieval_available,
                    max_searches=rounds_allowed,
                ),
            ),
            Turn(role=TurnRole.USER, content=user_request or DEFAULT_USER_REQUEST),
        ]
        initial_state: OrchestratorState = {
            "run_id": run_id,
            "correlation_id": correlation_id,
            "owner_id": owner_id,
            "document_ids": list(document_ids) if document_ids is not None else None,
            "turns": turns,
            "pending_tool_calls": [],
            "accumulated_results": [],
            "search_queries": [],
            "retrieval_available": retrieval_available,
            "rounds_completed": 0,
            "max_searches": rounds_allowed,
            "deadline": started + self._run_timeout_s,
            "answer": None,
            "forced_final_answer": False,
            "timed_out": False,
            "current_step": OrchestratorStep.AWAITING_MODEL,
            "error_message": None,
        }

        log.info(
            "generation.run.started",
            max_searches=rounds_allowed,
            retrieval_available=retrieval_available,
            scoped_documents=len(document_ids) if document_ids is not None else None,
        )
        final_state: OrchestratorState = await self._graph.ainvoke(
            initial_state,
            config={"recursion_limit": recursion_limit_for(rounds_allowed)},
        )

        answer = final_state.get("answer")
        if final_state["current_step"] != OrchestratorStep.DONE or not answer:
            reason = final_state.get("error_message") or "NO_ANSWER"
            log.error(
                "generation.run.failed",
                reason=reason,
                final_step=str(final_state["current_step"]),
                rounds=final_state["rounds_completed"],
            )
            raise GenerationFailedError(reason)

        results = final_state["accumulated_results"]
        outcome = self._citations.process(answer, results)
        duration_ms = int((time.monotonic() - started) * 1000)

        log.info(
            "generation.run.completed",
            rounds=final_state["rounds_completed"],
            result_count=len(results),
            citation_count=len(outcome.citations),
            forced_final_answer=final_state["forced_final_answer"],
            timed_out=final_state["timed_out"],
            duration_ms=duration_ms,
        )
        return GenerationResult(
            content=outcome.annotated_answer,
            sources=outcome.sources,
            citations=outcome.citations,
            metadata=GenerationMetadata(
                run_id=run_id,
                rounds=final_state["rounds_completed"],
                search_queries=final_state["search_queries"],
                retrieved_document_ids=list(dict.fromkeys(r.document_id for r in results)),
                uncited_document_ids=outcome.uncited_document_ids,
                forced_final_answer=final_state["forced_final_answer"],
                timed_out=final_state["timed_out"],
                retrieval_available=retrieval_available,
                duration_ms=duration_ms,
            ),
        )
