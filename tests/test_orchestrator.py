from __future__ import annotations

import asyncio
import time

import structlog

from generation_service.domain.models import (
    SEARCH_DOCUMENTS,
    FinalAnswer,
    ToolCall,
    ToolRequest,
    Turn,
    TurnRole,
)
from generation_service.graph.builder import build_graph, recursion_limit_for
from generation_service.graph.state import OrchestratorState, OrchestratorStep
from shared.exceptions import ModelProtocolViolationError
from tests.fakes import FakeSearchPort, ScriptedModelClient, make_result


def tool_request(*queries: str, thinking: str | None = None, name: str = SEARCH_DOCUMENTS) -> ToolRequest:
    return ToolRequest(
        tool_calls=[ToolCall(id=f"call-{query}", name=name, query=query) for query in queries],
        thinking=thinking,
    )


class AlwaysSearchingModel(ScriptedModelClient):
    """Requests another search whenever tools are allowed."""

    def __init__(self) -> None:
        super().__init__([])

    async def complete(self, turns, tools=(), allow_tool_calls=True):
        self.calls.append({"turns": list(turns), "tools": list(tools), "allow_tool_calls": allow_tool_calls})
        if tools and allow_tool_calls:
            return tool_request(f"suche {len(self.calls)}")
        return FinalAnswer(content="Endgültiger Text.")


class SlowSearchPort(FakeSearchPort):
    def __init__(self, delay_s: float) -> None:
        super().__init__()
        self._delay_s = delay_s
        self.active = 0
        self.max_active = 0

    async def search(self, query, **kwargs):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self._delay_s)
            return await super().search(query, **kwargs)
        finally:
            self.active -= 1


def _state(max_searches: int = 3, timeout_s: float = 30.0, retrieval_available: bool = True) -> OrchestratorState:
    return {
        "run_id": "run-1",
        "correlation_id": "corr-1",
        "owner_id": "owner-1",
        "document_ids": None,
        "turns": [
            Turn(role=TurnRole.SYSTEM, content="Du schreibst Pressemitteilungen."),
            Turn(role=TurnRole.USER, content="Schreibe den Text."),
        ],
        "pending_tool_calls": [],
        "accumulated_results": [],
        "search_queries": [],
        "retrieval_available": retrieval_available,
        "rounds_completed": 0,
        "max_searches": max_searches,
        "deadline": time.monotonic() + timeout_s,
        "answer": None,
        "forced_final_answer": False,
        "timed_out": False,
        "current_step": OrchestratorStep.AWAITING_MODEL,
        "error_message": None,
    }


async def _run(settings, model, search, state: OrchestratorState) -> OrchestratorState:
    graph = build_graph(settings=settings, model_client=model, search_port=search)
    return await graph.ainvoke(state, config={"recursion_limit": recursion_limit_for(state["max_searches"])})


async def test_round_cap_then_one_forced_tool_free_call(generation_settings):
    model = AlwaysSearchingModel()
    search = FakeSearchPort()

    final = await _run(generation_settings, model, search, _state(max_searches=3))

    assert final["current_step"] == OrchestratorStep.DONE
    assert final["rounds_completed"] == 3
    assert len(search.calls) == 3
    assert len(model.calls) == 4
    assert [call["allow_tool_calls"] for call in model.calls] == [True, True, True, False]
    assert final["answer"] == "Endgültiger Text."
    assert final["forced_final_answer"] is True


async def test_round_cap_follows_max_searches(generation_settings):
    model = AlwaysSearchingModel()
    search = FakeSearchPort()

    final = await _run(generation_settings, model, search, _state(max_searches=1))

    assert final["rounds_completed"] == 1
    assert len(search.calls) == 1
    assert len(model.calls) == 2


async def test_direct_answer_needs_no_search(generation_settings):
    model = ScriptedModelClient([FinalAnswer(content="Kurzer Text.")])
    search = FakeSearchPort()

    final = await _run(generation_settings, model, search, _state())

    assert final["current_step"] == OrchestratorStep.DONE
    assert final["answer"] == "Kurzer Text."
    assert final["forced_final_answer"] is False
    assert search.calls == []
    assert model.calls[0]["tools"][0]["function"]["name"] == SEARCH_DOCUMENTS


async def test_calls_of_one_round_run_concurrently(generation_settings):
    model = ScriptedModelClient([tool_request("radwege", "solar", "busse"), FinalAnswer(content="Text.")])
    search = SlowSearchPort(delay_s=0.05)

    final = await _run(generation_settings, model, search, _state())

    assert final["current_step"] == OrchestratorStep.DONE
    assert search.max_active == 3
    assert final["rounds_completed"] == 1


async def test_one_tool_turn_per_call_in_call_order(generation_settings):
    model = ScriptedModelClient([tool_request("radwege", "solar"), FinalAnswer(content="Text.")])
    search = FakeSearchPort()

    final = await _run(generation_settings, model, search, _state())

    tool_turns = [t for t in final["turns"] if t.role == TurnRole.TOOL]
    assert [t.tool_call_id for t in tool_turns] == ["call-radwege", "call-solar"]


async def test_results_accumulate_without_duplicates(generation_settings):
    shared = make_result("verkehr", 0, "Radwege entlang der Hauptstraßen.")
    by_query = {
        "radwege": [shared, make_result("verkehr", 1, "Fahrradstraßen.")],
        "rad": [shared],
        "solar": [make_result("klima", 0, "Solaranlagen."), shared],
    }
    model = ScriptedModelClient(
        [tool_request("radwege", "rad"), tool_request("solar"), FinalAnswer(content="Text.")]
    )
    search = FakeSearchPort(results_for=lambda q: by_query[q])

    final = await _run(generation_settings, model, search, _state())

    keys = [r.key for r in final["accumulated_results"]]
    assert keys == [("verkehr", 0), ("verkehr", 1), ("klima", 0)]
    assert final["search_queries"] == ["radwege", "rad", "solar"]


async def test_transport_error_counts_as_a_round_with_empty_results(generation_settings):
    model = ScriptedModelClient([tool_request("kaputt"), FinalAnswer(content="Text ohne Belege.")])
    search = FakeSearchPort(failing_queries=["kaputt"])

    final = await _run(generation_settings, model, search, _state())

    assert final["current_step"] == OrchestratorStep.DONE
    assert final["rounds_completed"] == 1
    assert final["accumulated_results"] == []
    tool_turn = next(t for t in final["turns"] if t.role == TurnRole.TOOL)
    assert "Search failed" in tool_turn.content


async def test_thinking_is_stripped_before_the_turn_is_stored(generation_settings):
    model = ScriptedModelClient(
        [tool_request("radwege", thinking="Ich sollte nach Radwegen suchen."), FinalAnswer(content="Text.")]
    )
    search = FakeSearchPort()

    final = await _run(generation_settings, model, search, _state())

    assert all(turn.thinking is None for turn in final["turns"])
    assert all(turn.thinking is None for turn in model.calls[1]["turns"])


async def test_protocol_violation_aborts_the_run(generation_settings):
    model = ScriptedModelClient([ModelProtocolViolationError("empty response")])
    search = FakeSearchPort()

    final = await _run(generation_settings, model, search, _state())

    assert final["current_step"] == OrchestratorStep.ABORTED
    assert final["error_message"] == "MODEL_PROTOCOL_VIOLATION"
    assert final["answer"] is None


async def test_forced_call_without_text_aborts(generation_settings):
    model = ScriptedModelClient([tool_request("radwege"), tool_request("noch mehr")])
    search = FakeSearchPort()

    final = await _run(generation_settings, model, search, _state(max_searches=1))

    assert final["current_step"] == OrchestratorStep.ABORTED
    assert final["error_message"] == "MODEL_PROTOCOL_VIOLATION"


async def test_expired_deadline_forces_the_final_answer(generation_settings):
    model = ScriptedModelClient([FinalAnswer(content="Schneller Text.")])
    search = FakeSearchPort()

    final = await _run(generation_settings, model, search, _state(timeout_s=-1.0))

    assert final["current_step"] == OrchestratorStep.DONE
    assert final["timed_out"] is True
    assert final["forced_final_answer"] is True
    assert model.calls[0]["allow_tool_calls"] is False
    assert search.calls == []


async def test_slow_search_times_out_into_forced_answer(generation_settings):
    model = ScriptedModelClient([tool_request("langsam"), FinalAnswer(content="Text.")])
    search = SlowSearchPort(delay_s=5.0)

    final = await _run(generation_settings, model, search, _state(timeout_s=0.1))

    assert final["current_step"] == OrchestratorStep.DONE
    assert final["timed_out"] is True
    assert final["rounds_completed"] == 1
    assert model.calls[-1]["allow_tool_calls"] is False
    tool_turn = next(t for t in final["turns"] if t.role == TurnRole.TOOL)
    assert "timed out" in tool_turn.content


async def test_unknown_tool_is_answered_without_searching(generation_settings):
    model = ScriptedModelClient([tool_request("x", name="web_search"), FinalAnswer(content="Text.")])
    search = FakeSearchPort()

    final = await _run(generation_settings, model, search, _state())

    assert search.calls == []
    tool_turn = next(t for t in final["turns"] if t.role == TurnRole.TOOL)
    assert "Unknown tool" in tool_turn.content


async def test_no_tools_are_offered_without_retrieval(generation_settings):
    model = ScriptedModelClient([FinalAnswer(content="Text.")])
    search = FakeSearchPort()

    await _run(generation_settings, model, search, _state(retrieval_available=False))

    assert model.calls[0]["tools"] == []


async def test_round_logs_carry_the_correlation_id(generation_settings):
    model = ScriptedModelClient([tool_request("radwege"), FinalAnswer(content="Text.")])
    search = FakeSearchPort()

    with structlog.testing.capture_logs() as logs:
        await _run(generation_settings, model, search, _state())

    round_logs = [entry for entry in logs if entry["event"] == "orchestrator.round.completed"]
    assert round_logs[0]["correlation_id"] == "corr-1"
    assert round_logs[0]["run_id"] == "run-1"
