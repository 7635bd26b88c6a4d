from __future__ import annotations

from functools import partial

from langgraph.graph import END, START, StateGraph

from generation_service.domain.interfaces import DocumentSearchPort, ModelClient
from generation_service.graph.nodes import (
    node_call_model,
    node_execute_tools,
    node_force_final_answer,
)
from generation_service.graph.state import OrchestratorState, OrchestratorStep
from generation_service.settings import Settings


def route_after_model(state: OrchestratorState) -> str:
    step = state["current_step"]
    if step in (OrchestratorStep.DONE, OrchestratorStep.ABORTED):
        return END
    return step


def route_after_tools(state: OrchestratorState) -> str:
    if state["current_step"] == OrchestratorStep.FORCING_FINAL_ANSWER:
        return OrchestratorStep.FORCING_FINAL_ANSWER
    return OrchestratorStep.AWAITING_MODEL


def recursion_limit_for(max_searches: int) -> int:
    """Each round visits two nodes; the forced answer and slack add a few more."""
    return 2 * max_searches + 5


def build_graph(settings: Settings, model_client: ModelClient, search_port: DocumentSearchPort):
    graph = StateGraph(OrchestratorState)

    graph.add_node(
        OrchestratorStep.AWAITING_MODEL,
        partial(node_call_model, model_client=model_client),
    )
    graph.add_node(
        OrchestratorStep.EXECUTING_TOOLS,
        partial(node_execute_tools, search_port=search_port, settings=settings),
    )
    graph.add_node(
        OrchestratorStep.FORCING_FINAL_ANSWER,
        partial(node_force_final_answer, model_client=model_client, settings=settings),
    )

    graph.add_edge(START, OrchestratorStep.AWAITING_MODEL)
    graph.add_conditional_edges(
        OrchestratorStep.AWAITING_MODEL,
        route_after_model,
        [OrchestratorStep.EXECUTING_TOOLS, OrchestratorStep.FORCING_FINAL_ANSWER, END],
    )
    graph.add_conditional_edges(
        OrchestratorStep.EXECUTING_TOOLS,
        route_after_tools,
        [OrchestratorStep.AWAITING_MODEL, OrchestratorStep.FORCING_FINAL_ANSWER],
    )
    graph.add_edge(OrchestratorStep.FORCING_FINAL_ANSWER, END)

    return graph.compile()
