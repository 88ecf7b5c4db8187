"""LangGraph construction for the non-streaming chat pipeline.

moderate → (blocked: END) → load_history → route → execute → persist → END

Each node delegates to a step method of the orchestrator so the streaming
entry point can reuse the same steps outside the graph.
"""

from __future__ import annotations

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from weather_core.flows.state import PipelineState
from weather_core.infrastructure.logging.logger import logger
from weather_core.moderation.gate import tone_instructions


def moderation_router(state: PipelineState) -> str:
    if state["verdict"].blocked:
        return "blocked"
    return "allowed"


def build_graph(orchestrator) -> CompiledStateGraph:
    """Wire the orchestrator's steps into a compiled StateGraph."""

    async def moderate_node(state: PipelineState) -> PipelineState:
        verdict = await orchestrator.moderate(state["user_message"])
        update: PipelineState = {"verdict": verdict, "instructions": tone_instructions(verdict.tone)}
        if verdict.blocked:
            update["response"] = orchestrator.moderated_response(verdict)
        return update

    async def load_history_node(state: PipelineState) -> PipelineState:
        messages, last_model = await orchestrator.load_history(state["session_id"], state["user_message"])
        return {"messages": messages, "last_model": last_model}

    async def route_node(state: PipelineState) -> PipelineState:
        decision = await orchestrator.route(state["user_message"], state["messages"], state.get("last_model"))
        return {"decision": decision}

    async def execute_node(state: PipelineState) -> PipelineState:
        response = await orchestrator.coordinator.execute(
            state["messages"],
            state["decision"],
            max_iterations=state.get("max_iterations"),
            instructions=state.get("instructions") or None,
        )
        logger.info(
            "pipeline.executed",
            extra={
                "extra": {
                    "session_id": state["session_id"],
                    "model": response.model_used,
                    "fallback_used": response.fallback_used,
                    "success": response.success,
                }
            },
        )
        return {"response": response}

    async def persist_node(state: PipelineState) -> PipelineState:
        await orchestrator.persist(state["session_id"], state["response"])
        return {"response": state["response"]}

    graph = StateGraph(PipelineState)
    graph.add_node("moderate", moderate_node)
    graph.add_node("load_history", load_history_node)
    graph.add_node("route", route_node)
    graph.add_node("execute", execute_node)
    graph.add_node("persist", persist_node)
    graph.set_entry_point("moderate")
    graph.add_conditional_edges("moderate", moderation_router, {"blocked": END, "allowed": "load_history"})
    graph.add_edge("load_history", "route")
    graph.add_edge("route", "execute")
    graph.add_edge("execute", "persist")
    graph.add_edge("persist", END)
    return graph.compile()
