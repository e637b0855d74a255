"""LangGraph flow for the learner's "I'm done" request.

The flow sends one verification request to the tutor channel and classifies
the reply: guided steps look for the literal pass marker, ordinary tasks look
for a completion phrase. Gate handling and transcript updates stay with the
caller, so the flow itself holds no session state.
"""

import logging
from typing import Literal, Optional, TypedDict

from langgraph.graph import StateGraph

from mindtrail.heuristics import has_pass_marker, is_task_completion_message
from mindtrail.models import ChatMessage
from mindtrail.tutor_channel import TutorChannel

logger = logging.getLogger("mindtrail.tutor_flow")


# ============================================================================
# Flow State Definition
# ============================================================================


class DoneFlowState(TypedDict):
    """State passed between nodes of the done flow."""

    mode: Literal["guided_step", "task_completion"]
    transcript: list[ChatMessage]
    utterance: str
    system_instruction: str
    language: str
    reply: Optional[str]
    approved: bool


def initial_state(
    mode: Literal["guided_step", "task_completion"],
    transcript: list[ChatMessage],
    utterance: str,
    system_instruction: str,
    language: str,
) -> DoneFlowState:
    return {
        "mode": mode,
        "transcript": list(transcript),
        "utterance": utterance,
        "system_instruction": system_instruction,
        "language": language,
        "reply": None,
        "approved": False,
    }


# ============================================================================
# Routing
# ============================================================================


def route_from_ask(state: DoneFlowState) -> str:
    """Guided steps are verified by marker, tasks by completion phrase."""
    if state["mode"] == "guided_step":
        return "verify_step"
    return "check_completion"


# ============================================================================
# LangGraph State Machine Setup
# ============================================================================


def create_done_graph(channel: TutorChannel):
    """Create the done flow bound to a tutor channel.

    Channel errors propagate out of `ainvoke` unchanged.

    Returns:
        Compiled StateGraph ready for execution
    """

    async def ask_tutor(state: DoneFlowState) -> DoneFlowState:
        logger.info("→ ENTERING STATE: ask_tutor (%s)", state["mode"])
        state["reply"] = await channel.send_message(
            state["transcript"],
            state["utterance"],
            state["system_instruction"],
            state["language"],
        )
        return state

    async def verify_step(state: DoneFlowState) -> DoneFlowState:
        state["approved"] = has_pass_marker(state["reply"] or "")
        logger.info("← Step verification: %s", "approved" if state["approved"] else "not yet")
        return state

    async def check_completion(state: DoneFlowState) -> DoneFlowState:
        state["approved"] = is_task_completion_message(state["reply"] or "")
        logger.info("← Task completion check: %s", "complete" if state["approved"] else "not yet")
        return state

    graph = StateGraph(DoneFlowState)

    graph.add_node("ask_tutor", ask_tutor)
    graph.add_node("verify_step", verify_step)
    graph.add_node("check_completion", check_completion)

    graph.set_entry_point("ask_tutor")

    graph.add_conditional_edges(
        "ask_tutor",
        route_from_ask,
        {
            "verify_step": "verify_step",
            "check_completion": "check_completion",
        },
    )
    graph.add_edge("verify_step", "__end__")
    graph.add_edge("check_completion", "__end__")

    return graph.compile()
