# agents.py
from typing import Any, Optional, TypedDict
import logging

from langgraph.graph import StateGraph, END

import llm_client
from errors import TransportError
from feedback_parser import FeedbackParseResult, parse_feedback

logger = logging.getLogger(__name__)


class TurnState(TypedDict, total=False):
    """
    State for one representative turn flowing through the turn graph.
    """
    chat: Any                            # llm_client.ChatSession
    text: str                            # representative message
    turn: int                            # representative messages so far, this one included
    threshold: int                       # turn on which the caller answers with feedback JSON

    reply: str                           # raw caller response
    error: Optional[TransportError]
    parsed: Optional[FeedbackParseResult]

    next: str                            # "feedback" | "end"


# ---------- Caller (LLM persona) ----------

async def caller_node(state: TurnState) -> TurnState:
    """
    Send the representative's message to the AI caller.
    On the threshold turn the reply is expected to be the feedback JSON.
    """
    try:
        reply = await llm_client.send(state["chat"], state["text"])
    except TransportError as e:
        logger.warning("Caller turn %s failed: %s", state.get("turn"), e.user_message)
        return {**state, "reply": "", "error": e, "next": "end"}

    if state["turn"] == state["threshold"]:
        next_step = "feedback"
    else:
        next_step = "end"

    return {**state, "reply": reply, "error": None, "next": next_step}


# ---------- Feedback ----------

async def feedback_node(state: TurnState) -> TurnState:
    parsed = parse_feedback(state["reply"])
    logger.info("Feedback turn parsed: %s", parsed.outcome.value)
    return {**state, "parsed": parsed, "next": "end"}


# ---------- Build LangGraph app ----------

def build_turn_graph():
    workflow = StateGraph(TurnState)

    workflow.add_node("caller", caller_node)
    workflow.add_node("feedback", feedback_node)

    def route_from_caller(state: TurnState) -> str:
        return state["next"]

    workflow.add_conditional_edges(
        "caller",
        route_from_caller,
        {"feedback": "feedback", "end": END},
    )
    workflow.add_edge("feedback", END)

    workflow.set_entry_point("caller")

    app = workflow.compile()
    return app


# Single global app instance
turn_app = build_turn_graph()
