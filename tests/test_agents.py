import asyncio

import llm_client
from agents import turn_app
from conftest import CANONICAL_FEEDBACK, ScriptedModel
from errors import RateLimited
from feedback_parser import ParseOutcome


def _run_turn(reply, turn, threshold=5):
    chat = llm_client.ChatSession("sys", ScriptedModel([reply]))
    state = {"chat": chat, "text": "How can I help?", "turn": turn, "threshold": threshold}
    return asyncio.run(turn_app.ainvoke(state)), chat


def test_regular_turn_skips_feedback():
    result, chat = _run_turn("I still haven't got my parcel.", turn=2)

    assert result["reply"] == "I still haven't got my parcel."
    assert result.get("error") is None
    assert result.get("parsed") is None
    assert len(chat.history) == 3


def test_threshold_turn_parses_feedback():
    result, _ = _run_turn(CANONICAL_FEEDBACK, turn=5)

    parsed = result["parsed"]
    assert parsed.outcome == ParseOutcome.OK
    assert parsed.feedback.score == 82


def test_threshold_turn_with_chatter_is_not_json():
    result, _ = _run_turn("Thanks, bye!", turn=5)
    assert result["parsed"].outcome == ParseOutcome.NOT_JSON


def test_transport_failure_ends_turn():
    result, chat = _run_turn(RuntimeError("Error code: 429"), turn=5)

    assert isinstance(result["error"], RateLimited)
    assert result["reply"] == ""
    assert result.get("parsed") is None
    assert len(chat.history) == 1
