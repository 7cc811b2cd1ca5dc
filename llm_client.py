# llm_client.py
"""
Conversation client for the AI caller.

One process-wide ChatOpenAI instance is created lazily on first use and
released with ``close_chat_model()``. Each scenario gets its own
``ChatSession`` holding the system instruction and the running history, so
the model always sees the whole call.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, List, Optional

import openai
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

import config
from errors import (
    ConfigurationError,
    ContentBlocked,
    InitializationError,
    InvalidCredential,
    RateLimited,
    TransportError,
)

logger = logging.getLogger(__name__)

_chat_model: Optional[ChatOpenAI] = None


def get_chat_model() -> ChatOpenAI:
    """
    Return the shared chat model, creating it on first call.
    """
    global _chat_model
    if _chat_model is not None:
        return _chat_model

    if not config.OPENAI_API_KEY:
        raise ConfigurationError(config.MISSING_API_KEY_MESSAGE)

    try:
        _chat_model = ChatOpenAI(
            model=config.DIALOGUE_MODEL,
            temperature=config.DIALOGUE_TEMPERATURE,
            api_key=config.OPENAI_API_KEY,
        )
    except (ValueError, openai.OpenAIError) as e:
        logger.error("Error initializing chat model %s: %s", config.DIALOGUE_MODEL, e)
        raise InitializationError() from e

    logger.info("Chat model %s initialized", config.DIALOGUE_MODEL)
    return _chat_model


def close_chat_model() -> None:
    global _chat_model
    if _chat_model is not None:
        logger.info("Releasing chat model %s", config.DIALOGUE_MODEL)
    _chat_model = None


class ChatSession:
    """Handle for one AI caller conversation."""

    def __init__(self, system_instruction: str, model: Any):
        self.session_id = uuid.uuid4().hex
        self.model = model
        self.history: List[BaseMessage] = [SystemMessage(content=system_instruction)]


def open_session(system_instruction: str, model: Any = None) -> ChatSession:
    """
    Start a chat seeded with ``system_instruction``.

    Raises ConfigurationError without a credential and InitializationError
    when the model cannot be set up.
    """
    if model is None:
        model = get_chat_model()
    session = ChatSession(system_instruction, model)
    logger.info("Opened chat session %s", session.session_id)
    return session


async def send(session: ChatSession, text: str) -> str:
    """
    Send one representative turn and return the caller's reply text.
    Any failure from the SDK or the HTTP stack is classified and raised as a
    TransportError subclass; the turn is then not kept in the history.
    """
    convo = session.history + [HumanMessage(content=text)]
    try:
        reply = await session.model.ainvoke(convo)
    except Exception as e:
        error = classify_error(e)
        logger.error(
            "Error sending message in session %s: %s (%s)",
            session.session_id, e, type(error).__name__,
        )
        raise error from e

    metadata = getattr(reply, "response_metadata", None) or {}
    if metadata.get("finish_reason") == "content_filter":
        raise ContentBlocked("safety")

    content = _content_text(reply)
    session.history = convo + [AIMessage(content=content)]
    return content


def classify_error(exc: BaseException) -> TransportError:
    """Map a failure from the remote service onto the transport taxonomy."""
    if isinstance(exc, TransportError):
        return exc
    if isinstance(exc, openai.RateLimitError):
        return RateLimited()
    if isinstance(exc, openai.AuthenticationError):
        return InvalidCredential()

    message = str(exc).lower()
    if "429" in message or "quota" in message or "rate limit" in message:
        return RateLimited()
    if (
        "api key not valid" in message
        or "invalid api key" in message
        or "incorrect api key" in message
        or "invalid_api_key" in message
    ):
        return InvalidCredential()
    if "recitation" in message:
        return ContentBlocked("recitation")
    if "safety" in message or "content_filter" in message or "content management policy" in message:
        return ContentBlocked("safety")
    return TransportError()


def _content_text(reply: Any) -> str:
    content = getattr(reply, "content", reply)
    if isinstance(content, list):
        # content blocks: keep the text parts only
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)
