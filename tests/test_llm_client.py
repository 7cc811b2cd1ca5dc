import asyncio

import httpx
import openai
import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

import config
import llm_client
from conftest import ScriptedModel
from errors import (
    ConfigurationError,
    ContentBlocked,
    InvalidCredential,
    RateLimited,
    TransportError,
)


def _status_error(cls, status):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls("request failed", response=response, body=None)


class FilteredModel:
    async def ainvoke(self, messages):
        return AIMessage(content="", response_metadata={"finish_reason": "content_filter"})


def test_send_keeps_full_history():
    model = FakeListChatModel(responses=["Oh, hello dear.", "Thank you, dear."])
    session = llm_client.open_session("You are a caller.", model=model)

    assert asyncio.run(llm_client.send(session, "Hi, how can I help?")) == "Oh, hello dear."
    assert asyncio.run(llm_client.send(session, "Let me check.")) == "Thank you, dear."

    history = session.history
    assert [type(m) for m in history] == [
        SystemMessage, HumanMessage, AIMessage, HumanMessage, AIMessage,
    ]
    assert history[0].content == "You are a caller."
    assert history[3].content == "Let me check."


def test_failed_send_leaves_history_untouched():
    session = llm_client.open_session("sys", model=ScriptedModel([RuntimeError("Error code: 429")]))

    with pytest.raises(RateLimited):
        asyncio.run(llm_client.send(session, "hello"))

    assert len(session.history) == 1


def test_content_filter_finish_is_blocked():
    session = llm_client.open_session("sys", model=FilteredModel())

    with pytest.raises(ContentBlocked) as info:
        asyncio.run(llm_client.send(session, "hello"))

    assert info.value.reason == "safety"
    assert "blocked due to safety settings" in info.value.user_message
    assert len(session.history) == 1


@pytest.mark.parametrize(
    "exc, expected",
    [
        (RuntimeError("Error code: 429 - You exceeded your current quota"), RateLimited),
        (RuntimeError("Rate limit reached for gpt-4o-mini"), RateLimited),
        (RuntimeError("Incorrect API key provided: sk-abc"), InvalidCredential),
        (RuntimeError("API key not valid. Please pass a valid API key."), InvalidCredential),
        (RuntimeError("Connection reset by peer"), TransportError),
    ],
)
def test_classify_error_by_message(exc, expected):
    assert type(llm_client.classify_error(exc)) is expected


def test_classify_error_by_sdk_type():
    assert isinstance(llm_client.classify_error(_status_error(openai.RateLimitError, 429)), RateLimited)
    assert isinstance(
        llm_client.classify_error(_status_error(openai.AuthenticationError, 401)), InvalidCredential
    )


def test_classify_blocked_reasons():
    recitation = llm_client.classify_error(RuntimeError("Response blocked: RECITATION"))
    assert isinstance(recitation, ContentBlocked)
    assert "content policy (recitation)" in recitation.user_message

    filtered = llm_client.classify_error(
        RuntimeError("The response was filtered due to the prompt triggering content management policy")
    )
    assert isinstance(filtered, ContentBlocked)
    assert filtered.reason == "safety"


def test_generic_transport_message():
    error = llm_client.classify_error(ValueError("boom"))
    assert error.user_message == (
        "Failed to get a response from the AI. Please check your connection or API key."
    )


def test_missing_key_is_configuration_error(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", None)
    monkeypatch.setattr(llm_client, "_chat_model", None)

    with pytest.raises(ConfigurationError) as info:
        llm_client.open_session("sys")

    assert "OPENAI_API_KEY environment variable is not set" in info.value.user_message


def test_chat_model_is_created_once_and_released(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test-not-a-real-key")
    monkeypatch.setattr(llm_client, "_chat_model", None)

    first = llm_client.get_chat_model()
    assert llm_client.get_chat_model() is first

    llm_client.close_chat_model()
    assert llm_client._chat_model is None
