import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# config reads the key at import time
os.environ.setdefault("OPENAI_API_KEY", "sk-test-not-a-real-key")

from langchain_core.messages import AIMessage

import llm_client
from errors import RecognitionErrorKind
from session import SessionController
from voice_pipeline import SpeechAdapter


CANONICAL_FEEDBACK = """```json
{
  "score": 82,
  "feedback": {
    "response_time_perception": "Responded promptly",
    "tone_assessment": "Professional and empathetic",
    "prioritization_and_info_gathering": "Asked for the order number before anything else",
    "problem_resolution_approach": "Took clear steps towards resolution",
    "overall_comment": "Good job confirming the order details before explaining the shipment."
  }
}
```"""


class ScriptedModel:
    """
    Stand-in for the chat model. Replies are taken in order; an exception in
    the script is raised instead of replying.
    """

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def ainvoke(self, messages):
        self.calls.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return AIMessage(content=reply)


class FakeRecognizer:
    def __init__(self, fail_start=False):
        self.listener = None
        self.attempt = None
        self.starts = []
        self.stops = 0
        self.aborts = 0
        self.fail_start = fail_start
        self.stop_error = None

    def start(self, attempt):
        if self.fail_start:
            raise RuntimeError("microphone busy")
        self.attempt = attempt
        self.starts.append(attempt)

    def stop(self):
        self.stops += 1
        attempt, self.attempt = self.attempt, None
        if attempt is None:
            return
        if self.stop_error is not None:
            self.listener.recognition_error(attempt, self.stop_error)
        self.listener.recognition_ended(attempt)

    def abort(self):
        self.aborts += 1
        self.attempt = None

    def interim(self, text):
        self.listener.recognition_result(self.attempt, text, is_final=False)

    def hear(self, text):
        attempt, self.attempt = self.attempt, None
        self.listener.recognition_result(attempt, text, is_final=True)
        self.listener.recognition_ended(attempt)

    def silence(self, kind=RecognitionErrorKind.NO_SPEECH):
        attempt, self.attempt = self.attempt, None
        self.listener.recognition_error(attempt, kind)
        self.listener.recognition_ended(attempt)


class FakeSynthesizer:
    def __init__(self):
        self.spoken = []
        self.cancels = 0

    def speak(self, text):
        self.spoken.append(text)

    def cancel(self):
        self.cancels += 1


@pytest.fixture
def make_controller():
    """
    Build a controller whose AI caller answers from a script.
    Listening restarts are queued immediately (no timers).
    """

    def _make(replies=(), recognizer=None, synthesizer=None, model=None, **kwargs):
        model = model if model is not None else ScriptedModel(replies)
        opened = []

        def open_session(instruction):
            chat = llm_client.ChatSession(instruction, model)
            opened.append(chat)
            return chat

        speech = SpeechAdapter(recognizer=recognizer, synthesizer=synthesizer)
        kwargs.setdefault("has_credential", True)
        kwargs.setdefault("initial_listen_delay", 0)
        kwargs.setdefault("auto_listen_delay", 0)
        controller = SessionController(speech=speech, open_session=open_session, **kwargs)
        controller.opened_sessions = opened
        controller.model = model
        return controller

    return _make
