# session.py
"""
Session controller for a training call.

Owns the training stage, the message log, the representative turn counter and
the voice-input state, and drives the LLM caller through the turn graph in
``agents``. Front ends only call the intent methods and read ``snapshot()``.

Speech callbacks and delayed listening restarts are not handled inline: they
are posted as events onto a queue and processed one at a time on the event
loop (``run()`` in a server, ``drain()`` in tests and the CLI). Every event
carries the session generation, and speech events the listening attempt id,
so events that outlive their scenario or attempt are dropped.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Callable, List, Optional

import config
import llm_client
from agents import turn_app
from errors import (
    ConfigurationError,
    FeedbackShapeError,
    InitializationError,
    RecognitionError,
    RecognitionErrorKind,
    TransportError,
)
from feedback_parser import ParseOutcome
from scenarios import (
    GENERAL_CALL_CENTER_TIPS,
    START_CONVERSATION_PROMPT,
    Scenario,
    ScenarioSetup,
    get_scenario,
    prepare_scenario,
)
from state import Feedback, Message, MessageSender, SimulationState, TrainingStage
from voice_pipeline import SpeechAdapter

logger = logging.getLogger(__name__)

NOT_JSON_APOLOGY = (
    "I was supposed to give feedback, but there was an issue. "
    "Let's try to wrap this up. What else can I help with?"
)
WRONG_SHAPE_APOLOGY = (
    "I tried to give feedback, but the format was off. Let's finish up. How can I help?"
)
NO_INITIAL_MESSAGE = "AI failed to provide an initial message."

DIDNT_CATCH_THAT = "Didn't catch that. Tap the mic or type your response."
STILL_DIDNT_CATCH_THAT = "Still didn't catch that. Tap the mic or type your response."
MICROPHONE_ERRORS = {
    RecognitionErrorKind.AUDIO_CAPTURE: "Microphone problem. Please ensure it's enabled and working.",
    RecognitionErrorKind.NOT_ALLOWED: "Microphone access denied. Please enable it in your settings.",
}


# ---------- Events ----------

@dataclass(frozen=True)
class SessionEvent:
    generation: int


@dataclass(frozen=True)
class InterimTranscript(SessionEvent):
    attempt: int
    text: str


@dataclass(frozen=True)
class FinalTranscript(SessionEvent):
    attempt: int
    text: str


@dataclass(frozen=True)
class RecognitionFailed(SessionEvent):
    attempt: int
    kind: RecognitionErrorKind


@dataclass(frozen=True)
class RecognitionEnded(SessionEvent):
    attempt: int


@dataclass(frozen=True)
class RestartListening(SessionEvent):
    pass


# ---------- Controller ----------

class SessionController:
    def __init__(
        self,
        speech: Optional[SpeechAdapter] = None,
        open_session: Callable[[str], llm_client.ChatSession] = llm_client.open_session,
        has_credential: Optional[bool] = None,
        threshold: int = config.MAX_USER_MESSAGES_BEFORE_FEEDBACK,
        initial_listen_delay: float = config.INITIAL_LISTEN_DELAY,
        auto_listen_delay: float = config.AUTO_LISTEN_DELAY,
        rng: Optional[random.Random] = None,
    ):
        self.speech = speech or SpeechAdapter()
        self.threshold = threshold
        self.initial_listen_delay = initial_listen_delay
        self.auto_listen_delay = auto_listen_delay
        self._open_session = open_session
        self._rng = rng

        if has_credential is None:
            has_credential = bool(config.OPENAI_API_KEY)
        self.api_key_exists = has_credential

        # Session
        self.stage = TrainingStage.SCENARIO_SELECTION
        self.scenario: Optional[Scenario] = None
        self.setup: Optional[ScenarioSetup] = None
        self.messages: List[Message] = []
        self.user_message_count = 0
        self.chat: Optional[llm_client.ChatSession] = None
        self.error: Optional[str] = None
        self.feedback: Optional[Feedback] = None
        self.is_loading = False
        self.generation = 0

        # Voice
        self.voice_output_enabled = True
        self.is_listening = False
        self.live_transcript = ""
        self.typed_message = ""
        self.microphone_error: Optional[str] = None
        self.no_speech_error_occurred = False
        self.has_attempted_auto_retry = False
        self.manual_stop_in_progress = False
        self._listen_generation = 0

        self._events: asyncio.Queue = asyncio.Queue()
        self._listen_timer: Optional[asyncio.TimerHandle] = None

        self.speech.on_interim = lambda attempt, text: self.post(
            InterimTranscript(self._listen_generation, attempt, text)
        )
        self.speech.on_final = lambda attempt, text: self.post(
            FinalTranscript(self._listen_generation, attempt, text)
        )
        self.speech.on_error = lambda attempt, kind: self.post(
            RecognitionFailed(self._listen_generation, attempt, kind)
        )
        self.speech.on_end = lambda attempt: self.post(
            RecognitionEnded(self._listen_generation, attempt)
        )

        if not self.api_key_exists:
            logger.error("OPENAI_API_KEY is not set; no scenario can be started")
            self.error = config.MISSING_API_KEY_MESSAGE
            self.stage = TrainingStage.ERROR

    # ---------- Intents ----------

    async def select_scenario(self, scenario_id: str) -> None:
        """
        Start a fresh call for ``scenario_id``. Raises KeyError for unknown ids.
        """
        scenario = get_scenario(scenario_id)
        if self.stage == TrainingStage.ERROR:
            # only end_scenario() leaves ERROR
            logger.warning("Ignoring selection of %s while in ERROR", scenario_id)
            return
        if not self.api_key_exists:
            self._fail(config.MISSING_API_KEY_MESSAGE)
            return

        self._reset()
        self.scenario = scenario
        self.stage = TrainingStage.ACTIVE_SCENARIO
        self.is_loading = True
        generation = self.generation

        setup = prepare_scenario(scenario, self._rng, self.threshold)
        self.setup = setup
        logger.info(
            "Starting scenario %s (caller %s, order %s, account %s)",
            scenario.id, setup.caller_name, setup.order_number, setup.account_number,
        )

        try:
            chat = self._open_session(setup.system_instruction)
            self.chat = chat

            first_message = setup.opening_line
            if not first_message:
                first_message = await llm_client.send(chat, START_CONVERSATION_PROMPT)

            if generation != self.generation:
                logger.info("Scenario %s was left before the caller's first line arrived", scenario.id)
                return
            if not first_message or not first_message.strip():
                raise InitializationError(NO_INITIAL_MESSAGE)

            self._append(Message(sender=MessageSender.AI_CALLER, text=first_message))
        except (ConfigurationError, InitializationError, TransportError) as e:
            if generation == self.generation:
                logger.error("Failed to initialize scenario %s: %s", scenario.id, e)
                self._fail(e.user_message)
            return
        finally:
            if generation == self.generation:
                self.is_loading = False

        self._schedule_auto_listen(self.initial_listen_delay)

    async def submit(self, text: str) -> None:
        """
        Send a representative message. Ignored when blank, while a reply is
        outstanding, or outside an active scenario.
        """
        text = (text or "").strip()
        if self.chat is None or not text or self.is_loading or self.stage != TrainingStage.ACTIVE_SCENARIO:
            logger.debug("Ignoring message (stage %s, loading %s)", self.stage.value, self.is_loading)
            return

        self.stop_listening()
        self.is_listening = False
        self.live_transcript = ""
        self.typed_message = ""

        self._append(Message(sender=MessageSender.USER_REPRESENTATIVE, text=text))
        self.user_message_count += 1
        turn = self.user_message_count

        self.is_loading = True
        self.error = None
        self.microphone_error = None
        self.has_attempted_auto_retry = False
        self.no_speech_error_occurred = False
        if turn == self.threshold:
            self.stage = TrainingStage.GENERATING_FEEDBACK

        generation = self.generation
        logger.info("Representative turn %s/%s sent", turn, self.threshold)
        try:
            result = await turn_app.ainvoke(
                {"chat": self.chat, "text": text, "turn": turn, "threshold": self.threshold}
            )
        finally:
            if generation == self.generation:
                self.is_loading = False

        if generation != self.generation:
            logger.info("Dropping caller reply for a scenario that has ended")
            return

        error = result.get("error")
        if error is not None:
            # the message never reached the caller
            self.user_message_count -= 1
            self.stage = TrainingStage.ACTIVE_SCENARIO
            self.error = error.user_message
            self._append(
                Message(
                    sender=MessageSender.SYSTEM,
                    text=f"System Error: {error.user_message.rstrip('.')}. "
                         "Please try again or end scenario.",
                )
            )
            return

        parsed = result.get("parsed")
        if parsed is None:
            self._append(Message(sender=MessageSender.AI_CALLER, text=result["reply"]))
            self._schedule_auto_listen(self.auto_listen_delay)
            return

        try:
            feedback = parsed.unwrap()
        except FeedbackShapeError as e:
            logger.warning("No usable feedback on turn %s: %s", turn, e)
            if e.outcome == ParseOutcome.NOT_JSON:
                apology = NOT_JSON_APOLOGY
            else:
                apology = WRONG_SHAPE_APOLOGY
            self.stage = TrainingStage.ACTIVE_SCENARIO
            self._append(Message(sender=MessageSender.AI_CALLER, text=apology))
            self._schedule_auto_listen(self.auto_listen_delay)
            return

        self.feedback = feedback
        self._append(
            Message(
                sender=MessageSender.SYSTEM,
                text=f"Scenario ended. AI Score: {feedback.score}/100. Feedback generated.",
            )
        )
        self.stage = TrainingStage.FEEDBACK_DISPLAY
        self.speech.cancel_speech()
        logger.info("Scenario %s finished with score %s", self.scenario.id, feedback.score)

    def end_scenario(self) -> None:
        if (
            self.stage == TrainingStage.ACTIVE_SCENARIO
            and self.chat is not None
            and self.user_message_count < self.threshold
        ):
            logger.info("Scenario ended early by user.")
        self._reset()
        self.stage = TrainingStage.SCENARIO_SELECTION

    def tap_microphone(self) -> None:
        if self.is_listening:
            self.stop_listening()
            return
        if self.stage == TrainingStage.ACTIVE_SCENARIO:
            self.has_attempted_auto_retry = False
            self.no_speech_error_occurred = False
            self._start_listening(manual=True)

    def stop_listening(self) -> None:
        if self.is_listening:
            self.manual_stop_in_progress = True
            self.speech.stop_listening()

    def set_typed_message(self, text: str) -> None:
        self.typed_message = text
        # typing takes over from the microphone
        if text.strip() and self.is_listening:
            self.stop_listening()

    def toggle_voice_output(self) -> bool:
        self.voice_output_enabled = not self.voice_output_enabled
        if not self.voice_output_enabled:
            self.speech.cancel_speech()
        return self.voice_output_enabled

    def close(self) -> None:
        """Tear the session down and release the shared chat model."""
        self._reset()
        self.stage = TrainingStage.SCENARIO_SELECTION if self.api_key_exists else TrainingStage.ERROR
        llm_client.close_chat_model()

    # ---------- Snapshot ----------

    def status_text(self) -> str:
        if self.stage == TrainingStage.ERROR:
            return "Training Error"
        if self.scenario is None:
            return "Select a Scenario"
        if self.stage == TrainingStage.ACTIVE_SCENARIO:
            return f"In Scenario: {self.scenario.title}"
        if self.stage == TrainingStage.GENERATING_FEEDBACK:
            return "AI is Generating Feedback..."
        if self.stage == TrainingStage.FEEDBACK_DISPLAY:
            return "Feedback Review"
        return f"Scenario: {self.scenario.title}"

    def snapshot(self) -> SimulationState:
        scenario = self.scenario
        show_feedback = self.stage == TrainingStage.FEEDBACK_DISPLAY and self.feedback is not None
        return {
            "stage": self.stage,
            "status": self.status_text(),
            "scenario_id": scenario.id if scenario else None,
            "scenario_title": scenario.title if scenario else None,
            "scenario_description": scenario.description if scenario else None,
            "caller_persona": scenario.caller_persona.value if scenario else None,
            "level": scenario.level.value if scenario else None,
            "messages": list(self.messages),
            "user_message_count": self.user_message_count,
            "max_user_messages": self.threshold,
            "is_loading": self.is_loading or self.stage == TrainingStage.GENERATING_FEEDBACK,
            "error": self.error,
            "is_listening": self.is_listening,
            "live_transcript": self.live_transcript,
            "microphone_error": self.microphone_error,
            "typed_message": self.typed_message,
            "voice_output_enabled": self.voice_output_enabled,
            "speech_recognition_supported": self.speech.is_recognition_supported,
            "speech_synthesis_supported": self.speech.is_synthesis_supported,
            "can_interact": self.stage == TrainingStage.ACTIVE_SCENARIO and not self.is_loading,
            "max_user_messages_reached": self.user_message_count >= self.threshold,
            "feedback": self.feedback if show_feedback else None,
            "score": self.feedback.score if show_feedback else None,
            "tips": list(GENERAL_CALL_CENTER_TIPS) if scenario else [],
        }

    # ---------- Event queue ----------

    def post(self, event: SessionEvent) -> None:
        self._events.put_nowait(event)

    async def run(self) -> None:
        """Process events forever. Meant to run as a background task."""
        while True:
            event = await self._events.get()
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Error handling %s", type(event).__name__)
            finally:
                self._events.task_done()

    async def drain(self) -> None:
        """Process every queued event now (no background task needed)."""
        while not self._events.empty():
            event = self._events.get_nowait()
            try:
                await self.handle_event(event)
            finally:
                self._events.task_done()

    async def settle(self) -> None:
        """Wait until the background ``run()`` task has handled every queued event."""
        await self._events.join()

    async def handle_event(self, event: SessionEvent) -> None:
        if event.generation != self.generation:
            logger.debug("Dropping stale %s", type(event).__name__)
            return

        if isinstance(event, RestartListening):
            self._on_restart_listening()
            return

        if event.attempt != self.speech.current_attempt:
            logger.debug("Dropping %s from listening attempt %s", type(event).__name__, event.attempt)
            return

        if isinstance(event, InterimTranscript):
            self.live_transcript = event.text
        elif isinstance(event, FinalTranscript):
            await self._on_final_transcript(event.text)
        elif isinstance(event, RecognitionFailed):
            self._on_recognition_error(event.kind)
        elif isinstance(event, RecognitionEnded):
            self._on_recognition_ended()

    # ---------- Voice ----------

    def _start_listening(self, manual: bool) -> bool:
        if (
            not self.speech.is_recognition_supported
            or self.is_listening
            or self.is_loading
            or self.stage != TrainingStage.ACTIVE_SCENARIO
        ):
            return False

        self.microphone_error = None
        self.no_speech_error_occurred = False
        self.live_transcript = ""
        if manual:
            self.typed_message = ""
        self.manual_stop_in_progress = False
        self._listen_generation = self.generation

        try:
            started = self.speech.start_listening()
        except RecognitionError as e:
            self.microphone_error = e.user_message
            self.is_listening = False
            self.has_attempted_auto_retry = False
            return False

        self.is_listening = started
        return started

    def _schedule_auto_listen(self, delay: float) -> None:
        if not self.speech.is_recognition_supported:
            return
        event = RestartListening(self.generation)
        if delay <= 0:
            self.post(event)
            return
        # at most one pending restart
        self._cancel_listen_timer()
        loop = asyncio.get_running_loop()
        self._listen_timer = loop.call_later(delay, self.post, event)

    def _cancel_listen_timer(self) -> None:
        if self._listen_timer is not None:
            self._listen_timer.cancel()
            self._listen_timer = None

    def _on_restart_listening(self) -> None:
        if (
            self.stage != TrainingStage.ACTIVE_SCENARIO
            or self.is_loading
            or self.is_listening
            or self.typed_message.strip()
            or self._last_sender() != MessageSender.AI_CALLER
        ):
            return
        self.has_attempted_auto_retry = False
        self.no_speech_error_occurred = False
        self._start_listening(manual=False)

    async def _on_final_transcript(self, text: str) -> None:
        self.live_transcript = ""
        if text.strip() and not self.manual_stop_in_progress:
            await self.submit(text.strip())
            self.has_attempted_auto_retry = False
            self.no_speech_error_occurred = False

    def _on_recognition_error(self, kind: RecognitionErrorKind) -> None:
        self.no_speech_error_occurred = False
        if self.manual_stop_in_progress:
            pass
        elif kind == RecognitionErrorKind.NO_SPEECH:
            self.no_speech_error_occurred = True
            if self.has_attempted_auto_retry:
                self.microphone_error = STILL_DIDNT_CATCH_THAT
        elif kind in MICROPHONE_ERRORS:
            self.microphone_error = MICROPHONE_ERRORS[kind]
        else:
            self.microphone_error = f"Speech recognition error: {kind.value}. Tap mic to retry or type."
        self.is_listening = False
        self.live_transcript = ""

    def _on_recognition_ended(self) -> None:
        was_manually_stopped = self.manual_stop_in_progress
        self.manual_stop_in_progress = False
        if was_manually_stopped:
            self.is_listening = False
            self.live_transcript = ""
            self.has_attempted_auto_retry = False
            self.no_speech_error_occurred = False
            return

        self.is_listening = False
        if (
            self.no_speech_error_occurred
            and not self.has_attempted_auto_retry
            and self.stage == TrainingStage.ACTIVE_SCENARIO
            and not self.is_loading
            and self._last_sender() == MessageSender.AI_CALLER
        ):
            # one silent retry per caller turn
            self.has_attempted_auto_retry = True
            self._start_listening(manual=False)
            return

        if self.no_speech_error_occurred and not self.has_attempted_auto_retry and not self.microphone_error:
            self.microphone_error = DIDNT_CATCH_THAT
        self.no_speech_error_occurred = False

    # ---------- Helpers ----------

    def _append(self, message: Message) -> None:
        self.messages.append(message)
        if message.sender == MessageSender.AI_CALLER:
            self.speech.speak(message.text, enabled=self.voice_output_enabled)

    def _last_sender(self) -> Optional[MessageSender]:
        return self.messages[-1].sender if self.messages else None

    def _fail(self, message: str) -> None:
        self.error = message
        self.chat = None
        self.stage = TrainingStage.ERROR

    def _reset(self) -> None:
        self.generation += 1
        self._cancel_listen_timer()

        self.messages = []
        self.chat = None
        self.error = None
        self.is_loading = False
        self.microphone_error = None
        if self.is_listening or self.speech.is_listening:
            self.speech.abort_listening()
        self.is_listening = False
        self.manual_stop_in_progress = False
        self.live_transcript = ""
        self.typed_message = ""
        self.speech.cancel_speech()
        self.user_message_count = 0
        self.scenario = None
        self.setup = None
        self.feedback = None
        self.has_attempted_auto_retry = False
        self.no_speech_error_occurred = False
