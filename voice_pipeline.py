# voice_pipeline.py
import asyncio
import logging
import time
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Tuple

import openai
from openai import OpenAI

import config
from errors import RecognitionError, RecognitionErrorKind

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
AUDIO_OUT_DIR = BASE_DIR / "audio_out"

_openai_client: Optional[OpenAI] = None


def get_openai_client() -> OpenAI:
    """Shared OpenAI client for ASR + TTS (chat goes through LangChain)."""
    global _openai_client
    if _openai_client is None:
        _openai_client = OpenAI(api_key=config.OPENAI_API_KEY)
    return _openai_client


def transcribe_audio_file(path: str) -> Tuple[str, float]:
    """
    Run ASR (Whisper) on an audio file.
    Returns (transcript, latency_seconds).
    """
    start = time.time()
    with open(path, "rb") as f:
        result = get_openai_client().audio.transcriptions.create(
            model=config.ASR_MODEL,
            file=f,
            language=config.RECOGNITION_LANGUAGE,
        )
    elapsed = time.time() - start
    text = result.text.strip()
    return text, elapsed


def synthesize_speech_to_file(text: str, filename: str) -> Tuple[str, float]:
    """
    Run TTS on `text` and write to an mp3 file in audio_out/.
    Returns (file_path, latency_seconds).
    """
    AUDIO_OUT_DIR.mkdir(exist_ok=True)
    out_path = str(AUDIO_OUT_DIR / filename)

    start = time.time()
    with get_openai_client().audio.speech.with_streaming_response.create(
        model=config.TTS_MODEL,
        voice=config.TTS_VOICE,
        input=text,
    ) as response:
        response.stream_to_file(out_path)

    elapsed = time.time() - start
    return out_path, elapsed


def save_upload_to_temp(upload_file) -> str:
    """
    Utility for FastAPI UploadFile -> temp file path.
    """
    suffix = Path(upload_file.filename or "").suffix or ".wav"
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        content = upload_file.file.read()
        tmp.write(content)
        return tmp.name


# ---------- Capability adapter ----------

class RecognitionBackend(Protocol):
    listener: Any

    def start(self, attempt: int) -> None: ...
    def stop(self) -> None: ...
    def abort(self) -> None: ...


class SynthesisBackend(Protocol):
    def speak(self, text: str) -> None: ...
    def cancel(self) -> None: ...


class SpeechAdapter:
    """
    Uniform start/stop/speak contract over optional recognition and synthesis
    backends. Either backend may be missing; the matching ``is_*_supported``
    flag is then False and the calls are no-ops.

    Backends report back through ``recognition_result``, ``recognition_error``
    and ``recognition_ended``, always with the attempt id they were started
    with. The adapter forwards them to the ``on_*`` callbacks unchanged, so
    the consumer can drop events from an attempt that is no longer current.
    """

    def __init__(
        self,
        recognizer: Optional[RecognitionBackend] = None,
        synthesizer: Optional[SynthesisBackend] = None,
    ):
        self.recognizer = recognizer
        self.synthesizer = synthesizer
        if recognizer is not None:
            recognizer.listener = self

        self.on_interim: Optional[Callable[[int, str], None]] = None
        self.on_final: Optional[Callable[[int, str], None]] = None
        self.on_error: Optional[Callable[[int, RecognitionErrorKind], None]] = None
        self.on_end: Optional[Callable[[int], None]] = None

        self._attempt = 0
        self._listening = False

    @property
    def is_recognition_supported(self) -> bool:
        return self.recognizer is not None

    @property
    def is_synthesis_supported(self) -> bool:
        return self.synthesizer is not None

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def current_attempt(self) -> int:
        return self._attempt

    def start_listening(self) -> bool:
        """
        Start a new recognition attempt. Returns False when recognition is
        unsupported or an attempt is already running.
        """
        if self.recognizer is None or self._listening:
            return False

        self._attempt += 1
        try:
            self.recognizer.start(self._attempt)
        except (RuntimeError, OSError) as e:
            logger.error("Error starting speech recognition: %s", e)
            raise RecognitionError(RecognitionErrorKind.OTHER) from e

        self._listening = True
        return True

    def stop_listening(self) -> None:
        """Finish the current attempt; the backend still reports its end."""
        if self.recognizer is not None and self._listening:
            self.recognizer.stop()

    def abort_listening(self) -> None:
        """Drop the current attempt. Late events from it become stale."""
        if self.recognizer is not None and self._listening:
            self.recognizer.abort()
            self._listening = False
            self._attempt += 1

    def speak(self, text: str, enabled: bool = True) -> bool:
        if self.synthesizer is None or not enabled or not text:
            return False
        # at most one utterance at a time
        self.synthesizer.cancel()
        self.synthesizer.speak(text)
        return True

    def cancel_speech(self) -> None:
        if self.synthesizer is not None:
            self.synthesizer.cancel()

    # ---- called by recognition backends ----

    def recognition_result(self, attempt: int, text: str, is_final: bool) -> None:
        callback = self.on_final if is_final else self.on_interim
        if callback is not None:
            callback(attempt, text)

    def recognition_error(self, attempt: int, kind: RecognitionErrorKind) -> None:
        logger.warning("Speech recognition error (attempt %s): %s", attempt, kind.value)
        if self.on_error is not None:
            self.on_error(attempt, kind)

    def recognition_ended(self, attempt: int) -> None:
        if attempt == self._attempt:
            self._listening = False
        if self.on_end is not None:
            self.on_end(attempt)


# ---------- OpenAI backends ----------

class WhisperRecognizer:
    """
    Recognition backed by Whisper. A listening attempt stays open until the
    client uploads the recorded clip with ``submit_clip``.
    """

    def __init__(self) -> None:
        self.listener: Optional[SpeechAdapter] = None
        self._attempt: Optional[int] = None

    @property
    def awaiting_audio(self) -> bool:
        return self._attempt is not None

    def start(self, attempt: int) -> None:
        if self._attempt is not None:
            raise RuntimeError("recognition already started")
        self._attempt = attempt

    def stop(self) -> None:
        attempt, self._attempt = self._attempt, None
        if attempt is not None and self.listener is not None:
            self.listener.recognition_ended(attempt)

    def abort(self) -> None:
        self._attempt = None

    async def submit_clip(self, path: str) -> str:
        """
        Transcribe a clip for the open attempt and report the outcome.
        Returns the transcript ("" when nothing usable was heard).
        """
        attempt = self._attempt
        if attempt is None or self.listener is None:
            raise RecognitionError(
                RecognitionErrorKind.OTHER,
                "Voice input is not active. Tap the mic to start listening.",
            )

        transcript = ""
        error_kind: Optional[RecognitionErrorKind] = None
        try:
            transcript, elapsed = await asyncio.to_thread(transcribe_audio_file, path)
            logger.info("Transcribed clip for attempt %s in %.2fs", attempt, elapsed)
        except OSError as e:
            logger.error("Could not read audio clip %s: %s", path, e)
            error_kind = RecognitionErrorKind.AUDIO_CAPTURE
        except openai.AuthenticationError as e:
            logger.error("Transcription rejected: %s", e)
            error_kind = RecognitionErrorKind.NOT_ALLOWED
        except openai.OpenAIError as e:
            logger.error("Transcription failed: %s", e)
            error_kind = RecognitionErrorKind.OTHER

        if self._attempt != attempt:
            # aborted while transcribing
            return ""
        self._attempt = None

        if error_kind is None and not transcript:
            error_kind = RecognitionErrorKind.NO_SPEECH

        if error_kind is None:
            self.listener.recognition_result(attempt, transcript, is_final=True)
        else:
            self.listener.recognition_error(attempt, error_kind)
        self.listener.recognition_ended(attempt)
        return transcript


class OpenAITTSSynthesizer:
    """
    Speech output rendered to mp3 files by the OpenAI TTS endpoint. The newest
    finished file is exposed as ``last_audio_path`` for playback.
    """

    def __init__(self) -> None:
        self.last_audio_path: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._counter = 0

    def speak(self, text: str) -> None:
        self._counter += 1
        filename = f"utterance_{self._counter}.mp3"
        self._task = asyncio.get_running_loop().create_task(self._render(text, filename))

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._discard_last()

    async def _render(self, text: str, filename: str) -> None:
        try:
            path, elapsed = await asyncio.to_thread(synthesize_speech_to_file, text, filename)
        except (openai.OpenAIError, OSError) as e:
            logger.warning("Speech synthesis failed: %s", e)
            return
        logger.info("Synthesized %s in %.2fs", filename, elapsed)
        self._discard_last()
        self.last_audio_path = path

    def _discard_last(self) -> None:
        # only the newest utterance is kept on disk
        if self.last_audio_path is not None:
            Path(self.last_audio_path).unlink(missing_ok=True)
        self.last_audio_path = None
