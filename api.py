# api.py
from contextlib import asynccontextmanager, suppress
from typing import List, Optional
import asyncio
import logging
import os

from fastapi import FastAPI, UploadFile, File, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel

from config import OPENAI_API_KEY, setup_logging
from errors import RecognitionError
from scenarios import SCENARIOS, GENERAL_CALL_CENTER_TIPS_TITLE
from session import SessionController
from state import Feedback, Message, TrainingStage
from voice_pipeline import (
    AUDIO_OUT_DIR,
    OpenAITTSSynthesizer,
    SpeechAdapter,
    WhisperRecognizer,
    save_upload_to_temp,
)

setup_logging()
logger = logging.getLogger(__name__)


def build_controller() -> SessionController:
    """Controller wired to the Whisper / OpenAI TTS speech backends."""
    speech = SpeechAdapter(recognizer=WhisperRecognizer(), synthesizer=OpenAITTSSynthesizer())
    return SessionController(speech=speech)


# ---- The single training session served by this process ----
controller = build_controller()


@asynccontextmanager
async def lifespan(app: FastAPI):
    worker = asyncio.create_task(controller.run())
    try:
        yield
    finally:
        worker.cancel()
        with suppress(asyncio.CancelledError):
            await worker
        controller.close()


app = FastAPI(title="Call Center Training Simulation", lifespan=lifespan)

# ---- CORS (so a small web demo can call this) ----
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # dev-only
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Pydantic models ----------

class ScenarioSummary(BaseModel):
    id: str
    level: str
    title: str
    description: str
    caller_persona: str


class SelectRequest(BaseModel):
    scenario_id: str


class TextRequest(BaseModel):
    text: str


class SessionStateResponse(BaseModel):
    stage: TrainingStage
    status: str
    scenario_id: Optional[str] = None
    scenario_title: Optional[str] = None
    scenario_description: Optional[str] = None
    caller_persona: Optional[str] = None
    level: Optional[str] = None
    messages: List[Message]
    user_message_count: int
    max_user_messages: int
    is_loading: bool
    error: Optional[str] = None
    is_listening: bool
    live_transcript: str
    microphone_error: Optional[str] = None
    typed_message: str
    voice_output_enabled: bool
    speech_recognition_supported: bool
    speech_synthesis_supported: bool
    can_interact: bool
    max_user_messages_reached: bool
    feedback: Optional[Feedback] = None
    score: Optional[int] = None
    tips_title: str = GENERAL_CALL_CENTER_TIPS_TITLE
    tips: List[str]
    audio_url: Optional[str] = None


class AudioTurnResponse(SessionStateResponse):
    transcript: str


def _state_response(**extra) -> dict:
    state = dict(controller.snapshot())
    synthesizer = controller.speech.synthesizer
    audio_path = getattr(synthesizer, "last_audio_path", None)
    if audio_path:
        state["audio_url"] = f"/audio/{os.path.basename(audio_path)}"
    state.update(extra)
    return state


@app.get("/health")
def health():
    return {"status": "ok", "openai_key_loaded": bool(OPENAI_API_KEY)}


@app.get("/scenarios", response_model=List[ScenarioSummary])
def list_scenarios():
    return [
        ScenarioSummary(
            id=s.id,
            level=s.level.value,
            title=s.title,
            description=s.description,
            caller_persona=s.caller_persona.value,
        )
        for s in SCENARIOS
    ]


@app.get("/session", response_model=SessionStateResponse)
async def get_session():
    return _state_response()


# ---------- Start a scenario ----------

@app.post("/session/select", response_model=SessionStateResponse)
async def select_scenario(req: SelectRequest):
    try:
        await controller.select_scenario(req.scenario_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown scenario_id: {req.scenario_id}")
    return _state_response()


# ---------- Text turn ----------

@app.post("/session/turn-text", response_model=SessionStateResponse)
async def session_turn_text(req: TextRequest):
    await controller.submit(req.text)
    return _state_response()


@app.post("/session/typed-text", response_model=SessionStateResponse)
async def session_typed_text(req: TextRequest):
    controller.set_typed_message(req.text)
    return _state_response()


# ---------- Voice ----------

@app.post("/session/microphone", response_model=SessionStateResponse)
async def session_microphone():
    controller.tap_microphone()
    return _state_response()


@app.post("/session/turn-audio", response_model=AudioTurnResponse)
async def session_turn_audio(audio: UploadFile = File(...)):
    recognizer = controller.speech.recognizer
    if not isinstance(recognizer, WhisperRecognizer):
        raise HTTPException(status_code=409, detail="Speech recognition is not available")

    if not recognizer.awaiting_audio:
        controller.tap_microphone()
    if not recognizer.awaiting_audio:
        raise HTTPException(
            status_code=409,
            detail=controller.microphone_error or "Voice input is not available right now.",
        )

    tmp_path = save_upload_to_temp(audio)
    try:
        transcript = await recognizer.submit_clip(tmp_path)
    except RecognitionError as e:
        raise HTTPException(status_code=409, detail=e.user_message)
    finally:
        os.unlink(tmp_path)

    # let the background worker submit the transcript and process the reply
    await controller.settle()
    return _state_response(transcript=transcript)


@app.post("/session/voice-output", response_model=SessionStateResponse)
async def session_voice_output():
    controller.toggle_voice_output()
    return _state_response()


# ---------- End ----------

@app.post("/session/end", response_model=SessionStateResponse)
async def end_session():
    controller.end_scenario()
    return _state_response()


# ---------- Serve audio files back ----------

@app.get("/audio/{filename}")
def get_audio(filename: str):
    """
    Serve synthesized audio files so a simple HTML client can play them.
    """
    path = AUDIO_OUT_DIR / os.path.basename(filename)
    if not path.exists():
        raise HTTPException(status_code=404, detail="file not found")

    return FileResponse(path, media_type="audio/mpeg")
