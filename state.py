# state.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Optional, TypedDict, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class TrainingStage(str, Enum):
    SCENARIO_SELECTION = "SCENARIO_SELECTION"
    ACTIVE_SCENARIO = "ACTIVE_SCENARIO"
    GENERATING_FEEDBACK = "GENERATING_FEEDBACK"
    FEEDBACK_DISPLAY = "FEEDBACK_DISPLAY"
    ERROR = "ERROR"


class MessageSender(str, Enum):
    USER_REPRESENTATIVE = "USER_REPRESENTATIVE"  # the human playing the call center rep
    AI_CALLER = "AI_CALLER"                      # the LLM playing the customer
    SYSTEM = "SYSTEM"                            # errors and status notes in the chat


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: MessageSender
    text: str
    timestamp: datetime = Field(default_factory=datetime.now)


class Feedback(BaseModel):
    """Final assessment of a completed scenario."""
    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    response_time_perception: str
    tone_assessment: str
    prioritization_and_info_gathering: str
    problem_resolution_approach: str
    overall_comment: str


# ---------- Wire format of the feedback turn ----------

# score must lie in 0..100
ScoreInt = Annotated[int, Field(strict=True, ge=0, le=100)]
ScoreFloat = Annotated[float, Field(strict=True, allow_inf_nan=False, ge=0, le=100)]


class FeedbackDetails(BaseModel):
    response_time_perception: StrictStr
    tone_assessment: StrictStr
    prioritization_and_info_gathering: StrictStr
    problem_resolution_approach: StrictStr
    overall_comment: StrictStr


class FeedbackResponse(BaseModel):
    """
    JSON object the AI caller returns instead of a normal reply once the
    representative has sent the last message of the scenario.
    """
    score: Union[ScoreInt, ScoreFloat]
    feedback: FeedbackDetails

    def to_feedback(self) -> Feedback:
        score = int(round(self.score))
        return Feedback(score=score, **self.feedback.model_dump())


class SimulationState(TypedDict, total=False):
    """
    Read-only snapshot of the training session, handed to the front ends.
    """
    stage: TrainingStage
    status: str
    scenario_id: Optional[str]
    scenario_title: Optional[str]
    scenario_description: Optional[str]
    caller_persona: Optional[str]
    level: Optional[str]
    messages: List[Message]
    user_message_count: int
    max_user_messages: int
    is_loading: bool
    error: Optional[str]

    # Voice
    is_listening: bool
    live_transcript: str
    microphone_error: Optional[str]
    typed_message: str
    voice_output_enabled: bool
    speech_recognition_supported: bool
    speech_synthesis_supported: bool

    # Input controls
    can_interact: bool
    max_user_messages_reached: bool

    # Only in FEEDBACK_DISPLAY
    feedback: Optional[Feedback]
    score: Optional[int]

    # Guidance panel
    tips: List[str]
