# errors.py
"""
Error taxonomy for the training simulator.

Fatal errors (ConfigurationError, InitializationError) stop the scenario and
move the session to the ERROR stage. Everything else is recoverable: it is
shown in the conversation or as microphone status text, and the session stays
active. Every error carries a ``user_message`` that is safe to show as is.
"""
from __future__ import annotations

from enum import Enum


class SimulatorError(Exception):
    user_message = "An error occurred while communicating with the AI caller."

    def __init__(self, user_message: str | None = None):
        if user_message:
            self.user_message = user_message
        super().__init__(self.user_message)


# ---------- Fatal ----------

class ConfigurationError(SimulatorError):
    user_message = "The AI caller is not configured. Please set OPENAI_API_KEY."


class InitializationError(SimulatorError):
    user_message = (
        "Failed to initialize AI caller chat session. Please ensure your API key "
        "is valid and has access to the model."
    )


# ---------- Per message (recoverable) ----------

class TransportError(SimulatorError):
    user_message = "Failed to get a response from the AI. Please check your connection or API key."


class RateLimited(TransportError):
    user_message = "The AI is currently busy (Rate limit or Quota Exceeded). Please try again later."


class InvalidCredential(TransportError):
    user_message = "Your API key is not valid. Please check your API key and try again."


class ContentBlocked(TransportError):
    def __init__(self, reason: str):
        self.reason = reason
        if reason == "recitation":
            message = (
                "AI response was blocked due to content policy (recitation). "
                "Try rephrasing or a different scenario."
            )
        else:
            message = (
                f"AI response was blocked due to {reason} settings. "
                "Try rephrasing or a different scenario."
            )
        super().__init__(message)


# ---------- Feedback turn (recoverable) ----------

class FeedbackShapeError(SimulatorError):
    """Raised when the feedback turn did not carry a usable feedback object."""

    user_message = "The AI caller could not produce its feedback."

    def __init__(self, outcome, detail: str = ""):
        self.outcome = outcome
        self.detail = detail
        super().__init__()

    def __str__(self) -> str:
        return f"Feedback response rejected ({self.outcome.value}): {self.detail}"


# ---------- Voice input (recoverable) ----------

class RecognitionErrorKind(str, Enum):
    NO_SPEECH = "no-speech"
    AUDIO_CAPTURE = "audio-capture"
    NOT_ALLOWED = "not-allowed"
    OTHER = "other"


class RecognitionError(SimulatorError):
    user_message = "Could not start voice input. Check mic permissions and tap mic to retry."

    def __init__(self, kind: RecognitionErrorKind, user_message: str | None = None):
        self.kind = kind
        super().__init__(user_message)
