# config.py
import logging
import os
import sys
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"

load_dotenv(ENV_PATH)

# Required credential. Its absence is not fatal at import time: the session
# controller starts in the ERROR stage instead, so the front ends can explain it.
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

MISSING_API_KEY_MESSAGE = (
    "OPENAI_API_KEY environment variable is not set. "
    "This application requires an API key to function."
)

# Default LLM model for the AI caller
DIALOGUE_MODEL = os.getenv("DIALOGUE_MODEL", "gpt-4o-mini")
DIALOGUE_TEMPERATURE = 0.8

# ASR / TTS models
ASR_MODEL = os.getenv("ASR_MODEL", "whisper-1")
TTS_MODEL = os.getenv("TTS_MODEL", "gpt-4o-mini-tts")
TTS_VOICE = os.getenv("TTS_VOICE", "alloy")
RECOGNITION_LANGUAGE = "en"

# Conversation rules
MAX_USER_MESSAGES_BEFORE_FEEDBACK = 5

# Delays (seconds) before listening is restarted automatically
INITIAL_LISTEN_DELAY = 0.5   # after the caller's opening line
AUTO_LISTEN_DELAY = 0.2      # after every later AI caller turn

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging(level: str = LOG_LEVEL) -> None:
    """
    Console logging for the simulator. Safe to call more than once.
    """
    root = logging.getLogger()
    if any(getattr(h, "_simulator", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "[%(asctime)s] %(levelname)s %(name)s :: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    handler._simulator = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger(__name__).info(
        "Loaded env from %s (OPENAI_API_KEY present? %s)", ENV_PATH, bool(OPENAI_API_KEY)
    )
