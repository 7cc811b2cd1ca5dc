# feedback_parser.py
"""
Extract the structured feedback from the AI caller's final turn.

The model is asked to answer with a bare JSON object, but it often wraps it in
a ```json fenced block. The text is decoded first and validated second; the
result is a tagged ``FeedbackParseResult`` and a feedback object is either
fully well-shaped or absent.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from errors import FeedbackShapeError
from state import Feedback, FeedbackResponse

logger = logging.getLogger(__name__)

FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)


class ParseOutcome(str, Enum):
    OK = "ok"
    NOT_JSON = "not_json"
    WRONG_SHAPE = "wrong_shape"


@dataclass(frozen=True)
class FeedbackParseResult:
    outcome: ParseOutcome
    feedback: Optional[Feedback] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == ParseOutcome.OK

    def unwrap(self) -> Feedback:
        if self.feedback is None:
            raise FeedbackShapeError(self.outcome, self.detail)
        return self.feedback


def strip_fence(text: str) -> str:
    json_str = text.strip()
    match = FENCE_RE.match(json_str)
    if match and match.group(1):
        json_str = match.group(1).strip()
    return json_str


def parse_feedback(raw_response: str) -> FeedbackParseResult:
    json_str = strip_fence(raw_response or "")

    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        logger.warning("Feedback turn was not valid JSON: %s", e)
        logger.debug("Response text: %r", raw_response)
        return FeedbackParseResult(ParseOutcome.NOT_JSON, detail=str(e))

    try:
        response = FeedbackResponse.model_validate(data)
    except ValidationError as e:
        logger.warning("Feedback JSON had the wrong shape: %s", e.errors(include_url=False))
        return FeedbackParseResult(ParseOutcome.WRONG_SHAPE, detail=str(e))

    return FeedbackParseResult(ParseOutcome.OK, feedback=response.to_feedback())
