import json

import pytest

from conftest import CANONICAL_FEEDBACK
from errors import FeedbackShapeError
from feedback_parser import ParseOutcome, parse_feedback, strip_fence


def _payload(**overrides):
    data = {
        "score": 70,
        "feedback": {
            "response_time_perception": "Slight delay in responses",
            "tone_assessment": "Neutral, could be more engaging",
            "prioritization_and_info_gathering": "Asked for some key details but missed others",
            "problem_resolution_approach": "Attempted to solve the issue but approach was unclear",
            "overall_comment": "Remember to verify the caller's identity early on.",
        },
    }
    data.update(overrides)
    return data


def test_canonical_fenced_block_parses_verbatim():
    result = parse_feedback(CANONICAL_FEEDBACK)
    assert result.ok
    fb = result.feedback
    source = json.loads(strip_fence(CANONICAL_FEEDBACK))
    assert fb.score == 82
    for key, value in source["feedback"].items():
        assert getattr(fb, key) == value


def test_fence_without_language_tag():
    raw = "```\n" + json.dumps(_payload()) + "\n```"
    result = parse_feedback(raw)
    assert result.outcome == ParseOutcome.OK
    assert result.feedback.tone_assessment == "Neutral, could be more engaging"


def test_bare_json_with_surrounding_whitespace():
    result = parse_feedback("\n   " + json.dumps(_payload(score=55)) + "  \n")
    assert result.ok
    assert result.feedback.score == 55


def test_truncated_json_is_not_json():
    raw = '```json\n{"score": 82, "feedback": {"tone_assessment": "Good"\n```'
    result = parse_feedback(raw)
    assert result.outcome == ParseOutcome.NOT_JSON
    assert result.feedback is None


def test_conversational_text_is_not_json():
    result = parse_feedback("Thanks so much, that really helped me!")
    assert result.outcome == ParseOutcome.NOT_JSON


def test_missing_score_is_wrong_shape():
    data = _payload()
    del data["score"]
    result = parse_feedback(json.dumps(data))
    assert result.outcome == ParseOutcome.WRONG_SHAPE


def test_missing_feedback_object_is_wrong_shape():
    result = parse_feedback(json.dumps({"score": 90}))
    assert result.outcome == ParseOutcome.WRONG_SHAPE


@pytest.mark.parametrize("score", ["82", None, [82], {"value": 82}])
def test_non_numeric_score_is_wrong_shape(score):
    result = parse_feedback(json.dumps(_payload(score=score)))
    assert result.outcome == ParseOutcome.WRONG_SHAPE


def test_feedback_missing_one_field_is_rejected_whole():
    data = _payload()
    del data["feedback"]["overall_comment"]
    result = parse_feedback(json.dumps(data))
    assert result.outcome == ParseOutcome.WRONG_SHAPE
    assert result.feedback is None


def test_json_array_is_wrong_shape():
    assert parse_feedback("[1, 2, 3]").outcome == ParseOutcome.WRONG_SHAPE


def test_fractional_score_is_rounded():
    assert parse_feedback(json.dumps(_payload(score=81.6))).feedback.score == 82
    assert parse_feedback(json.dumps(_payload(score=100))).feedback.score == 100
    assert parse_feedback(json.dumps(_payload(score=0.0))).feedback.score == 0


@pytest.mark.parametrize("score", [140, -5, 100.5, -0.1])
def test_out_of_range_score_is_wrong_shape(score):
    result = parse_feedback(json.dumps(_payload(score=score)))
    assert result.outcome == ParseOutcome.WRONG_SHAPE
    assert result.feedback is None


def test_unwrap_raises_with_outcome():
    result = parse_feedback("not json at all")
    with pytest.raises(FeedbackShapeError) as info:
        result.unwrap()
    assert info.value.outcome == ParseOutcome.NOT_JSON

    assert parse_feedback(CANONICAL_FEEDBACK).unwrap().score == 82
