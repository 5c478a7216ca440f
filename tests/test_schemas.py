"""Tests for slide payload validation."""

import pytest

from knowyourgrape.errors import ValidationFailed
from knowyourgrape.models import SlideType
from knowyourgrape.schemas import (
    MultipleChoicePayload, ScaleQuestionPayload, normalize_payload, parse_slide_payload, payload_variant,
)


def test_question_variant_follows_question_type():
    assert payload_variant(SlideType.QUESTION, {"question_type": "scale"}) is ScaleQuestionPayload
    assert payload_variant("question", {"question_type": "multiple_choice"}) is MultipleChoicePayload


def test_scale_question_defaults():
    payload = parse_slide_payload(SlideType.QUESTION, {"question_type": "scale", "title": "Body"})
    assert (payload.scale_min, payload.scale_max) == (1, 10)


def test_scale_bounds_must_be_ordered():
    with pytest.raises(ValidationFailed) as excinfo:
        parse_slide_payload(SlideType.QUESTION, {"question_type": "scale", "title": "Body",
                                                 "scale_min": 5, "scale_max": 5})
    assert excinfo.value.context["errors"]


def test_multiple_choice_needs_options():
    with pytest.raises(ValidationFailed):
        parse_slide_payload(SlideType.QUESTION, {"question_type": "multiple_choice", "title": "Fruit",
                                                 "options": []})


def test_media_requires_image_url():
    with pytest.raises(ValidationFailed) as excinfo:
        parse_slide_payload(SlideType.MEDIA, {"title": "Label"})
    assert any(error["field"] == "image_url" for error in excinfo.value.context["errors"])


@pytest.mark.parametrize("slide_type, payload", [
    ("not_a_type", {}),
    (SlideType.QUESTION, {"question_type": "essay", "title": "?"}),
    (SlideType.QUESTION, {"title": "missing question type"}),
])
def test_unknown_variants_rejected(slide_type, payload):
    with pytest.raises(ValidationFailed):
        parse_slide_payload(slide_type, payload)


def test_payload_must_be_object():
    with pytest.raises(ValidationFailed):
        parse_slide_payload(SlideType.INTERLUDE, ["title"])


def test_normalize_keeps_stored_key_names_and_extras():
    payload = normalize_payload(SlideType.VIDEO_MESSAGE, {
        "title": "From the winemaker",
        "video_publicId": "abc123",
        "editor_note": "trim intro",
    })

    assert payload["video_publicId"] == "abc123"
    assert payload["editor_note"] == "trim intro"
    assert "poster_url" not in payload


def test_package_intro_flag_round_trips():
    payload = normalize_payload(SlideType.INTERLUDE, {"title": "Welcome", "is_package_intro": True})
    assert payload["is_package_intro"] is True
