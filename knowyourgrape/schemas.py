"""
Slide payload variants keyed by (slide type, question type)

Payloads are stored as JSON; on write they are validated against the
variant for their slide type so an editor cannot save a scale question
without bounds or a media slide without an image.
"""
from typing import Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ValidationFailed
from .models import SlideType


class SlidePayload(BaseModel):
    # Older payloads carry editor-only keys; keep them round-tripping
    model_config = ConfigDict(extra='allow')

    title: Optional[str] = None
    description: Optional[str] = None
    is_package_intro: bool = False
    for_host: bool = False


class QuestionOption(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: str
    text: str
    description: Optional[str] = None


class ScaleQuestionPayload(SlidePayload):
    question_type: Literal['scale']
    title: str
    scale_min: int = 1
    scale_max: int = 10
    scale_labels: Optional[List[str]] = None
    category: Optional[str] = None

    @model_validator(mode='after')
    def check_bounds(self):
        if self.scale_min >= self.scale_max:
            raise ValueError("scale_min must be below scale_max")
        return self


class MultipleChoicePayload(SlidePayload):
    question_type: Literal['multiple_choice']
    title: str
    options: List[QuestionOption] = Field(min_length=1)
    allow_multiple: bool = False
    allow_other: bool = False
    category: Optional[str] = None


class TextQuestionPayload(SlidePayload):
    question_type: Literal['text']
    title: str
    placeholder: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None


class BooleanQuestionPayload(SlidePayload):
    question_type: Literal['boolean']
    title: str
    true_label: str = "Yes"
    false_label: str = "No"


class MediaPayload(SlidePayload):
    image_url: str
    alt_text: Optional[str] = None


class InterludePayload(SlidePayload):
    title: str
    wine_name: Optional[str] = None
    wine_image: Optional[str] = None


class VideoMessagePayload(SlidePayload):
    video_url: Optional[str] = None
    video_public_id: Optional[str] = Field(default=None, alias='video_publicId')
    poster_url: Optional[str] = None
    autoplay: bool = False
    show_controls: bool = True

    model_config = ConfigDict(extra='allow', populate_by_name=True)


class AudioMessagePayload(SlidePayload):
    audio_url: Optional[str] = None
    audio_public_id: Optional[str] = Field(default=None, alias='audio_publicId')
    autoplay: bool = False
    show_controls: bool = True

    model_config = ConfigDict(extra='allow', populate_by_name=True)


class TransitionPayload(SlidePayload):
    title: str
    duration: int = 2000
    show_continue_button: bool = Field(default=False, alias='showContinueButton')
    animation_type: Literal['wine_glass_fill', 'fade', 'slide'] = 'wine_glass_fill'

    model_config = ConfigDict(extra='allow', populate_by_name=True)


PAYLOAD_VARIANTS: Dict[Tuple[SlideType, Optional[str]], Type[SlidePayload]] = {
    (SlideType.QUESTION, 'scale'): ScaleQuestionPayload,
    (SlideType.QUESTION, 'multiple_choice'): MultipleChoicePayload,
    (SlideType.QUESTION, 'text'): TextQuestionPayload,
    (SlideType.QUESTION, 'boolean'): BooleanQuestionPayload,
    (SlideType.MEDIA, None): MediaPayload,
    (SlideType.INTERLUDE, None): InterludePayload,
    (SlideType.VIDEO_MESSAGE, None): VideoMessagePayload,
    (SlideType.AUDIO_MESSAGE, None): AudioMessagePayload,
    (SlideType.TRANSITION, None): TransitionPayload,
}


def payload_variant(slide_type, payload: Dict[str, Any]) -> Type[SlidePayload]:
    try:
        slide_type = SlideType(slide_type.value if isinstance(slide_type, SlideType) else slide_type)
    except ValueError:
        raise ValidationFailed(f"Unknown slide type: {slide_type}")

    question_type = payload.get('question_type') if slide_type == SlideType.QUESTION else None
    variant = PAYLOAD_VARIANTS.get((slide_type, question_type))
    if variant is None:
        raise ValidationFailed(f"Unknown question type: {question_type}", slide_type=slide_type.value)
    return variant


def parse_slide_payload(slide_type, payload: Optional[Dict[str, Any]]) -> SlidePayload:
    """Validate a raw payload against its variant; raises ValidationFailed with pydantic's messages"""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationFailed("payloadJson must be an object")
    variant = payload_variant(slide_type, payload)
    try:
        return variant.model_validate(payload)
    except ValidationError as e:
        errors = [
            {'field': '.'.join(str(part) for part in error['loc']), 'message': error['msg']}
            for error in e.errors()
        ]
        raise ValidationFailed(f"Invalid {variant.__name__} payload", errors=errors)


def normalize_payload(slide_type, payload) -> Dict[str, Any]:
    """Validated payload as a JSON-ready dict, keeping the stored key names"""
    return parse_slide_payload(slide_type, payload).model_dump(by_alias=True, exclude_none=True)
