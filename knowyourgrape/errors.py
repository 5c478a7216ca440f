"""
Error taxonomy for slide ordering, playback and response recording
"""


class TastingError(Exception):
    """Base class for domain errors surfaced through the API"""
    code = "TASTING_ERROR"
    status_code = 500

    def __init__(self, message="", **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_dict(self):
        detail = {"code": self.code, "message": self.message}
        if self.context:
            detail["context"] = self.context
        return detail


class PositionExhausted(TastingError):
    """No free integer position between two neighbours; renumber the siblings and retry"""
    code = "POSITION_EXHAUSTED"
    status_code = 409


class DuplicatePosition(TastingError):
    code = "DUPLICATE_POSITION"
    status_code = 409


class InvalidMove(TastingError):
    code = "INVALID_MOVE"
    status_code = 400


class SlideIndexOutOfRange(TastingError):
    code = "SLIDE_INDEX_OUT_OF_RANGE"
    status_code = 409


class ContentUnavailable(TastingError):
    """Aggregated sequence still inconsistent after a recompute"""
    code = "CONTENT_UNAVAILABLE"
    status_code = 503


class SequenceIntegrityError(TastingError):
    code = "SEQUENCE_INTEGRITY"
    status_code = 500


class NotFound(TastingError):
    code = "NOT_FOUND"
    status_code = 404


class ParticipantNotFound(NotFound):
    code = "PARTICIPANT_NOT_FOUND"


class ValidationFailed(TastingError):
    code = "VALIDATION_FAILED"
    status_code = 400


class SessionStateError(TastingError):
    code = "SESSION_STATE"
    status_code = 400
