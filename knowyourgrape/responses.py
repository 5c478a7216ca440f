"""
Server-side response recording: one row per (participant, slide)
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import NotFound, ParticipantNotFound
from .models import Participant, Response, Slide, as_uuid, utcnow

logger = logging.getLogger(__name__)


def record_response(db: Session, participant_id, slide_id, answer, synced=True) -> Response:
    """
    Upsert a participant's answer to a slide.

    A second call for the same pair overwrites the answer. An unknown
    participant raises ParticipantNotFound so a client replaying a stale
    offline queue can drop the item.
    """
    participant_uuid = as_uuid(participant_id)
    participant = db.get(Participant, participant_uuid) if participant_uuid else None
    if participant is None:
        raise ParticipantNotFound(f"Participant {participant_id} not found", participant_id=str(participant_id))

    slide_uuid = as_uuid(slide_id)
    slide = db.get(Slide, slide_uuid) if slide_uuid else None
    if slide is None:
        raise NotFound(f"Slide {slide_id} not found", slide_id=str(slide_id))

    now = utcnow()
    response = _existing(db, participant.id, slide.id)
    if response is None:
        response = Response(participant_id=participant.id, slide_id=slide.id)
        db.add(response)
    response.answer_json = answer
    response.answered_at = now
    response.synced = bool(synced)
    participant.last_active = now

    try:
        db.commit()
    except IntegrityError:
        # Concurrent insert for the same pair won the race; overwrite it
        db.rollback()
        response = _existing(db, participant.id, slide.id)
        response.answer_json = answer
        response.answered_at = now
        response.synced = bool(synced)
        db.commit()

    db.refresh(response)
    logger.debug("Recorded response participant=%s slide=%s", participant.id, slide.id)
    return response


def _existing(db, participant_id, slide_id):
    return db.execute(
        select(Response).where(Response.participant_id == participant_id, Response.slide_id == slide_id)
    ).scalar_one_or_none()


def responses_for_participant(db: Session, participant_id):
    participant_uuid = as_uuid(participant_id)
    if participant_uuid is None or db.get(Participant, participant_uuid) is None:
        raise ParticipantNotFound(f"Participant {participant_id} not found")
    return db.execute(
        select(Response).where(Response.participant_id == participant_uuid).order_by(Response.answered_at)
    ).scalars().all()


def responses_for_slide(db: Session, slide_id):
    slide_uuid = as_uuid(slide_id)
    if slide_uuid is None or db.get(Slide, slide_uuid) is None:
        raise NotFound(f"Slide {slide_id} not found")
    return db.execute(
        select(Response).where(Response.slide_id == slide_uuid).order_by(Response.answered_at)
    ).scalars().all()
