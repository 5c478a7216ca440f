"""Tests for server-side response recording."""

import uuid
from datetime import datetime

import pytest
from sqlalchemy import func, select

from knowyourgrape.errors import NotFound, ParticipantNotFound
from knowyourgrape.models import Participant, Response
from knowyourgrape.responses import record_response, responses_for_participant, responses_for_slide


@pytest.fixture
def tasting(make_package, make_session):
    content = make_package((2,))
    session = make_session(content.package)
    session.slide = content.slides[content.wines[0].id][0]
    return session


def count_responses(db):
    return db.execute(select(func.count()).select_from(Response)).scalar_one()


def test_replayed_answer_is_stored_once(db, tasting):
    for _ in range(3):
        record_response(db, tasting.guest.id, tasting.slide.id, {"value": 7})

    assert count_responses(db) == 1


def test_second_answer_overwrites_first(db, tasting):
    record_response(db, tasting.guest.id, tasting.slide.id, {"value": 3})
    response = record_response(db, str(tasting.guest.id), str(tasting.slide.id), {"value": 9}, synced=False)

    assert response.answer_json == {"value": 9}
    assert response.synced is False
    assert count_responses(db) == 1


def test_unknown_participant(db, tasting):
    with pytest.raises(ParticipantNotFound) as excinfo:
        record_response(db, uuid.uuid4(), tasting.slide.id, {"value": 1})
    assert excinfo.value.status_code == 404


def test_malformed_participant_id(db, tasting):
    with pytest.raises(ParticipantNotFound):
        record_response(db, "not-a-uuid", tasting.slide.id, {"value": 1})


def test_unknown_slide(db, tasting):
    with pytest.raises(NotFound) as excinfo:
        record_response(db, tasting.guest.id, uuid.uuid4(), {"value": 1})
    assert excinfo.value.code == "NOT_FOUND"


def test_answer_touches_last_active(db, tasting):
    guest = db.get(Participant, tasting.guest.id)
    guest.last_active = datetime(2000, 1, 1)
    db.commit()

    record_response(db, guest.id, tasting.slide.id, {"value": 1})
    db.refresh(guest)

    assert guest.last_active.year != 2000


def test_listing_by_participant_and_slide(db, tasting):
    record_response(db, tasting.guest.id, tasting.slide.id, {"value": 1})
    record_response(db, tasting.host.id, tasting.slide.id, {"value": 2})

    assert [r.answer_json for r in responses_for_participant(db, tasting.guest.id)] == [{"value": 1}]
    assert len(responses_for_slide(db, tasting.slide.id)) == 2
    with pytest.raises(ParticipantNotFound):
        responses_for_participant(db, uuid.uuid4())
    with pytest.raises(NotFound):
        responses_for_slide(db, "nope")
