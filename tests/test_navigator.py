"""Tests for the playback plan, navigator and persisted playback cursor."""

import uuid

import pytest

from knowyourgrape.aggregator import SlideAggregator
from knowyourgrape.errors import ContentUnavailable, ParticipantNotFound, SlideIndexOutOfRange
from knowyourgrape.models import Participant, SectionType, SlideType
from knowyourgrape.navigator import (
    COMPLETE_CURSOR, PlaybackNavigator, PlaybackService, StepKind, build_playback_plan,
)
from knowyourgrape.records import SlideRecord, WineRecord


def make_sequence(wine_counts=(5, 4, 6), intro_on_first_wine=False):
    wines = [WineRecord(id=uuid.uuid4(), position=number) for number in range(1, len(wine_counts) + 1)]
    slides = [SlideRecord(id=uuid.uuid4(), package_wine_id=wines[0].id if intro_on_first_wine else None,
                          position=1000, type=SlideType.INTERLUDE, section_type=SectionType.INTRO,
                          payload={"title": "Welcome", "is_package_intro": True})]
    for wine, count in zip(wines, wine_counts):
        slides.extend(SlideRecord(id=uuid.uuid4(), package_wine_id=wine.id, position=(i + 1) * 1000,
                                  section_type=SectionType.DEEP_DIVE)
                      for i in range(count))
    return wines, SlideAggregator().build("pkg", wines, slides)


class TestPlaybackPlan:
    def test_three_wine_flow(self):
        wines, sequence = make_sequence()

        steps = build_playback_plan(sequence)

        assert [step.kind for step in steps] == (
            [StepKind.PACKAGE_INTRO, StepKind.WINE_INTRO]
            + [StepKind.SLIDE] * 5
            + [StepKind.WINE_TRANSITION, StepKind.WINE_INTRO]
            + [StepKind.SLIDE] * 4
            + [StepKind.WINE_TRANSITION, StepKind.WINE_INTRO]
            + [StepKind.SLIDE] * 6
            + [StepKind.COMPLETE]
        )
        assert [step.wine_id for step in steps if step.kind == StepKind.WINE_INTRO] == [w.id for w in wines]
        transitions = [step for step in steps if step.kind == StepKind.WINE_TRANSITION]
        assert [(t.from_wine_id, t.wine_id) for t in transitions] == [
            (wines[0].id, wines[1].id), (wines[1].id, wines[2].id),
        ]

    def test_first_wine_intro_not_skipped_when_intro_carries_its_wine_id(self):
        wines, sequence = make_sequence((2, 2), intro_on_first_wine=True)

        steps = build_playback_plan(sequence)

        assert steps[0].kind == StepKind.PACKAGE_INTRO
        assert steps[1].kind == StepKind.WINE_INTRO
        assert steps[1].wine_id == wines[0].id

    def test_every_slide_appears_once(self):
        _, sequence = make_sequence()
        indexes = [step.slide_index for step in build_playback_plan(sequence) if step.slide_index is not None]
        assert indexes == list(range(len(sequence)))


class TestPlaybackNavigator:
    def test_state_at_sequence_length_is_complete(self):
        _, sequence = make_sequence()
        navigator = PlaybackNavigator(sequence)

        assert navigator.state_at_slide(len(sequence)).kind == StepKind.COMPLETE

    @pytest.mark.parametrize("index", [-1, 17, 100])
    def test_state_outside_sequence_raises(self, index):
        _, sequence = make_sequence()
        with pytest.raises(SlideIndexOutOfRange):
            PlaybackNavigator(sequence).state_at_slide(index)

    def test_advance_walks_to_complete_and_stays(self):
        _, sequence = make_sequence()
        navigator = PlaybackNavigator(sequence)

        for _ in range(len(navigator.steps) + 3):
            navigator.advance()

        assert navigator.is_complete
        assert navigator.cursor == len(navigator.steps) - 1

    def test_back_stops_at_start(self):
        _, sequence = make_sequence()
        navigator = PlaybackNavigator(sequence)
        navigator.back()
        assert navigator.cursor == 0

    def test_jump_to_slide(self):
        _, sequence = make_sequence()
        navigator = PlaybackNavigator(sequence)

        step = navigator.jump_to_slide(1)

        assert step.kind == StepKind.SLIDE
        assert navigator.cursor == 2
        assert navigator.describe()["slide"]["id"] == str(sequence[1].slide_id)

    def test_cursor_out_of_range_rejected(self):
        _, sequence = make_sequence((1,))
        with pytest.raises(SlideIndexOutOfRange):
            PlaybackNavigator(sequence, cursor=50)

    def test_transition_describes_both_wines(self):
        wines, sequence = make_sequence((1, 1))
        navigator = PlaybackNavigator(sequence)
        navigator.cursor = [s.kind for s in navigator.steps].index(StepKind.WINE_TRANSITION)

        state = navigator.describe()

        assert state["kind"] == "wine_transition"
        assert state["fromWine"]["id"] == str(wines[0].id)
        assert state["wine"]["id"] == str(wines[1].id)
        assert state["slide"] is None


class TestPlaybackService:
    def test_advance_persists_cursor_and_slide(self, db, make_package, make_session, cache):
        content = make_package((2, 2))
        tasting = make_session(content.package)
        service = PlaybackService(cache)

        service.advance(db, tasting.guest.id)
        state = service.advance(db, tasting.guest.id)

        guest = db.get(Participant, tasting.guest.id)
        assert state["kind"] == "slide"
        assert guest.progress_ptr == 2
        assert guest.current_slide_id == content.slides[content.wines[0].id][0].id

    def test_resume_follows_slide_after_content_change(self, db, make_package, make_session, cache):
        content = make_package((2, 2))
        tasting = make_session(content.package)
        target = content.slides[content.wines[1].id][1]
        guest = db.get(Participant, tasting.guest.id)
        guest.current_slide_id = target.id
        guest.progress_ptr = 1
        db.commit()

        state = PlaybackService(cache).state(db, guest.id)

        assert state["slide"]["id"] == str(target.id)

    def test_stale_cursor_reports_content_unavailable(self, db, make_package, make_session, cache):
        content = make_package((2,))
        tasting = make_session(content.package)
        guest = db.get(Participant, tasting.guest.id)
        guest.progress_ptr = 999
        db.commit()

        with pytest.raises(ContentUnavailable):
            PlaybackService(cache).state(db, guest.id)

    def test_unknown_participant(self, db, cache):
        with pytest.raises(ParticipantNotFound):
            PlaybackService(cache).state(db, uuid.uuid4())

    def test_finished_participant_stays_complete_after_slide_deleted(self, db, make_package, make_session, cache):
        content = make_package((2, 2))
        tasting = make_session(content.package)
        service = PlaybackService(cache)
        service.jump(db, tasting.guest.id, 5)
        assert db.get(Participant, tasting.guest.id).progress_ptr == COMPLETE_CURSOR

        db.delete(content.slides[content.wines[1].id][0])
        db.commit()
        cache.invalidate_package(content.package.id)

        state = service.state(db, tasting.guest.id)
        assert state["kind"] == "complete"
        assert state["totalCount"] == 4

        state = service.back(db, tasting.guest.id)
        assert state["kind"] == "slide"
        assert state["slide"]["id"] == str(content.slides[content.wines[1].id][1].id)
