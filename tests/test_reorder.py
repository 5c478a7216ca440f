"""Tests for reorder reconciliation and atomic position writes."""

import random
import uuid

import pytest

from knowyourgrape.aggregator import load_sequence
from knowyourgrape.errors import DuplicatePosition, InvalidMove, ValidationFailed
from knowyourgrape.models import SectionType, Slide, SlideType
from knowyourgrape.positions import allocate_between
from knowyourgrape.records import SlideRecord
from knowyourgrape.reorder import (
    PositionUpdate, ReorderReconciler, ReorderService, apply_position_updates, parse_updates,
)

WINE = uuid.uuid4()


def record(position, section=SectionType.DEEP_DIVE, **kwargs):
    return SlideRecord(id=uuid.uuid4(), package_wine_id=kwargs.pop("wine", WINE), position=position,
                       section_type=section, **kwargs)


def ids(*records):
    return [str(r.id) for r in records]


def apply(records, updates):
    changed = {update.slide_id: update.position for update in updates}
    return [r.with_position(changed[r.id]) if r.id in changed else r for r in records]


class TestReorderReconciler:
    def test_drag_between_neighbours_moves_only_the_dragged_slide(self):
        a, b, c = record(10), record(20), record(30)

        updates = ReorderReconciler().reconcile(ids(b, a, c), [a, b, c])

        assert updates == [PositionUpdate(a.id, 25)]

    def test_unchanged_order_produces_no_updates(self):
        a, b = record(1000), record(2000)
        assert ReorderReconciler().reconcile(ids(a, b), [a, b]) == []

    def test_swap_keeps_larger_position_without_hint(self):
        a, b = record(1000), record(2000)

        updates = ReorderReconciler().reconcile(ids(b, a), [a, b])

        assert updates == [PositionUpdate(a.id, 3000)]

    def test_moved_hint_is_the_slide_that_moves(self):
        a, b = record(1000), record(2000)

        updates = ReorderReconciler().reconcile(ids(b, a), [a, b], moved_slide_id=str(b.id))

        assert updates == [PositionUpdate(b.id, 500)]

    def test_avoids_positions_used_by_other_sections(self):
        a, b, c = record(10), record(20), record(30)
        other = record(25, section=SectionType.ENDING)

        updates = ReorderReconciler().reconcile(ids(b, a, c), [a, b, c, other])

        assert updates == [PositionUpdate(a.id, 24)]

    def test_exhausted_gap_renumbers_the_section(self):
        a, b, c = record(1), record(2), record(3)

        updates = ReorderReconciler().reconcile(ids(c, a, b), [a, b, c])
        result = sorted(apply([a, b, c], updates), key=lambda r: r.position)

        assert [r.id for r in result] == [c.id, a.id, b.id]
        assert len({r.position for r in result}) == 3

    def test_welcome_slide_cannot_move_down(self):
        welcome = record(1000, section=SectionType.INTRO, type=SlideType.INTERLUDE,
                         payload={"title": "Welcome to the tasting"})
        question = record(2000, section=SectionType.INTRO)

        with pytest.raises(InvalidMove) as excinfo:
            ReorderReconciler().reconcile(ids(question, welcome), [welcome, question])
        assert excinfo.value.code == "INVALID_MOVE"

    def test_package_intro_slide_cannot_move_down(self):
        intro = record(1000, section=SectionType.INTRO, payload={"title": "Hello", "is_package_intro": True})
        question = record(2000, section=SectionType.INTRO)

        with pytest.raises(InvalidMove):
            ReorderReconciler().reconcile(ids(question, intro), [intro, question])

    def test_cross_section_move_rejected(self):
        intro = record(1000, section=SectionType.INTRO)
        deep = record(2000)

        with pytest.raises(InvalidMove):
            ReorderReconciler().reconcile(ids(deep, intro), [intro, deep])

    def test_slide_from_another_wine_rejected(self):
        a = record(1000)
        foreign = record(1500, wine=uuid.uuid4())

        with pytest.raises(InvalidMove):
            ReorderReconciler().reconcile(ids(foreign, a), [a])

    def test_incomplete_section_rejected(self):
        a, b, c = record(1000), record(2000), record(3000)

        with pytest.raises(InvalidMove):
            ReorderReconciler().reconcile(ids(b, a), [a, b, c])

    def test_stale_expected_positions_rejected(self):
        a, b = record(1000), record(2000)

        with pytest.raises(DuplicatePosition) as excinfo:
            ReorderReconciler().reconcile(ids(b, a), [a, b], expected_positions={str(a.id): 1500})
        assert excinfo.value.code == "DUPLICATE_POSITION"

    def test_existing_duplicates_are_repaired(self):
        a, b = record(2110), record(2110)
        ordered = sorted([a, b], key=lambda r: str(r.id))

        updates = ReorderReconciler().reconcile(ids(*reversed(ordered)), [a, b])
        result = apply([a, b], updates)

        assert len({r.position for r in result}) == 2

    def test_random_moves_and_inserts_keep_positions_unique(self):
        rng = random.Random(20240611)
        reconciler = ReorderReconciler()
        slides = [record((i + 1) * 1000, section=rng.choice([SectionType.DEEP_DIVE, SectionType.ENDING]))
                  for i in range(6)]

        for _ in range(300):
            section = rng.choice([SectionType.DEEP_DIVE, SectionType.ENDING])
            scope = sorted((r for r in slides if r.section == section), key=lambda r: (r.position, str(r.id)))

            if rng.random() < 0.2 or len(scope) < 2:
                prev = scope[-1].position if scope else None
                taken = {r.position for r in slides}
                slides.append(record(allocate_between(prev, None, taken), section=section))
                continue

            order = [r.id for r in scope]
            moved = order.pop(rng.randrange(len(order)))
            order.insert(rng.randrange(len(order) + 1), moved)
            hint = str(moved) if rng.random() < 0.5 else None

            updates = reconciler.reconcile([str(i) for i in order], slides, moved_slide_id=hint)
            slides = apply(slides, updates)

            positions = [r.position for r in slides]
            assert len(set(positions)) == len(positions)
            assert all(position > 0 for position in positions)
            reordered = sorted((r for r in slides if r.section == section), key=lambda r: r.position)
            assert [r.id for r in reordered] == order


def test_parse_updates_validates_items():
    slide_id = str(uuid.uuid4())
    assert parse_updates([{"slideId": slide_id, "position": 5}]) == [PositionUpdate(uuid.UUID(slide_id), 5)]

    for bad in ([], [{"slideId": "nope", "position": 1}], [{"slideId": slide_id, "position": 0}],
                [{"slideId": slide_id, "position": 1}, {"slideId": slide_id, "position": 2}]):
        with pytest.raises(ValidationFailed):
            parse_updates(bad)


class TestPositionWrites:
    def test_swap_applies_without_constraint_violation(self, db, make_package):
        content = make_package((2,), intro=False)
        first, second = content.slides[content.wines[0].id]

        apply_position_updates(db, [PositionUpdate(first.id, 2000), PositionUpdate(second.id, 1000)])
        db.commit()

        assert db.get(Slide, first.id).position == 2000
        assert db.get(Slide, second.id).position == 1000

    def test_reconcile_and_apply_invalidates_cache(self, db, make_package, cache):
        content = make_package((3,), intro=False)
        wine = content.wines[0]
        a, b, c = content.slides[wine.id]
        before = load_sequence(db, content.package, cache=cache)

        updates = ReorderService(cache=cache).reconcile_and_apply(db, ids(b, a, c), wine_id=wine.id)

        assert updates == [PositionUpdate(a.id, 2500)]
        after = load_sequence(db, content.package, cache=cache)
        assert after is not before
        assert [item.slide_id for item in after] == [b.id, a.id, c.id]

    def test_batch_collision_is_rejected_and_nothing_changes(self, db, make_package, cache):
        content = make_package((3,), intro=False)
        a, b, c = content.slides[content.wines[0].id]

        with pytest.raises(DuplicatePosition):
            ReorderService(cache=cache).apply_batch(db, [
                {"slideId": str(a.id), "position": 5000},
                {"slideId": str(b.id), "position": 3000},
            ])
        db.rollback()

        assert [db.get(Slide, s.id).position for s in (a, b, c)] == [1000, 2000, 3000]

    def test_batch_rotation_is_applied_atomically(self, db, make_package, cache):
        content = make_package((3,), intro=False)
        a, b, c = content.slides[content.wines[0].id]

        ReorderService(cache=cache).apply_batch(db, [
            {"slideId": str(a.id), "position": 2000},
            {"slideId": str(b.id), "position": 3000},
            {"slideId": str(c.id), "position": 1000},
        ])

        assert [db.get(Slide, s.id).position for s in (c, a, b)] == [1000, 2000, 3000]
        assert [db.get(Slide, s.id).global_position for s in (c, a, b)] == [1000, 2000, 3000]

    def test_set_position_rejects_collision(self, db, make_package, cache):
        content = make_package((2,), intro=False)
        a, b = content.slides[content.wines[0].id]

        with pytest.raises(ValidationFailed):
            ReorderService(cache=cache).set_position(db, a.id, 2000)
        with pytest.raises(ValidationFailed):
            ReorderService(cache=cache).set_position(db, a.id, -5)

        slide = ReorderService(cache=cache).set_position(db, a.id, 2500)
        assert slide.position == 2500


@pytest.fixture
def welcomed_wine(db, make_package):
    content = make_package((2,), intro=False, section=SectionType.INTRO)
    wine = content.wines[0]
    welcome = Slide(package_id=content.package.id, package_wine_id=wine.id, position=500,
                    type=SlideType.INTERLUDE, section_type=SectionType.INTRO,
                    payload_json={"title": "Welcome to the Merlot"})
    db.add(welcome)
    db.commit()
    return content, welcome


class TestWelcomeSlideWrites:
    def test_batch_cannot_push_welcome_down(self, db, welcomed_wine, cache):
        content, welcome = welcomed_wine
        first, second = content.slides[content.wines[0].id]

        with pytest.raises(InvalidMove):
            ReorderService(cache=cache).apply_batch(db, [{"slideId": str(welcome.id), "position": 1500}])
        db.rollback()

        assert db.get(Slide, welcome.id).position == 500

    def test_batch_cannot_put_a_slide_ahead_of_welcome(self, db, welcomed_wine, cache):
        content, welcome = welcomed_wine
        first, second = content.slides[content.wines[0].id]

        with pytest.raises(InvalidMove):
            ReorderService(cache=cache).apply_batch(db, [
                {"slideId": str(welcome.id), "position": 3000},
                {"slideId": str(second.id), "position": 100},
            ])
        db.rollback()

        assert [db.get(Slide, s.id).position for s in (welcome, first, second)] == [500, 1000, 2000]

    def test_set_position_keeps_welcome_first(self, db, welcomed_wine, cache):
        content, welcome = welcomed_wine
        first, second = content.slides[content.wines[0].id]
        service = ReorderService(cache=cache)

        with pytest.raises(InvalidMove):
            service.set_position(db, welcome.id, 2500)
        db.rollback()
        with pytest.raises(InvalidMove):
            service.set_position(db, second.id, 100)
        db.rollback()

        assert service.set_position(db, welcome.id, 900).position == 900
        assert service.set_position(db, second.id, 1500).position == 1500
