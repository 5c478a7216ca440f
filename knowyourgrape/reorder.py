"""
Reorder reconciliation for the package editor

A drag inside one wine section arrives as the section's new id order.
Slides that can stay where they are (a longest increasing run of their
current positions) keep their rows untouched; every other slide gets a
position between its new neighbours from the allocator. Writes happen
inside a per-wine critical section and are applied in two passes so the
``(package_wine_id, position)`` unique constraint never sees a transient
duplicate.
"""
import logging
import threading
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError

from .aggregator import refresh_global_positions
from .errors import DuplicatePosition, InvalidMove, NotFound, PositionExhausted, ValidationFailed
from .models import Package, PackageWine, Slide
from .positions import allocate_between, find_duplicate_positions, renumber
from .records import SlideRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionUpdate:
    slide_id: uuid.UUID
    position: int

    def to_dict(self):
        return {'slideId': str(self.slide_id), 'position': self.position}


def _scope_key(record: SlideRecord):
    return (record.package_wine_id, record.section)


def _kept_indices(positions: Sequence[int], pinned_out: Iterable[int] = ()) -> set:
    """
    Indices of a longest strictly increasing subsequence of ``positions``.

    Ties between equally long runs keep the larger positions, which leaves
    the dragged slide as the one that moves for a swap of two neighbours.
    Indices in ``pinned_out`` are never kept.
    """
    pinned_out = set(pinned_out)
    n = len(positions)
    length = [0] * n
    parent = [-1] * n
    for i in range(n):
        if i in pinned_out:
            continue
        length[i] = 1
        for j in range(i):
            if j in pinned_out or positions[j] >= positions[i]:
                continue
            better = length[j] + 1 > length[i]
            same = length[j] + 1 == length[i] and parent[i] >= 0 and positions[j] > positions[parent[i]]
            if better or same:
                length[i] = length[j] + 1
                parent[i] = j

    best = -1
    for i in range(n):
        if length[i] == 0:
            continue
        if best < 0 or length[i] > length[best] or (length[i] == length[best] and positions[i] > positions[best]):
            best = i

    kept = set()
    while best >= 0:
        kept.add(best)
        best = parent[best]
    return kept


class ReorderReconciler:
    """Turns a desired in-section order into the minimal set of position writes"""

    def reconcile(self, ordered_ids: Sequence, wine_slides: Iterable[SlideRecord],
                  moved_slide_id=None, expected_positions: Optional[Dict] = None) -> List[PositionUpdate]:
        """
        Args:
            ordered_ids: every slide id of one (wine, section) scope, in the new order
            wine_slides: canonical records for all slides sharing the wine (or all package-level slides)
            moved_slide_id: the slide the user dragged, if the client knows it
            expected_positions: positions the client believed were current, by slide id

        Raises:
            InvalidMove: ids outside the scope, an incomplete scope, or a welcome slide leaving first place
            DuplicatePosition: stale client positions, or the result would collide
        """
        wine_slides = list(wine_slides)
        by_id = {str(record.id): record for record in wine_slides}
        ordered_ids = [str(slide_id) for slide_id in ordered_ids]

        if not ordered_ids:
            return []
        if len(set(ordered_ids)) != len(ordered_ids):
            raise InvalidMove("Desired order lists a slide more than once")

        unknown = [slide_id for slide_id in ordered_ids if slide_id not in by_id]
        if unknown:
            raise InvalidMove("Slides can only be reordered within their own wine", slide_ids=unknown)

        scope_key = _scope_key(by_id[ordered_ids[0]])
        crossing = [slide_id for slide_id in ordered_ids if _scope_key(by_id[slide_id]) != scope_key]
        if crossing:
            raise InvalidMove("Slides can only be reordered within their own section", slide_ids=crossing)

        scope = [record for record in wine_slides if _scope_key(record) == scope_key]
        missing = sorted(str(record.id) for record in scope if str(record.id) not in set(ordered_ids))
        if missing:
            raise InvalidMove("Desired order must list every slide in the section", slide_ids=missing)

        if expected_positions:
            stale = [
                str(slide_id) for slide_id, position in expected_positions.items()
                if str(slide_id) in by_id and by_id[str(slide_id)].position != position
            ]
            if stale:
                raise DuplicatePosition("Slide positions changed since they were loaded; refresh and retry",
                                        slide_ids=stale)

        welcome_count = sum(1 for record in scope if record.is_welcome)
        if welcome_count:
            head = ordered_ids[:welcome_count]
            if not all(by_id[slide_id].is_welcome for slide_id in head):
                raise InvalidMove("The welcome slide must stay first", slide_ids=head)

        current_order = [str(record.id) for record in sorted(scope, key=lambda r: (r.position, str(r.id)))]
        positions = [by_id[slide_id].position for slide_id in ordered_ids]
        if ordered_ids == current_order and len(set(positions)) == len(positions):
            return []

        outside = {record.position for record in wine_slides if _scope_key(record) != scope_key}

        try:
            final = self._allocate(ordered_ids, positions, outside, moved_slide_id)
        except PositionExhausted as e:
            logger.info("Position gap exhausted (%s); renumbering %d slides", e.message, len(ordered_ids))
            final = dict(zip(ordered_ids, renumber(len(ordered_ids), taken=outside)))

        updates = [
            PositionUpdate(slide_id=by_id[slide_id].id, position=final[slide_id])
            for slide_id in ordered_ids
            if final[slide_id] != by_id[slide_id].position
        ]
        self._check_unique(wine_slides, updates)
        return updates

    def _allocate(self, ordered_ids, positions, outside, moved_slide_id):
        pinned_out = []
        if moved_slide_id is not None and str(moved_slide_id) in ordered_ids:
            pinned_out.append(ordered_ids.index(str(moved_slide_id)))
        kept = _kept_indices(positions, pinned_out)

        final = {}
        taken = set(outside)
        for index in kept:
            final[ordered_ids[index]] = positions[index]
            taken.add(positions[index])

        prev = None
        for index, slide_id in enumerate(ordered_ids):
            if index in kept:
                prev = positions[index]
                continue
            following = next((positions[k] for k in range(index + 1, len(ordered_ids)) if k in kept), None)
            position = allocate_between(prev, following, taken)
            final[slide_id] = position
            taken.add(position)
            prev = position
        return final

    def _check_unique(self, wine_slides, updates):
        changed = {str(update.slide_id): update.position for update in updates}
        final_positions = [changed.get(str(record.id), record.position) for record in wine_slides]
        duplicates = find_duplicate_positions(final_positions)
        if duplicates:
            raise DuplicatePosition("Reorder would give two slides the same position", positions=duplicates)


_local_locks = defaultdict(threading.Lock)
_local_locks_guard = threading.Lock()


def _advisory_key(scope_id) -> int:
    return uuid.UUID(str(scope_id)).int & ((1 << 63) - 1)


@contextmanager
def wine_lock(db, scope_id):
    """
    Serialize position writes for one wine (or one package's package-level slides).

    PostgreSQL takes a transaction-scoped advisory lock released on commit or
    rollback; other dialects fall back to a process-local lock held for the block.
    """
    if db.get_bind().dialect.name == 'postgresql':
        db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": _advisory_key(scope_id)})
        yield
        return

    with _local_locks_guard:
        lock = _local_locks[str(scope_id)]
    with lock:
        yield


def scope_owner(slide: Slide):
    """Lock and uniqueness scope of a slide: its wine, or its package for package-level slides"""
    return slide.package_wine_id if slide.package_wine_id is not None else slide.package_id


def load_scope_records(db, slide: Slide) -> List[SlideRecord]:
    if slide.package_wine_id is not None:
        query = select(Slide).where(Slide.package_wine_id == slide.package_wine_id)
    else:
        query = select(Slide).where(Slide.package_id == slide.package_id, Slide.package_wine_id.is_(None))
    return [SlideRecord.from_model(row) for row in db.execute(query).scalars().all()]


def check_welcome_first(records: Iterable[SlideRecord], changed: Dict):
    """
    Raise ``InvalidMove`` if a welcome slide would no longer lead its section.

    Only sections holding a slide from ``changed`` (slide id to new position)
    are checked.
    """
    records = [
        record.with_position(changed[record.id]) if record.id in changed else record
        for record in records
    ]
    touched = {_scope_key(record) for record in records if record.id in changed}
    for key in touched:
        scope = sorted((record for record in records if _scope_key(record) == key),
                       key=lambda r: (r.position, str(r.id)))
        welcome_count = sum(1 for record in scope if record.is_welcome)
        head = scope[:welcome_count]
        if not all(record.is_welcome for record in head):
            raise InvalidMove("The welcome slide must stay first", slide_ids=[str(record.id) for record in head])


def apply_position_updates(db, updates: Sequence[PositionUpdate]):
    """
    Write a batch of positions as one unit.

    Every touched slide first moves to a unique negative placeholder, then to
    its final value, so swaps inside the batch never collide. The caller owns
    the transaction.
    """
    if not updates:
        return []

    ids = [update.slide_id for update in updates]
    slides = {slide.id: slide for slide in db.execute(select(Slide).where(Slide.id.in_(ids))).scalars().all()}
    missing = [str(slide_id) for slide_id in ids if slide_id not in slides]
    if missing:
        raise NotFound("Slides not found", slide_ids=missing)

    try:
        for offset, update in enumerate(updates, start=1):
            slides[update.slide_id].position = -offset
        db.flush()
        for update in updates:
            slides[update.slide_id].position = update.position
        db.flush()
    except IntegrityError as e:
        raise DuplicatePosition("Position batch collides with an existing slide", error=str(e.orig))

    for owner in {scope_owner(slide) for slide in slides.values()}:
        sample = next(slide for slide in slides.values() if scope_owner(slide) == owner)
        duplicates = find_duplicate_positions(record.position for record in load_scope_records(db, sample))
        if duplicates:
            raise DuplicatePosition("Position batch would duplicate positions", positions=duplicates)

    return [slides[slide_id] for slide_id in ids]


def refresh_package_globals(db, package_ids):
    for package_id in package_ids:
        package = db.get(Package, package_id)
        if package is not None:
            refresh_global_positions(db, package)


def move_wine(db, wine: PackageWine, new_position) -> List[PackageWine]:
    """
    Move ``wine`` to the 1-based slot ``new_position`` of its package.

    The package's wines are renumbered 1..n in the new order through negative
    placeholders, like slide batches. The caller owns the transaction.
    """
    if isinstance(new_position, bool) or not isinstance(new_position, int):
        raise ValidationFailed("position must be an integer")
    wines = db.execute(
        select(PackageWine).where(PackageWine.package_id == wine.package_id)
        .order_by(PackageWine.position, PackageWine.id)
    ).scalars().all()
    if not 1 <= new_position <= len(wines):
        raise ValidationFailed(f"position must be between 1 and {len(wines)}", position=new_position)

    ordered = [other for other in wines if other.id != wine.id]
    ordered.insert(new_position - 1, wine)
    try:
        for offset, item in enumerate(ordered, start=1):
            item.position = -offset
        db.flush()
        for offset, item in enumerate(ordered, start=1):
            item.position = offset
        db.flush()
    except IntegrityError as e:
        raise DuplicatePosition("Wine positions changed while moving; refresh and retry", error=str(e.orig))
    logger.info("Moved wine %s to position %d", wine.id, new_position)
    return ordered


def parse_updates(raw_updates) -> List[PositionUpdate]:
    """Validate ``[{slideId, position}]`` request items"""
    updates = []
    seen = set()
    for item in raw_updates or []:
        slide_id = item.get('slideId') if isinstance(item, dict) else None
        position = item.get('position') if isinstance(item, dict) else None
        try:
            slide_uuid = uuid.UUID(str(slide_id))
        except (TypeError, ValueError):
            raise ValidationFailed(f"Invalid slideId: {slide_id}")
        if isinstance(position, bool) or not isinstance(position, int) or position <= 0:
            raise ValidationFailed(f"Position for slide {slide_id} must be a positive integer")
        if slide_uuid in seen:
            raise ValidationFailed(f"Slide {slide_id} appears twice in the batch")
        seen.add(slide_uuid)
        updates.append(PositionUpdate(slide_id=slide_uuid, position=position))
    if not updates:
        raise ValidationFailed("No updates provided")
    return updates


class ReorderService:
    """Database-facing reorder operations; every success invalidates cached sequences"""

    def __init__(self, cache=None, reconciler=None):
        self.cache = cache
        self.reconciler = reconciler or ReorderReconciler()

    def _invalidate(self, package_ids):
        if self.cache is not None:
            for package_id in package_ids:
                self.cache.invalidate_package(package_id)

    def reconcile_and_apply(self, db, ordered_ids, moved_slide_id=None, expected_positions=None,
                            wine_id=None) -> List[PositionUpdate]:
        if not ordered_ids:
            raise ValidationFailed("orderedSlideIds must not be empty")
        try:
            first_id = uuid.UUID(str(ordered_ids[0]))
        except (TypeError, ValueError):
            raise ValidationFailed(f"Invalid slide id: {ordered_ids[0]}")
        anchor = db.get(Slide, first_id)
        if anchor is None:
            raise NotFound(f"Slide {ordered_ids[0]} not found")
        if wine_id is not None and anchor.package_wine_id != wine_id:
            raise InvalidMove("Slides can only be reordered within their own wine", slide_ids=[str(first_id)])

        package_id = anchor.package_id
        with wine_lock(db, scope_owner(anchor)):
            records = load_scope_records(db, anchor)
            updates = self.reconciler.reconcile(ordered_ids, records, moved_slide_id, expected_positions)
            apply_position_updates(db, updates)
            if updates:
                refresh_package_globals(db, [package_id])
            db.commit()

        logger.info("Reordered %d slides in scope %s", len(updates), scope_owner(anchor))
        self._invalidate([package_id])
        return updates

    def apply_batch(self, db, raw_updates) -> List[PositionUpdate]:
        updates = parse_updates(raw_updates)
        slides = db.execute(
            select(Slide).where(Slide.id.in_([update.slide_id for update in updates]))
        ).scalars().all()
        found = {slide.id: slide for slide in slides}
        missing = [str(update.slide_id) for update in updates if update.slide_id not in found]
        if missing:
            raise NotFound("Slides not found", slide_ids=missing)

        owners = sorted({scope_owner(slide) for slide in slides}, key=str)
        anchors = {scope_owner(slide): slide for slide in slides}
        package_ids = {slide.package_id for slide in slides}
        changed = {update.slide_id: update.position for update in updates}

        with _locks(db, owners):
            for owner in owners:
                records = load_scope_records(db, anchors[owner])
                final = [changed.get(record.id, record.position) for record in records]
                duplicates = find_duplicate_positions(final)
                if duplicates:
                    raise DuplicatePosition("Batch would give two slides the same position",
                                            positions=duplicates)
                check_welcome_first(records, changed)
            apply_position_updates(db, updates)
            refresh_package_globals(db, sorted(package_ids, key=str))
            db.commit()

        self._invalidate(package_ids)
        return updates

    def set_position(self, db, slide_id, new_position) -> Slide:
        if isinstance(new_position, bool) or not isinstance(new_position, (int, float)) or new_position <= 0:
            raise ValidationFailed("newPosition must be a positive number")
        if isinstance(new_position, float) and not new_position.is_integer():
            raise ValidationFailed("newPosition must be a whole number")
        new_position = int(new_position)

        slide = db.get(Slide, slide_id)
        if slide is None:
            raise NotFound(f"Slide {slide_id} not found")

        with wine_lock(db, scope_owner(slide)):
            siblings = load_scope_records(db, slide)
            if any(record.position == new_position and record.id != slide.id for record in siblings):
                raise ValidationFailed(f"Position {new_position} is already used in this wine")
            check_welcome_first(siblings, {slide.id: new_position})
            slide.position = new_position
            refresh_package_globals(db, [slide.package_id])
            db.commit()

        self._invalidate([slide.package_id])
        return slide


@contextmanager
def _locks(db, owners):
    if not owners:
        yield
        return
    with wine_lock(db, owners[0]):
        with _locks(db, owners[1:]):
            yield
