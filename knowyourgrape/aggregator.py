"""
Slide aggregation: one deterministic, package-wide slide order

The order is recomputed from stored rows on every build:

1. package intro slides, by ``(position, id)``
2. wines in session-selection order (included only) or package order
3. each wine's slides by ``(section rank, position, id)``

The slide id is the final tie-break, so two slides sharing a position
still sort the same way on every request. ``global_position`` is never read;
it is only rewritten from the built order for clients that still display it.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy import select

from .errors import SequenceIntegrityError
from .models import Package, PackageWine, Slide, SessionWineSelection, Participant
from .positions import POSITION_GAP
from .records import SlideRecord, WineRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionRecord:
    package_wine_id: Any
    position: int
    is_included: bool = True


@dataclass(frozen=True)
class SequencedSlide:
    """A slide at its effective playback index"""
    playback_index: int
    slide: SlideRecord
    wine: Optional[WineRecord]

    @property
    def slide_id(self):
        return self.slide.id

    @property
    def wine_id(self):
        return self.wine.id if self.wine is not None else None

    @property
    def is_package_intro(self):
        return self.wine is None

    def to_dict(self):
        data = self.slide.to_dict()
        data['playbackIndex'] = self.playback_index
        data['wineInfo'] = None
        if self.wine is not None:
            info = self.wine.to_dict()
            data['wineInfo'] = {
                'id': str(self.wine.id),
                'wineName': self.wine.wine_name,
                'wineDescription': info.get('wineDescription'),
                'wineImageUrl': info.get('wineImageUrl'),
                'position': self.wine.position,
            }
        return data


@dataclass(frozen=True)
class SlideSequence:
    """Fully materialised playback order for one package (and optional session)"""
    package_id: Any
    package: Dict[str, Any]
    wines: Tuple[WineRecord, ...]
    slides: Tuple[SequencedSlide, ...]
    total_count: int

    def __len__(self):
        return len(self.slides)

    def __getitem__(self, index):
        return self.slides[index]

    def __iter__(self):
        return iter(self.slides)

    def index_of(self, slide_id) -> Optional[int]:
        for item in self.slides:
            if item.slide_id == slide_id:
                return item.playback_index
        return None

    def slide_ids(self):
        return [str(item.slide_id) for item in self.slides]

    def to_dict(self):
        return {
            'package': self.package,
            'wines': [wine.to_dict() for wine in self.wines],
            'slides': [item.to_dict() for item in self.slides],
            'totalCount': self.total_count,
        }


def slide_sort_key(slide: SlideRecord):
    return (slide.section_rank, slide.position, str(slide.id))


def wine_sort_key(wine: WineRecord):
    return (wine.position, str(wine.id))


class SlideAggregator:
    """Builds the package-wide slide order from stored records"""

    def order_wines(self, wines: Iterable[WineRecord], selections: Optional[Iterable[SelectionRecord]] = None):
        wines = list(wines)
        selections = list(selections or [])
        if not selections:
            return sorted(wines, key=wine_sort_key)

        by_id = {wine.id: wine for wine in wines}
        included = sorted(
            (s for s in selections if s.is_included and s.package_wine_id in by_id),
            key=lambda s: (s.position, str(s.package_wine_id)),
        )
        return [by_id[s.package_wine_id] for s in included]

    def build(self, package_id, wines: Iterable[WineRecord], slides: Iterable[SlideRecord],
              selections: Optional[Iterable[SelectionRecord]] = None,
              is_host: bool = True, package: Optional[Dict[str, Any]] = None) -> SlideSequence:
        ordered_wines = self.order_wines(wines, selections)
        included_ids = {wine.id for wine in ordered_wines}

        intro_slides = []
        slides_by_wine: Dict[Any, list] = {}
        visible = unmatched = 0
        for slide in slides:
            if not is_host and slide.is_host_only:
                continue
            visible += 1
            if slide.is_package_intro:
                intro_slides.append(slide)
            else:
                if slide.package_wine_id not in included_ids:
                    unmatched += 1
                slides_by_wine.setdefault(slide.package_wine_id, []).append(slide)

        entries = [(slide, None) for slide in sorted(intro_slides, key=lambda s: (s.position, str(s.id)))]
        for wine in ordered_wines:
            for slide in sorted(slides_by_wine.get(wine.id, []), key=slide_sort_key):
                entries.append((slide, wine))

        sequenced = tuple(
            SequencedSlide(playback_index=index, slide=slide, wine=wine)
            for index, (slide, wine) in enumerate(entries)
        )
        # every visible slide plays exactly once unless its wine is excluded
        expected = visible - unmatched
        if len(sequenced) != expected or len({item.slide_id for item in sequenced}) != len(sequenced):
            raise SequenceIntegrityError(
                f"Aggregated {len(sequenced)} slides, expected {expected}",
                package_id=str(package_id),
            )

        return SlideSequence(
            package_id=package_id,
            package=package or {'id': str(package_id)},
            wines=tuple(ordered_wines),
            slides=sequenced,
            total_count=len(sequenced),
        )


class SlideSequenceCache:
    """In-process cache of built sequences; every content mutation must invalidate its package"""

    def __init__(self, enabled=True):
        self.enabled = enabled
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, key):
        if not self.enabled:
            return None
        with self._lock:
            return self._entries.get(key)

    def put(self, key, sequence):
        if self.enabled:
            with self._lock:
                self._entries[key] = sequence

    def invalidate_package(self, package_id):
        with self._lock:
            stale = [key for key in self._entries if key[0] == package_id]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug("Invalidated %d cached sequences for package %s", len(stale), package_id)

    def clear(self):
        with self._lock:
            self._entries.clear()


def load_sequence(db, package: Package, participant: Optional[Participant] = None,
                  cache: Optional[SlideSequenceCache] = None, bypass_cache: bool = False) -> SlideSequence:
    """Load rows for a package (and the participant's session overrides) and aggregate them"""
    is_host = participant.is_host if participant is not None else True
    session_id = participant.session_id if participant is not None else None
    key = (package.id, session_id, is_host)

    if cache is not None and not bypass_cache:
        cached = cache.get(key)
        if cached is not None:
            return cached

    wines = db.execute(
        select(PackageWine).where(PackageWine.package_id == package.id)
    ).scalars().all()
    slides = db.execute(
        select(Slide).where(Slide.package_id == package.id)
    ).scalars().all()
    selections = []
    if session_id is not None:
        selections = db.execute(
            select(SessionWineSelection).where(SessionWineSelection.session_id == session_id)
        ).scalars().all()

    sequence = SlideAggregator().build(
        package.id,
        [WineRecord.from_model(wine) for wine in wines],
        [SlideRecord.from_model(slide) for slide in slides],
        [SelectionRecord(s.package_wine_id, s.position, s.is_included) for s in selections],
        is_host=is_host,
        package=package.to_dict(),
    )
    if cache is not None:
        cache.put(key, sequence)
    return sequence


def refresh_global_positions(db, package: Package) -> int:
    """
    Rewrite every slide's legacy ``global_position`` from the aggregated host order.

    Positions are ``(playback index + 1) * POSITION_GAP`` so they stay unique
    within the package. Pending changes are flushed first; the caller commits.
    """
    db.flush()
    sequence = load_sequence(db, package, bypass_cache=True)
    slides = {
        slide.id: slide
        for slide in db.execute(select(Slide).where(Slide.package_id == package.id)).scalars().all()
    }
    for item in sequence:
        slides[item.slide_id].global_position = (item.playback_index + 1) * POSITION_GAP
    return len(sequence)
