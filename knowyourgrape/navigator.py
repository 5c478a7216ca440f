"""
Per-participant playback over an aggregated slide sequence

The playback plan is the aggregated sequence with synthetic steps around
wine boundaries:

    PACKAGE_INTRO* -> WINE_INTRO(w1) -> SLIDE* -> WINE_TRANSITION(w1, w2)
        -> WINE_INTRO(w2) -> SLIDE* -> ... -> COMPLETE

Leaving package-level content is decided by the slide's package-intro
marker, never by comparing wine ids, so the first wine always gets its
introduction.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from sqlalchemy.orm import Session

from .aggregator import SlideSequence, SlideSequenceCache, load_sequence
from .errors import ContentUnavailable, ParticipantNotFound, SlideIndexOutOfRange
from .models import Participant, as_uuid, utcnow

logger = logging.getLogger(__name__)

# Saved cursor of a participant who finished; resumes at COMPLETE whatever the plan length
COMPLETE_CURSOR = -1


class StepKind(enum.Enum):
    PACKAGE_INTRO = "package_intro"
    WINE_INTRO = "wine_intro"
    SLIDE = "slide"
    WINE_TRANSITION = "wine_transition"
    COMPLETE = "complete"


@dataclass(frozen=True)
class PlaybackStep:
    kind: StepKind
    slide_index: Optional[int] = None
    wine_id: Any = None
    from_wine_id: Any = None
    # Slide a participant resumes at when this step is persisted
    anchor_slide_id: Any = None


def build_playback_plan(sequence: SlideSequence) -> Tuple[PlaybackStep, ...]:
    steps = []
    current_wine = None
    in_wines = False

    for item in sequence:
        if item.is_package_intro:
            steps.append(PlaybackStep(StepKind.PACKAGE_INTRO, slide_index=item.playback_index,
                                      anchor_slide_id=item.slide_id))
            continue

        if not in_wines:
            steps.append(PlaybackStep(StepKind.WINE_INTRO, wine_id=item.wine_id, anchor_slide_id=item.slide_id))
            in_wines = True
        elif item.wine_id != current_wine:
            steps.append(PlaybackStep(StepKind.WINE_TRANSITION, wine_id=item.wine_id, from_wine_id=current_wine,
                                      anchor_slide_id=item.slide_id))
            steps.append(PlaybackStep(StepKind.WINE_INTRO, wine_id=item.wine_id, anchor_slide_id=item.slide_id))
        current_wine = item.wine_id

        steps.append(PlaybackStep(StepKind.SLIDE, slide_index=item.playback_index, wine_id=item.wine_id,
                                  anchor_slide_id=item.slide_id))

    steps.append(PlaybackStep(StepKind.COMPLETE))
    return tuple(steps)


class PlaybackNavigator:
    """
    Cursor over a playback plan.

    ``cursor`` is a step index. Slide indexes passed to ``jump_to_slide`` and
    ``state_at_slide`` are positions in the aggregated sequence, where
    ``len(sequence)`` means the end of the tasting.
    """

    def __init__(self, sequence: SlideSequence, cursor: int = 0):
        self.sequence = sequence
        self.steps = build_playback_plan(sequence)
        if not 0 <= cursor < len(self.steps):
            raise SlideIndexOutOfRange(f"Cursor {cursor} outside 0..{len(self.steps) - 1}",
                                       cursor=cursor, steps=len(self.steps))
        self.cursor = cursor

    @property
    def state(self) -> PlaybackStep:
        return self.steps[self.cursor]

    @property
    def is_complete(self) -> bool:
        return self.state.kind == StepKind.COMPLETE

    def advance(self) -> PlaybackStep:
        if not self.is_complete:
            self.cursor += 1
        return self.state

    def back(self) -> PlaybackStep:
        if self.cursor > 0:
            self.cursor -= 1
        return self.state

    def _step_index_for_slide(self, index: int) -> int:
        if not 0 <= index <= len(self.sequence):
            raise SlideIndexOutOfRange(f"Slide index {index} outside 0..{len(self.sequence)}",
                                       index=index, total=len(self.sequence))
        if index == len(self.sequence):
            return len(self.steps) - 1
        for step_index, step in enumerate(self.steps):
            if step.slide_index == index:
                return step_index
        raise SlideIndexOutOfRange(f"Slide index {index} has no playback step", index=index)

    def state_at_slide(self, index: int) -> PlaybackStep:
        return self.steps[self._step_index_for_slide(index)]

    def jump_to_slide(self, index: int) -> PlaybackStep:
        self.cursor = self._step_index_for_slide(index)
        return self.state

    def step_index_for_slide_id(self, slide_id) -> Optional[int]:
        for step_index, step in enumerate(self.steps):
            if step.slide_index is not None and step.anchor_slide_id == slide_id:
                return step_index
        return None

    def slide_at(self, index: int):
        if not 0 <= index < len(self.sequence):
            raise SlideIndexOutOfRange(f"Slide index {index} outside 0..{len(self.sequence) - 1}",
                                       index=index, total=len(self.sequence))
        return self.sequence[index]

    def describe(self):
        step = self.state
        wines = {wine.id: wine for wine in self.sequence.wines}

        def wine_dict(wine_id):
            wine = wines.get(wine_id)
            return wine.to_dict() if wine is not None else None

        return {
            'kind': step.kind.value,
            'stepIndex': self.cursor,
            'totalSteps': len(self.steps),
            'slideIndex': step.slide_index,
            'totalCount': len(self.sequence),
            'slide': self.slide_at(step.slide_index).to_dict() if step.slide_index is not None else None,
            'wine': wine_dict(step.wine_id),
            'fromWine': wine_dict(step.from_wine_id),
        }


class PlaybackService:
    """Loads, moves and persists a participant's playback cursor"""

    def __init__(self, cache: Optional[SlideSequenceCache] = None):
        self.cache = cache

    def _participant(self, db: Session, participant_id) -> Participant:
        participant = None
        participant_uuid = as_uuid(participant_id)
        if participant_uuid is not None:
            participant = db.get(Participant, participant_uuid)
        if participant is None:
            raise ParticipantNotFound(f"Participant {participant_id} not found")
        return participant

    def _resume(self, sequence: SlideSequence, participant: Participant) -> PlaybackNavigator:
        navigator = PlaybackNavigator(sequence)
        ptr = participant.progress_ptr or 0
        if ptr == COMPLETE_CURSOR:
            navigator.cursor = len(navigator.steps) - 1
            return navigator
        in_range = 0 <= ptr < len(navigator.steps)

        if participant.current_slide_id is not None:
            if in_range and navigator.steps[ptr].anchor_slide_id == participant.current_slide_id:
                navigator.cursor = ptr
                return navigator
            step_index = navigator.step_index_for_slide_id(participant.current_slide_id)
            if step_index is not None:
                navigator.cursor = step_index
                return navigator

        if not in_range:
            raise SlideIndexOutOfRange(f"Saved cursor {ptr} outside 0..{len(navigator.steps) - 1}",
                                       cursor=ptr, steps=len(navigator.steps))
        navigator.cursor = ptr
        return navigator

    def navigator_for(self, db: Session, participant: Participant) -> PlaybackNavigator:
        package = participant.session.package
        sequence = load_sequence(db, package, participant, cache=self.cache)
        try:
            return self._resume(sequence, participant)
        except SlideIndexOutOfRange as e:
            logger.warning("Participant %s: %s; recomputing sequence", participant.id, e.message)

        sequence = load_sequence(db, package, participant, cache=self.cache, bypass_cache=True)
        try:
            return self._resume(sequence, participant)
        except SlideIndexOutOfRange as e:
            raise ContentUnavailable("Slides for this session are unavailable; try again shortly",
                                     participant_id=str(participant.id), cursor=e.context.get('cursor'))

    def _persist(self, db: Session, participant: Participant, navigator: PlaybackNavigator):
        participant.progress_ptr = COMPLETE_CURSOR if navigator.is_complete else navigator.cursor
        participant.current_slide_id = navigator.state.anchor_slide_id
        participant.last_active = utcnow()
        db.commit()

    def state(self, db: Session, participant_id):
        participant = self._participant(db, participant_id)
        return self.navigator_for(db, participant).describe()

    def advance(self, db: Session, participant_id):
        participant = self._participant(db, participant_id)
        navigator = self.navigator_for(db, participant)
        navigator.advance()
        self._persist(db, participant, navigator)
        return navigator.describe()

    def back(self, db: Session, participant_id):
        participant = self._participant(db, participant_id)
        navigator = self.navigator_for(db, participant)
        navigator.back()
        self._persist(db, participant, navigator)
        return navigator.describe()

    def jump(self, db: Session, participant_id, slide_index: int):
        participant = self._participant(db, participant_id)
        navigator = self.navigator_for(db, participant)
        navigator.jump_to_slide(slide_index)
        self._persist(db, participant, navigator)
        return navigator.describe()
