"""
Gap-based slide position allocation

Positions are positive integers. New slides go ``POSITION_GAP`` after the
last sibling, moved slides go to the midpoint of their new neighbours, so a
drag only rewrites the slide that moved. When two neighbours are adjacent
integers there is nothing left between them and the caller renumbers the
whole sibling set.
"""
from collections import Counter
from typing import Iterable, List, Optional

from .errors import PositionExhausted

POSITION_GAP = 1000
POSITION_BASELINE = 100000


def _free_between(low: int, high: int, target: int, taken) -> Optional[int]:
    """Nearest integer to ``target`` in the open interval (low, high) that is not taken"""
    if high - low < 2:
        return None
    target = min(max(target, low + 1), high - 1)
    distance = 0
    while True:
        below, above = target - distance, target + distance
        in_range = False
        if low < below < high:
            in_range = True
            if below not in taken:
                return below
        if low < above < high:
            in_range = True
            if above not in taken:
                return above
        if not in_range:
            return None
        distance += 1


def allocate_between(prev: Optional[int], next: Optional[int], taken: Iterable[int] = ()) -> int:
    """
    Position that sorts strictly between ``prev`` and ``next``.

    Args:
        prev: position of the new left neighbour, or None at the head
        next: position of the new right neighbour, or None at the tail
        taken: positions already used by other slides that must not be returned

    Raises:
        PositionExhausted: no free positive integer fits between the neighbours
    """
    taken = set(taken)

    if prev is None and next is None:
        candidate, low, high = POSITION_BASELINE, 0, None
    elif next is None:
        candidate, low, high = prev + POSITION_GAP, prev, None
    elif prev is None:
        candidate, low, high = next // 2, 0, next
    else:
        if next <= prev:
            raise PositionExhausted(f"Neighbours out of order: {prev} >= {next}", prev=prev, next=next)
        candidate, low, high = (prev + next) // 2, prev, next

    if high is None:
        # Open-ended tail: walk forward until a free slot appears
        while candidate in taken or candidate <= low:
            candidate += 1
        return candidate

    position = _free_between(low, high, candidate, taken)
    if position is None:
        raise PositionExhausted(f"No free position between {prev} and {next}", prev=prev, next=next)
    return position


def renumber(count: int, taken: Iterable[int] = (), start: int = POSITION_GAP, gap: int = POSITION_GAP) -> List[int]:
    """Fresh evenly spaced positions for a whole sibling set, skipping positions used elsewhere"""
    taken = set(taken)
    positions = []
    candidate = start
    while len(positions) < count:
        if candidate not in taken:
            positions.append(candidate)
        candidate += gap
    return positions


def find_duplicate_positions(positions: Iterable[int]) -> List[int]:
    """Position values that occur more than once, sorted"""
    counts = Counter(positions)
    return sorted(value for value, count in counts.items() if count > 1)
