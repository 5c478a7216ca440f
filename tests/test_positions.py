"""Tests for gap-based position allocation."""

import pytest

from knowyourgrape.errors import PositionExhausted
from knowyourgrape.positions import (
    POSITION_BASELINE, POSITION_GAP, allocate_between, find_duplicate_positions, renumber,
)


class TestAllocateBetween:
    def test_midpoint_between_neighbours(self):
        assert allocate_between(20, 30) == 25
        assert allocate_between(1000, 2000) == 1500

    def test_empty_scope_uses_baseline(self):
        assert allocate_between(None, None) == POSITION_BASELINE

    def test_tail_adds_gap(self):
        assert allocate_between(3000, None) == 3000 + POSITION_GAP

    def test_head_halves_first_position(self):
        assert allocate_between(None, 1000) == 500

    def test_skips_taken_values(self):
        assert allocate_between(20, 30, taken={25}) == 24
        assert allocate_between(1000, None, taken={2000, 2001}) == 2002

    def test_adjacent_neighbours_are_exhausted(self):
        with pytest.raises(PositionExhausted):
            allocate_between(10, 11)

    def test_only_free_value_taken_is_exhausted(self):
        with pytest.raises(PositionExhausted):
            allocate_between(10, 12, taken={11})

    def test_head_of_position_one_is_exhausted(self):
        with pytest.raises(PositionExhausted):
            allocate_between(None, 1)

    def test_out_of_order_neighbours_rejected(self):
        with pytest.raises(PositionExhausted):
            allocate_between(30, 20)

    def test_result_is_always_positive(self):
        for next_position in range(2, 50):
            assert allocate_between(None, next_position) > 0


def test_renumber_spaces_by_gap():
    assert renumber(3) == [1000, 2000, 3000]


def test_renumber_skips_positions_used_elsewhere():
    assert renumber(3, taken={2000}) == [1000, 3000, 4000]


def test_find_duplicate_positions():
    assert find_duplicate_positions([1, 2, 2, 3, 3, 3]) == [2, 3]
    assert find_duplicate_positions([5, 10, 15]) == []
