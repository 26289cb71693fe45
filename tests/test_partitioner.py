import random

import pytest

from refresh_engine.errors import ConfigurationError
from refresh_engine.models import Instrument
from refresh_engine.orchestrator.partitioner import get_slice, partition, per_slice_size


def _universe(n, tiers=(1, 2, 3)):
    return [Instrument(code=f"{i:04d}", tier=tiers[i % len(tiers)]) for i in range(n)]


def test_twelve_codes_three_slices_gives_four_each():
    slices = partition(_universe(12), 3)
    assert [s.size for s in slices] == [4, 4, 4]
    assert [s.index for s in slices] == [0, 1, 2]
    assert all(s.total_slices == 3 for s in slices)


def test_partition_is_deterministic_regardless_of_input_order():
    universe = _universe(97)
    shuffled = list(universe)
    random.Random(7).shuffle(shuffled)
    assert partition(universe, 8) == partition(shuffled, 8)


def test_every_code_lands_in_exactly_one_slice():
    universe = _universe(803)
    codes = [c for s in partition(universe, 16) for c in s.codes]
    assert len(codes) == len(universe)
    assert set(codes) == {i.code for i in universe}


def test_tier_one_occupies_lowest_indices():
    slices = partition(_universe(30), 5)
    tiers = [m.tier for s in slices for m in s.members]
    assert tiers == sorted(tiers)
    assert slices[0].dominant_tier == 1
    assert slices[-1].dominant_tier == 3


def test_more_slices_than_codes_leaves_trailing_slices_empty():
    slices = partition(_universe(3), 5)
    assert [s.size for s in slices] == [1, 1, 1, 0, 0]
    assert slices[4].is_empty
    assert slices[4].dominant_tier is None


def test_uneven_split_puts_remainder_in_last_slice():
    assert [s.size for s in partition(_universe(10), 3)] == [4, 4, 2]


def test_per_slice_size():
    assert per_slice_size(800, 16) == 50
    assert per_slice_size(801, 16) == 51
    assert per_slice_size(0, 4) == 0
    with pytest.raises(ConfigurationError):
        per_slice_size(10, 0)


def test_get_slice_rejects_out_of_range_index():
    with pytest.raises(ConfigurationError) as exc:
        get_slice(_universe(12), 3, 3)
    assert "Must be 0-2" in exc.value.message
    assert exc.value.details == {"totalSlices": 3}
    with pytest.raises(ConfigurationError):
        get_slice(_universe(12), 3, -1)


def test_get_slice_matches_partition():
    universe = _universe(40)
    assert get_slice(universe, 4, 2) == partition(universe, 4)[2]
