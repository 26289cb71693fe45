"""
Bursa Refresh — Universe Partitioner
─────────────────────────────────────
Splits the tier-sorted universe into N disjoint, stable slices.
Each slice is owned by one trigger URL (?slice=i), so concurrent
invocations for different slices never touch the same code.

  sort by (tier, code)
  per_slice = ceil(|U| / N)
  slice i   = U[i*per_slice : min((i+1)*per_slice, |U|)]

Tier-1 codes sit at the lowest indices, so early slices are tier-dense.
When N > |U| the trailing slices are empty.
"""

import math
from typing import Iterable, List

from refresh_engine.errors import ConfigurationError
from refresh_engine.models import Instrument, Slice


def sort_universe(universe: Iterable[Instrument]) -> List[Instrument]:
    return sorted(universe, key=lambda i: (i.tier, i.code))


def per_slice_size(universe_size: int, total_slices: int) -> int:
    if total_slices < 1:
        raise ConfigurationError("total_slices must be >= 1")
    return math.ceil(universe_size / total_slices) if universe_size else 0


def partition(universe: Iterable[Instrument], total_slices: int) -> List[Slice]:
    ordered = sort_universe(universe)
    per = per_slice_size(len(ordered), total_slices)
    slices = []
    for i in range(total_slices):
        start = min(i * per, len(ordered))
        end   = min(start + per, len(ordered))
        slices.append(Slice(index=i, total_slices=total_slices, members=tuple(ordered[start:end])))
    return slices


def get_slice(universe: Iterable[Instrument], total_slices: int, index: int) -> Slice:
    if not 0 <= index < total_slices:
        raise ConfigurationError(
            f"Invalid slice: {index}. Must be 0-{total_slices - 1}",
            {"totalSlices": total_slices},
        )
    return partition(universe, total_slices)[index]
