"""
Bursa Refresh — Rotation Offset Calculator
───────────────────────────────────────────
Picks which contiguous window of a slice this invocation processes.
Pure function of (slice, now, window_size, cadence). No stored cursor.

  bucket        = floor(minutes_since_reference(now) / cadence)
  cycles_needed = ceil(|slice| / window_size)
  cycle_index   = bucket mod cycles_needed
  offset        = cycle_index * window_size
  window        = slice[offset : offset + window_size]

Two calls in the same bucket get the same window (retries are idempotent).
cycles_needed consecutive buckets cover the slice exactly once.
The scheduler buckets the trigger tick nearest `now` (snap_to_tick), not
the raw arrival time, so cron jitter cannot skip or repeat a bucket.

Reference clocks:
  epoch          minutes since 1970-01-01 UTC    strictly monotonic
  minute_of_day  market-local minute of the day  wraps at midnight
  day_of_year    market-local day × 1440         wraps at new year
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from refresh_engine.config import (
    BUCKET_DAY_OF_YEAR, BUCKET_EPOCH, BUCKET_MINUTE_OF_DAY, BUCKETINGS, MINUTES_PER_DAY,
)
from refresh_engine.errors import ConfigurationError
from refresh_engine.models import RotationWindow, Slice, as_utc

log = logging.getLogger("br.rotation")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def minutes_since_reference(now: datetime, bucketing: str = BUCKET_EPOCH,
                            tz: Optional[timezone] = None) -> int:
    now = as_utc(now)
    if bucketing == BUCKET_EPOCH:
        return int(now.timestamp() // 60)
    local = now.astimezone(tz or timezone.utc)
    if bucketing == BUCKET_MINUTE_OF_DAY:
        return local.hour * 60 + local.minute
    if bucketing == BUCKET_DAY_OF_YEAR:
        return (local.timetuple().tm_yday - 1) * MINUTES_PER_DAY
    raise ConfigurationError(f"Unknown bucketing: {bucketing}", {"allowed": list(BUCKETINGS)})


def time_bucket(now: datetime, cadence_minutes: int, bucketing: str = BUCKET_EPOCH,
                tz: Optional[timezone] = None) -> int:
    if cadence_minutes < 1:
        raise ConfigurationError("cadence_minutes must be >= 1")
    return minutes_since_reference(now, bucketing, tz) // cadence_minutes


def snap_to_tick(now: datetime, trigger_minutes: int, bucketing: str = BUCKET_EPOCH,
                 tz: Optional[timezone] = None) -> datetime:
    """
    Nearest trigger tick to `now`, so a cron call that lands a few seconds
    early or late is bucketed as the tick it stands for.

    Epoch ticks are counted from 1970-01-01 UTC, the others from market-local
    midnight. Daily (or longer) triggers are returned unchanged.
    """
    now = as_utc(now)
    if trigger_minutes < 1:
        raise ConfigurationError("trigger_minutes must be >= 1")
    if trigger_minutes >= MINUTES_PER_DAY:
        return now
    if bucketing == BUCKET_EPOCH:
        origin = _EPOCH
    else:
        origin = now.astimezone(tz or timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    step = trigger_minutes * 60
    ticks = round((now - origin).total_seconds() / step)
    return origin + timedelta(seconds=ticks * step)


def is_due(now: datetime, cadence_minutes: int, trigger_minutes: int,
           bucketing: str = BUCKET_EPOCH, tz: Optional[timezone] = None) -> bool:
    """
    True when the trigger tick nearest `now` is the first tick of a new cadence bucket.
    A tier-3 slice on a 30m cadence behind a 10m trigger runs one tick in three.
    """
    if cadence_minutes <= trigger_minutes:
        return True
    tick = snap_to_tick(now, trigger_minutes, bucketing, tz)
    previous = tick - timedelta(minutes=trigger_minutes)
    return (time_bucket(tick, cadence_minutes, bucketing, tz)
            != time_bucket(previous, cadence_minutes, bucketing, tz))


def cycles_needed(slice_size: int, window_size: int) -> int:
    if window_size < 1:
        raise ConfigurationError("window_size must be >= 1")
    return math.ceil(slice_size / window_size)


def window_for_bucket(sl: Slice, bucket: int, window_size: int) -> RotationWindow:
    cycles = cycles_needed(sl.size, window_size)
    if cycles == 0:
        return RotationWindow(offset=0, size=0, cycle_index=0, cycles_needed=0, bucket=bucket)
    cycle_index = bucket % cycles
    offset = cycle_index * window_size
    members = sl.members[offset:offset + window_size]
    return RotationWindow(
        offset=offset,
        size=len(members),
        cycle_index=cycle_index,
        cycles_needed=cycles,
        bucket=bucket,
        members=members,
    )


def select_window(
    sl: Slice,
    now: datetime,
    window_size: int,
    cadence_minutes: int,
    bucketing: str = BUCKET_EPOCH,
    tz: Optional[timezone] = None,
) -> RotationWindow:
    bucket = time_bucket(now, cadence_minutes, bucketing, tz)
    window = window_for_bucket(sl, bucket, window_size)
    log.debug(f"slice {sl.index}: bucket={bucket} {window.cycle_info(sl.size)}")
    return window


def full_cycle_minutes(slice_size: int, window_size: int, cadence_minutes: int) -> int:
    """Wall-clock minutes for a slice to be fully covered once."""
    return cycles_needed(slice_size, window_size) * cadence_minutes


def predicted_next_refresh(now: datetime, cadence_minutes: int) -> datetime:
    """When a code refreshed at `now` on `cadence_minutes` is next due."""
    return as_utc(now) + timedelta(minutes=cadence_minutes)
