"""
Bursa Refresh — Record Models
──────────────────────────────
Canonical shapes for everything that flows through one invocation.

  Instrument            directory snapshot row, tier attached
  Slice                 one partition of the tier-sorted universe
  RotationWindow        the sub-range of a slice processed this tick
  Quote                 one provider price result
  FundamentalsSnapshot  one provider fundamentals result
  PersistedPriceRecord  the durable row, keyed by code
  JobRecord             per-invocation audit entry
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are UTC, never host-local."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_iso(dt: datetime) -> str:
    return as_utc(dt).isoformat()


@dataclass(frozen=True)
class Instrument:
    code:       str
    tier:       int
    name:       Optional[str] = None
    market_cap: Optional[float] = None
    is_core:    bool = False


@dataclass(frozen=True)
class Slice:
    index:        int
    total_slices: int
    members:      Tuple[Instrument, ...] = ()

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def is_empty(self) -> bool:
        return not self.members

    @property
    def codes(self) -> List[str]:
        return [m.code for m in self.members]

    @property
    def dominant_tier(self) -> Optional[int]:
        """Highest-priority tier present (lowest number), None when empty."""
        return min((m.tier for m in self.members), default=None)


@dataclass(frozen=True)
class RotationWindow:
    offset:        int
    size:          int
    cycle_index:   int
    cycles_needed: int
    bucket:        int
    members:       Tuple[Instrument, ...] = ()

    @property
    def is_empty(self) -> bool:
        return self.size == 0

    @property
    def codes(self) -> List[str]:
        return [m.code for m in self.members]

    def cycle_info(self, slice_size: int) -> str:
        if self.cycles_needed == 0:
            return "empty slice"
        return (f"offset {self.offset}/{slice_size}, "
                f"cycle {self.cycle_index + 1}/{self.cycles_needed}")


@dataclass(frozen=True)
class Quote:
    code:           str
    price:          Optional[float]
    change:         Optional[float] = None
    change_percent: Optional[float] = None
    previous_close: Optional[float] = None
    open:           Optional[float] = None
    high:           Optional[float] = None
    low:            Optional[float] = None
    volume:         Optional[float] = None
    source:         str = "unknown"
    timestamp:      Optional[str] = None

    def is_usable(self) -> bool:
        """A quote counts only with a finite, positive price."""
        if self.price is None:
            return False
        try:
            p = float(self.price)
        except (TypeError, ValueError):
            return False
        return math.isfinite(p) and p > 0


@dataclass(frozen=True)
class FundamentalsSnapshot:
    code:         str
    market_cap:   Optional[float] = None
    week_52_high: Optional[float] = None
    week_52_low:  Optional[float] = None
    source:       str = "unknown"
    timestamp:    Optional[str] = None

    def is_usable(self) -> bool:
        return any(v is not None for v in (self.market_cap, self.week_52_high, self.week_52_low))


T = TypeVar("T")


@dataclass
class FetchOutcome(Generic[T]):
    """What a fetch stage hands to its persist stage."""
    results:      Dict[str, T] = field(default_factory=dict)
    failed_codes: List[str] = field(default_factory=list)
    stats:        Dict[str, int] = field(default_factory=dict)


# ── Persisted price row ──────────────────────────────────────
SCRAPE_SUCCESS = "success"
SCRAPE_FAILED  = "failed"

PRICE_FIELDS = (
    "price", "change", "change_percent", "previous_close",
    "day_open", "day_high", "day_low", "volume",
)
FUNDAMENTAL_FIELDS = ("market_cap", "week_52_high", "week_52_low")
_FLOAT_FIELDS = set(PRICE_FIELDS) | set(FUNDAMENTAL_FIELDS)
_INT_FIELDS   = {"tier"}


@dataclass
class PersistedPriceRecord:
    code:                    str
    price:                   Optional[float] = None
    change:                  Optional[float] = None
    change_percent:          Optional[float] = None
    previous_close:          Optional[float] = None
    day_open:                Optional[float] = None
    day_high:                Optional[float] = None
    day_low:                 Optional[float] = None
    volume:                  Optional[float] = None
    tier:                    Optional[int] = None
    data_source:             Optional[str] = None
    quote_timestamp:         Optional[str] = None
    next_update_at:          Optional[str] = None
    scrape_status:           Optional[str] = None
    error_message:           Optional[str] = None
    updated_at:              Optional[str] = None
    market_cap:              Optional[float] = None
    week_52_high:            Optional[float] = None
    week_52_low:             Optional[float] = None
    fundamentals_status:     Optional[str] = None
    fundamentals_updated_at: Optional[str] = None

    @classmethod
    def from_quote(cls, quote: Quote, tier: int, next_update_at: str, now_iso: str) -> "PersistedPriceRecord":
        return cls(
            code=quote.code,
            price=quote.price,
            change=quote.change,
            change_percent=quote.change_percent,
            previous_close=quote.previous_close,
            day_open=quote.open,
            day_high=quote.high,
            day_low=quote.low,
            volume=quote.volume,
            tier=tier,
            data_source=quote.source,
            quote_timestamp=quote.timestamp,
            next_update_at=next_update_at,
            scrape_status=SCRAPE_SUCCESS,
            error_message=None,
            updated_at=now_iso,
        )

    def price_write(self) -> Dict[str, Any]:
        """Fields owned by a successful price upsert (write-wins as a group)."""
        keys = PRICE_FIELDS + (
            "tier", "data_source", "quote_timestamp", "next_update_at",
            "scrape_status", "error_message", "updated_at",
        )
        return {k: getattr(self, k) for k in keys}

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PersistedPriceRecord":
        kwargs: Dict[str, Any] = {}
        for name in cls.__dataclass_fields__:
            raw = d.get(name)
            if raw is None or raw == "":
                continue
            if name in _FLOAT_FIELDS:
                kwargs[name] = float(raw)
            elif name in _INT_FIELDS:
                kwargs[name] = int(raw)
            else:
                kwargs[name] = str(raw)
        return cls(**kwargs)


# ── Job audit ────────────────────────────────────────────────
JOB_RUNNING   = "running"
JOB_COMPLETED = "completed"
JOB_FAILED    = "failed"


@dataclass
class JobRecord:
    job_id:            str
    domain:            str
    slice_index:       int
    started_at:        str
    total_instruments: int
    status:            str = JOB_RUNNING
    completed_at:      Optional[str] = None
    success_count:     int = 0
    failed_count:      int = 0
    failed_codes:      List[str] = field(default_factory=list)
    execution_time_ms: Optional[int] = None
    error_summary:     Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "JobRecord":
        return cls(
            job_id=d["job_id"],
            domain=d.get("domain", ""),
            slice_index=int(d.get("slice_index", 0)),
            started_at=d.get("started_at", ""),
            total_instruments=int(d.get("total_instruments", 0)),
            status=d.get("status", JOB_RUNNING),
            completed_at=d.get("completed_at"),
            success_count=int(d.get("success_count", 0)),
            failed_count=int(d.get("failed_count", 0)),
            failed_codes=list(d.get("failed_codes") or []),
            execution_time_ms=d.get("execution_time_ms"),
            error_summary=d.get("error_summary"),
        )


@dataclass
class UpsertResult:
    updated:      int = 0
    failed:       int = 0
    failed_codes: List[str] = field(default_factory=list)
    batches:      int = 0
    batch_errors: int = 0
