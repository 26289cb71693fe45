"""
Bursa Refresh — Priority Tiers
───────────────────────────────
Decides how important each instrument is. Tier drives refresh cadence.

Tier 1 — core list + large cap (≥ 10B MYR)   every 10 minutes by default
Tier 2 — mid cap (≥ 1B MYR)                  every 20 minutes
Tier 3 — everything else                     every 30 minutes

Rule order, first match wins:
  1. code is in the core list
  2. market cap ≥ tier-1 threshold
  3. market cap ≥ tier-2 threshold
  4. tier 3

Pure. Unknown or malformed market caps are treated as absent.
"""

import logging
import math
import re
from typing import Dict, Iterable, List, Optional, Set, Union

from refresh_engine.config import TIER_1, TIER_2, TIER_3, TIERS, TierThresholds

log = logging.getLogger("br.tiers")

_SUFFIX_RE = re.compile(r"\.(KL|KLS|KLSE)$", re.IGNORECASE)
_CAP_RE    = re.compile(r"^([\d.]+)([BMK])?$", re.IGNORECASE)
_CAP_SCALE = {"B": 1_000_000_000, "M": 1_000_000, "K": 1_000}

MarketCapInput = Union[None, int, float, str]


def normalise_code(code: str) -> str:
    """'1155.kl' → '1155'. Bursa codes keep their leading zeros."""
    return _SUFFIX_RE.sub("", (code or "").strip()).upper()


def parse_market_cap(raw: MarketCapInput) -> Optional[float]:
    """
    Accept 1.5e9, "1500000000", "124.44B", "500M", "1,200K".
    Returns None for anything unusable (never raises).
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        clean = re.sub(r"[^0-9.BMK]", "", str(raw).upper())
        m = _CAP_RE.match(clean)
        if not m:
            return None
        try:
            value = float(m.group(1)) * _CAP_SCALE.get(m.group(2) or "", 1)
        except ValueError:
            return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


class TierClassifier:
    """Static core membership + market cap thresholds → tier."""

    def __init__(self, core_codes: Iterable[str] = (), thresholds: Optional[TierThresholds] = None):
        self._core: Set[str] = {normalise_code(c) for c in core_codes if c}
        self.thresholds = thresholds or TierThresholds()

    @property
    def core_codes(self) -> List[str]:
        return sorted(self._core)

    def is_core(self, code: str) -> bool:
        return normalise_code(code) in self._core

    def classify(self, code: str, market_cap: MarketCapInput = None) -> int:
        if self.is_core(code):
            return TIER_1
        cap = parse_market_cap(market_cap)
        if cap is not None:
            if cap >= self.thresholds.tier1_market_cap:
                return TIER_1
            if cap >= self.thresholds.tier2_market_cap:
                return TIER_2
        return TIER_3


def tier_counts(tiers: Iterable[int]) -> Dict[int, int]:
    counts = {t: 0 for t in TIERS}
    for t in tiers:
        counts[t] = counts.get(t, 0) + 1
    return counts


def tier_stats(
    tiers: Iterable[int],
    tier_cadence: Dict[int, int],
    provider_batch_size: int = 50,
    market_minutes_per_day: int = 8 * 60,
) -> dict:
    """
    Rough provider budget: one primary call per batch per tier cycle,
    repeated every tier cadence while the market is open.
    """
    counts = tier_counts(tiers)
    calls_per_cycle = {
        t: math.ceil(n / provider_batch_size) if n else 0 for t, n in counts.items()
    }
    daily = sum(
        calls_per_cycle[t] * (market_minutes_per_day / tier_cadence[t])
        for t in counts if tier_cadence.get(t)
    )
    return {
        "tier1": counts.get(TIER_1, 0),
        "tier2": counts.get(TIER_2, 0),
        "tier3": counts.get(TIER_3, 0),
        "total": sum(counts.values()),
        "estimated_calls_per_cycle": sum(calls_per_cycle.values()),
        "estimated_daily_calls": round(daily),
    }
