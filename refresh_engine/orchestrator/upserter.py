"""
Bursa Refresh — Persistence Upserter
─────────────────────────────────────
Fetched results → PriceStore, in small batches.

  successful quote  → full price-group write keyed by code (write wins)
  failed fetch      → status-only marker (scrape_status=failed, error_message,
                      updated_at) on an existing row; price fields untouched
  store batch error → every record in that batch counted failed, the
                      remaining batches still run
  every batch error → FatalError

Running the same window twice produces the same rows.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

from refresh_engine.config import TIER_3, cadence_for_tier
from refresh_engine.errors import FatalError, PersistenceError
from refresh_engine.models import (
    FUNDAMENTAL_FIELDS, SCRAPE_FAILED, SCRAPE_SUCCESS, FetchOutcome, FundamentalsSnapshot,
    PersistedPriceRecord, Quote, UpsertResult, utc_iso,
)
from refresh_engine.orchestrator.rotation import predicted_next_refresh
from refresh_engine.store.price_store import PriceStore

log = logging.getLogger("br.upserter")

T = TypeVar("T")

DEFAULT_PRICE_ERROR = "No usable quote from any provider"


async def _write_in_batches(
    items: Sequence[T],
    batch_size: int,
    write: Callable[[List[T]], Awaitable[Any]],
    code_of: Callable[[T], str],
    result: UpsertResult,
    what: str,
):
    size = max(1, batch_size)
    for i in range(0, len(items), size):
        batch = list(items[i:i + size])
        result.batches += 1
        try:
            await write(batch)
        except PersistenceError as e:
            result.batch_errors += 1
            codes = [code_of(x) for x in batch]
            result.failed += len(batch)
            result.failed_codes.extend(codes)
            log.error(f"{what}: batch {i // size + 1} failed ({', '.join(codes)}): {e.message}")
            continue
        result.updated += len(batch)

    if result.batches and result.batch_errors == result.batches:
        raise FatalError(
            f"{what}: store unavailable, all {result.batches} batches failed",
            {"failedCodes": result.failed_codes},
        )


async def _mark_failed(store: PriceStore, markers: Mapping[str, Mapping[str, Any]], what: str):
    if not markers:
        return
    try:
        marked = await store.patch(markers, only_existing=True)
    except PersistenceError as e:
        log.error(f"{what}: could not write failure markers: {e.message}")
        return
    skipped = len(markers) - len(marked)
    if skipped:
        log.debug(f"{what}: {skipped} failed codes have no row yet, nothing to mark")


class PersistenceUpserter:

    def __init__(self, store: PriceStore, batch_size: int = 5):
        self.store = store
        self.batch_size = batch_size

    async def upsert(
        self,
        quotes: Mapping[str, Quote],
        tiers: Mapping[str, int],
        tier_cadence: Mapping[int, int],
        failed_codes: Sequence[str] = (),
        now: Optional[datetime] = None,
        error_message: str = DEFAULT_PRICE_ERROR,
    ) -> UpsertResult:
        """`tier_cadence` maps tier to minutes; each row is next due at now + its own tier's cadence."""
        now = now or datetime.now(timezone.utc)
        now_iso = utc_iso(now)

        records = []
        for code, q in quotes.items():
            tier = tiers.get(code, TIER_3)
            next_at = predicted_next_refresh(now, cadence_for_tier(tier_cadence, tier))
            records.append(PersistedPriceRecord.from_quote(q, tier, utc_iso(next_at), now_iso))
        result = UpsertResult(failed=len(failed_codes), failed_codes=list(failed_codes))

        await _write_in_batches(records, self.batch_size, self.store.upsert,
                                lambda r: r.code, result, "prices")

        await _mark_failed(self.store, {
            code: {
                "scrape_status": SCRAPE_FAILED,
                "error_message": error_message,
                "updated_at":    now_iso,
            }
            for code in failed_codes
        }, "prices")

        log.info(f"prices: {result.updated} upserted, {result.failed} failed "
                 f"in {result.batches} store batches")
        return result

    async def persist(self, outcome: FetchOutcome, tiers: Mapping[str, int],
                      tier_cadence: Mapping[int, int], now: datetime) -> UpsertResult:
        return await self.upsert(outcome.results, tiers, tier_cadence,
                                 outcome.failed_codes, now)


class FundamentalsUpserter:
    """Merges fundamentals into existing rows without touching price fields."""

    def __init__(self, store: PriceStore, batch_size: int = 5):
        self.store = store
        self.batch_size = batch_size

    async def persist(self, outcome: FetchOutcome, tiers: Mapping[str, int],
                      tier_cadence: Mapping[int, int], now: datetime) -> UpsertResult:
        now_iso = utc_iso(now)
        snapshots: List[FundamentalsSnapshot] = list(outcome.results.values())
        result = UpsertResult(failed=len(outcome.failed_codes),
                              failed_codes=list(outcome.failed_codes))

        async def write(batch: List[FundamentalsSnapshot]):
            await self.store.patch(
                {s.code: _fundamentals_fields(s, now_iso) for s in batch},
                only_existing=False,
            )

        await _write_in_batches(snapshots, self.batch_size, write,
                                lambda s: s.code, result, "fundamentals")

        await _mark_failed(self.store, {
            code: {"fundamentals_status": SCRAPE_FAILED, "fundamentals_updated_at": now_iso}
            for code in outcome.failed_codes
        }, "fundamentals")

        log.info(f"fundamentals: {result.updated} merged, {result.failed} failed")
        return result


def _fundamentals_fields(s: FundamentalsSnapshot, now_iso: str) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "fundamentals_status":     SCRAPE_SUCCESS,
        "fundamentals_updated_at": now_iso,
    }
    # keep the previous value for anything the provider left out
    for name in FUNDAMENTAL_FIELDS:
        value = getattr(s, name)
        if value is not None:
            fields[name] = value
    return fields
