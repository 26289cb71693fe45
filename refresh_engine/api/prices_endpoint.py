"""
Bursa Refresh — Price Read Endpoints
─────────────────────────────────────
/prices/{code}   stored record for one code
/prices/stale    codes whose predicted next refresh has already passed

Read-only. Never calls a provider.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from refresh_engine.models import PersistedPriceRecord, as_utc
from refresh_engine.orchestrator.priority_tiers import normalise_code
from refresh_engine.store.price_store import PriceStore

log = logging.getLogger("br.api.prices")


def _parse_iso(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return as_utc(dt)


async def get_price_response(store: PriceStore, code: str) -> Tuple[int, dict]:
    code = normalise_code(code)
    record = await store.get(code)
    if record is None:
        return 404, {"error": f"No stored price for {code}", "code": code}
    return 200, record.to_dict()


def is_stale(record: PersistedPriceRecord, now: datetime, grace: timedelta) -> bool:
    due = _parse_iso(record.next_update_at)
    return due is not None and due + grace < now


async def get_stale_response(store: PriceStore, now: Optional[datetime] = None,
                             grace_minutes: int = 0) -> dict:
    now = now or datetime.now(timezone.utc)
    grace = timedelta(minutes=grace_minutes)
    records = await store.all()
    stale = [r for r in records if is_stale(r, now, grace)]
    stale.sort(key=lambda r: r.next_update_at or "")
    return {
        "checkedAt": now.isoformat(),
        "total":     len(records),
        "stale":     len(stale),
        "items": [
            {
                "code":          r.code,
                "tier":          r.tier,
                "nextUpdateAt":  r.next_update_at,
                "updatedAt":     r.updated_at,
                "scrapeStatus":  r.scrape_status,
            }
            for r in stale
        ],
    }
