"""
Bursa Refresh — EODHD Provider
───────────────────────────────
Primary price source. Bursa symbols are {CODE}.KLSE.

EODHD has no real-time feed for KLSE, so the EOD endpoint is used:
last week of daily bars, newest first. Latest bar is the price,
the bar before it is the previous close.
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

import httpx

from refresh_engine.errors import ProviderFetchError
from refresh_engine.models import Quote
from refresh_engine.orchestrator import rate_limiter
from refresh_engine.providers.base import QuoteProvider
from refresh_engine.providers.http import REQUEST_TIMEOUT, RETRY_DELAY, get_json

log = logging.getLogger("br.eodhd")

EODHD_BASE_URL = "https://eodhd.com/api"
LOOKBACK_DAYS  = 7


def to_symbol(code: str) -> str:
    return f"{code.upper()}.KLSE"


def _num(v) -> Optional[float]:
    try:
        return None if v is None else float(v)
    except (TypeError, ValueError):
        return None


def parse_eod_bars(code: str, bars) -> Optional[Quote]:
    """Newest-first daily bars → Quote, or None when there is nothing to price."""
    if not isinstance(bars, list) or not bars:
        return None
    latest = bars[0]
    previous = bars[1] if len(bars) > 1 else latest
    close = _num(latest.get("close"))
    prev_close = _num(previous.get("close"))
    if close is None:
        return None

    change = change_pct = None
    if prev_close is not None:
        change = round(close - prev_close, 3)
        change_pct = round((close - prev_close) / prev_close * 100, 2) if prev_close > 0 else 0.0

    return Quote(
        code=code,
        price=close,
        change=change,
        change_percent=change_pct,
        previous_close=prev_close,
        open=_num(latest.get("open")),
        high=_num(latest.get("high")),
        low=_num(latest.get("low")),
        volume=_num(latest.get("volume")),
        source="eodhd",
        timestamp=latest.get("date"),
    )


class EODHDProvider(QuoteProvider):

    name = "eodhd"

    def __init__(
        self,
        api_key: str,
        concurrency: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = RETRY_DELAY,
        rate_limited: bool = True,
    ):
        self.api_key = api_key
        self.concurrency = concurrency
        self.retry_delay = retry_delay
        self.rate_limited = rate_limited
        self._transport = transport

    async def _fetch_code(self, client: httpx.AsyncClient, code: str) -> Optional[Quote]:
        if self.rate_limited:
            await rate_limiter.acquire(self.name)
        params = {
            "api_token": self.api_key,
            "fmt":       "json",
            "from":      (date.today() - timedelta(days=LOOKBACK_DAYS)).isoformat(),
            "order":     "d",
        }
        bars = await get_json(client, f"{EODHD_BASE_URL}/eod/{to_symbol(code)}",
                              self.name, params=params, retry_delay=self.retry_delay)
        return parse_eod_bars(code, bars)

    async def fetch_batch(self, codes: Sequence[str]) -> Dict[str, Quote]:
        if not self.api_key:
            raise ProviderFetchError(self.name, "EODHD_API_KEY not configured")
        if not codes:
            return {}

        sem = asyncio.Semaphore(self.concurrency)

        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=self._transport) as client:
            async def fetch_one(code: str):
                async with sem:
                    return await self._fetch_code(client, code)

            raw = await asyncio.gather(*(fetch_one(c) for c in codes), return_exceptions=True)

        results: Dict[str, Quote] = {}
        errors: List[str] = []
        for code, r in zip(codes, raw):
            if isinstance(r, ProviderFetchError):
                errors.append(code)
            elif isinstance(r, BaseException):
                raise r
            elif r is not None:
                results[code] = r

        if errors and len(errors) == len(codes):
            raise ProviderFetchError(self.name, f"all {len(codes)} requests failed")
        log.info(f"EODHD: {len(results)}/{len(codes)} quotes")
        return results
