"""
Bursa Refresh — Yahoo Finance Provider
───────────────────────────────────────
Fallback price source and the fundamentals source. Bursa symbols are {CODE}.KL.

Uses only the v8/chart endpoint; v10/quoteSummary now requires auth (401).
query1 is tried first, query2 on a miss. Chart `meta` carries both the
latest price block and the 52-week range used by the fundamentals domain.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import httpx

from refresh_engine.errors import ProviderFetchError
from refresh_engine.models import FundamentalsSnapshot, Quote
from refresh_engine.orchestrator import rate_limiter
from refresh_engine.providers.base import FundamentalsProvider, QuoteProvider
from refresh_engine.providers.http import REQUEST_TIMEOUT, RETRY_DELAY, get_json

log = logging.getLogger("br.yahoo")

BASE_CHART          = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
BASE_CHART_FALLBACK = "https://query2.finance.yahoo.com/v8/finance/chart/{symbol}"


def to_symbol(code: str) -> str:
    return f"{code.upper()}.KL"


def _num(v) -> Optional[float]:
    try:
        return None if v is None else float(v)
    except (TypeError, ValueError):
        return None


def chart_meta(data) -> Optional[dict]:
    if not isinstance(data, dict):
        return None
    result = (data.get("chart") or {}).get("result") or []
    if not result:
        return None
    return result[0].get("meta") or None


def quote_from_meta(code: str, meta: dict) -> Optional[Quote]:
    price = _num(meta.get("regularMarketPrice"))
    if price is None:
        return None
    prev_close = _num(meta.get("chartPreviousClose")) or _num(meta.get("previousClose"))
    change = change_pct = None
    if prev_close:
        change = round(price - prev_close, 3)
        change_pct = round((price - prev_close) / prev_close * 100, 2)

    ts = meta.get("regularMarketTime")
    return Quote(
        code=code,
        price=price,
        change=change,
        change_percent=change_pct,
        previous_close=prev_close,
        open=_num(meta.get("regularMarketOpen")),
        high=_num(meta.get("regularMarketDayHigh")),
        low=_num(meta.get("regularMarketDayLow")),
        volume=_num(meta.get("regularMarketVolume")),
        source="yahoo",
        timestamp=(datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
                   if isinstance(ts, (int, float)) else None),
    )


def fundamentals_from_meta(code: str, meta: dict) -> FundamentalsSnapshot:
    return FundamentalsSnapshot(
        code=code,
        market_cap=_num(meta.get("marketCap")),
        week_52_high=_num(meta.get("fiftyTwoWeekHigh")),
        week_52_low=_num(meta.get("fiftyTwoWeekLow")),
        source="yahoo",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


class YahooChartClient:
    """Per-symbol chart fetches with bounded concurrency."""

    name = "yahoo"

    def __init__(
        self,
        concurrency: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = RETRY_DELAY,
        rate_limited: bool = True,
    ):
        self.concurrency = concurrency
        self.retry_delay = retry_delay
        self.rate_limited = rate_limited
        self._transport = transport

    async def _meta(self, client: httpx.AsyncClient, code: str) -> Optional[dict]:
        errors: List[ProviderFetchError] = []
        for template in (BASE_CHART, BASE_CHART_FALLBACK):
            if self.rate_limited:
                await rate_limiter.acquire(self.name)
            try:
                data = await get_json(client, template.format(symbol=to_symbol(code)),
                                      self.name, params={"interval": "1d", "range": "1d"},
                                      retry_delay=self.retry_delay)
            except ProviderFetchError as e:
                errors.append(e)
                continue
            meta = chart_meta(data)
            if meta:
                return meta
        if len(errors) == 2:
            raise errors[-1]
        return None

    async def metas(self, codes: Sequence[str]) -> Dict[str, dict]:
        """code → chart meta. Raises ProviderFetchError only if every code errored."""
        if not codes:
            return {}
        sem = asyncio.Semaphore(self.concurrency)

        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=self._transport) as client:
            async def fetch_one(code: str):
                async with sem:
                    return await self._meta(client, code)

            raw = await asyncio.gather(*(fetch_one(c) for c in codes), return_exceptions=True)

        out: Dict[str, dict] = {}
        errored = 0
        for code, r in zip(codes, raw):
            if isinstance(r, ProviderFetchError):
                errored += 1
            elif isinstance(r, BaseException):
                raise r
            elif r:
                out[code] = r
        if errored and errored == len(codes):
            raise ProviderFetchError(self.name, f"all {len(codes)} chart requests failed")
        return out


class YahooQuoteProvider(QuoteProvider):

    name = "yahoo"

    def __init__(self, client: Optional[YahooChartClient] = None):
        self.client = client or YahooChartClient()

    async def fetch_batch(self, codes: Sequence[str]) -> Dict[str, Quote]:
        metas = await self.client.metas(codes)
        results = {}
        for code, meta in metas.items():
            q = quote_from_meta(code, meta)
            if q is not None:
                results[code] = q
        return results


class YahooFundamentalsProvider(FundamentalsProvider):

    name = "yahoo"

    def __init__(self, client: Optional[YahooChartClient] = None):
        self.client = client or YahooChartClient()

    async def fetch_batch(self, codes: Sequence[str]) -> Dict[str, FundamentalsSnapshot]:
        metas = await self.client.metas(codes)
        results = {}
        for code, meta in metas.items():
            snap = fundamentals_from_meta(code, meta)
            if snap.is_usable():
                results[code] = snap
        log.info(f"Yahoo fundamentals: {len(results)}/{len(codes)}")
        return results
