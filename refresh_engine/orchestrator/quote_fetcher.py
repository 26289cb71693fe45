"""
Bursa Refresh — Multi-Source Quote Fetcher
───────────────────────────────────────────
Window codes → quotes, from a primary batched provider plus a per-code fallback.

  0. codes the primary is known not to list (FALLBACK_ONLY_CODES) skip it
  1. split the rest into provider-sized batches (PRIMARY_BATCH_SIZE)
  2. one primary call per batch, sequential, INTER_BATCH_DELAY_S apart
  3. every code the primary left out gets exactly one individual fallback
     call, FALLBACK_DELAY_S apart
  4. a code fails only when neither provider gave a usable quote

Providers silently omit symbols they don't list (stapled securities,
secondary listings), so a missing code is normal and never an error here.
FatalError only when every provider call for the window raised.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from refresh_engine.config import FetchSettings
from refresh_engine.errors import FatalError, ProviderFetchError
from refresh_engine.models import FetchOutcome, FundamentalsSnapshot, Quote
from refresh_engine.providers.base import FundamentalsProvider, QuoteProvider, chunked

log = logging.getLogger("br.fetcher")

T = TypeVar("T")


class _BatchRun(Generic[T]):
    """Result of pushing all batches through one provider."""

    def __init__(self):
        self.results: Dict[str, T] = {}
        self.batches = 0
        self.errors = 0

    @property
    def all_errored(self) -> bool:
        return self.batches > 0 and self.errors == self.batches


async def _run_batches(
    codes: Sequence[str],
    batch_size: int,
    delay_s: float,
    call: Callable[[List[str]], Awaitable[Dict[str, T]]],
    usable: Callable[[T], bool],
    provider: str,
) -> "_BatchRun[T]":
    run: _BatchRun[T] = _BatchRun()
    for i, batch in enumerate(chunked(codes, batch_size)):
        if i and delay_s > 0:
            await asyncio.sleep(delay_s)
        run.batches += 1
        try:
            got = await call(batch)
        except ProviderFetchError as e:
            run.errors += 1
            log.warning(f"{provider}: batch {i + 1} ({len(batch)} codes) failed: {e.message}")
            continue
        for code in batch:
            item = got.get(code)
            if item is not None and usable(item):
                run.results[code] = item
    return run


class MultiSourceQuoteFetcher:

    def __init__(self, primary: QuoteProvider, fallback: Optional[QuoteProvider] = None,
                 settings: Optional[FetchSettings] = None):
        self.primary = primary
        self.fallback = fallback
        self.settings = settings or FetchSettings()

    async def fetch_quotes(self, codes: Sequence[str]) -> FetchOutcome[Quote]:
        codes = list(dict.fromkeys(codes))
        if not codes:
            return FetchOutcome(stats={"requested": 0, "primary": 0, "fallback": 0, "failed": 0})

        skip = set(self.settings.fallback_only_codes) if self.fallback is not None else set()
        primary_codes = [c for c in codes if c not in skip]

        run = await _run_batches(
            primary_codes,
            self.settings.primary_batch_size,
            self.settings.inter_batch_delay_s,
            self.primary.fetch_batch,
            Quote.is_usable,
            self.primary.name,
        )
        quotes: Dict[str, Quote] = {c: _keyed(q, c) for c, q in run.results.items()}
        primary_hits = len(quotes)

        missing = [c for c in codes if c not in quotes]
        if missing:
            log.info(f"{self.primary.name}: {primary_hits}/{len(primary_codes)}, "
                     f"{len(missing)} to fallback ({len(codes) - len(primary_codes)} fallback-only)")

        fallback_hits = 0
        fallback_errors = 0
        failed: List[str] = []
        for i, code in enumerate(missing):
            if self.fallback is None:
                failed.append(code)
                continue
            if i and self.settings.fallback_delay_s > 0:
                await asyncio.sleep(self.settings.fallback_delay_s)
            try:
                q = await self.fallback.fetch_one(code)
            except ProviderFetchError as e:
                fallback_errors += 1
                log.warning(f"{self.fallback.name}: {code} failed: {e.message}")
                q = None
            if q is not None and q.is_usable():
                quotes[code] = _keyed(q, code)
                fallback_hits += 1
            else:
                failed.append(code)

        primary_down = run.all_errored or not primary_codes
        fallback_down = self.fallback is None or fallback_errors == len(missing)
        if primary_down and fallback_down:
            raise FatalError(
                "All quote providers unreachable for the window",
                {"codes": len(codes), "primaryBatches": run.batches},
            )

        if failed:
            log.warning(f"No usable quote for {len(failed)} codes: {', '.join(failed)}")

        return FetchOutcome(
            results=quotes,
            failed_codes=failed,
            stats={
                "requested": len(codes),
                "primary":   primary_hits,
                "fallback":  fallback_hits,
                "failed":    len(failed),
            },
        )


class FundamentalsFetcher:
    """Single-source batched fetch for the fundamentals domain."""

    def __init__(self, provider: FundamentalsProvider, settings: Optional[FetchSettings] = None):
        self.provider = provider
        self.settings = settings or FetchSettings()

    async def fetch(self, codes: Sequence[str]) -> FetchOutcome[FundamentalsSnapshot]:
        codes = list(dict.fromkeys(codes))
        if not codes:
            return FetchOutcome(stats={"requested": 0, "fetched": 0, "failed": 0})

        run = await _run_batches(
            codes,
            self.settings.primary_batch_size,
            self.settings.inter_batch_delay_s,
            self.provider.fetch_batch,
            FundamentalsSnapshot.is_usable,
            self.provider.name,
        )
        if run.all_errored:
            raise FatalError(
                f"{self.provider.name} unreachable for the whole window",
                {"codes": len(codes), "batches": run.batches},
            )
        failed = [c for c in codes if c not in run.results]
        return FetchOutcome(
            results={c: replace(s, code=c) for c, s in run.results.items()},
            failed_codes=failed,
            stats={"requested": len(codes), "fetched": len(run.results), "failed": len(failed)},
        )


def _keyed(q: Quote, code: str) -> Quote:
    return q if q.code == code else replace(q, code=code)
