"""
Bursa Refresh — Domain Wiring
──────────────────────────────
Builds one RotatingScheduler per data domain from Settings.

  prices        EODHD batches → Yahoo per-code fallback → price rows
  fundamentals  Yahoo chart meta → market cap / 52-week range merged into rows
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from refresh_engine.config import DOMAIN_FUNDAMENTALS, DOMAIN_PRICES, Settings
from refresh_engine.orchestrator.market_hours import MarketHoursGate
from refresh_engine.orchestrator.quote_fetcher import FundamentalsFetcher, MultiSourceQuoteFetcher
from refresh_engine.orchestrator.scheduler import RefreshDomain, RotatingScheduler, utcnow
from refresh_engine.orchestrator.upserter import FundamentalsUpserter, PersistenceUpserter
from refresh_engine.providers import (
    EODHDProvider, FundamentalsProvider, QuoteProvider, YahooChartClient,
    YahooFundamentalsProvider, YahooQuoteProvider,
)
from refresh_engine.store.job_log import JobLog
from refresh_engine.store.price_store import PriceStore
from refresh_engine.universe.directory import InstrumentDirectory

log = logging.getLogger("br.domains")


def build_domains(
    settings: Settings,
    price_store: PriceStore,
    primary: Optional[QuoteProvider] = None,
    fallback: Optional[QuoteProvider] = None,
    fundamentals: Optional[FundamentalsProvider] = None,
) -> Dict[str, RefreshDomain]:
    yahoo = YahooChartClient()
    primary = primary or EODHDProvider(settings.eodhd_api_key)
    fallback = fallback or YahooQuoteProvider(yahoo)
    fundamentals = fundamentals or YahooFundamentalsProvider(yahoo)

    quote_fetcher = MultiSourceQuoteFetcher(primary, fallback, settings.fetch)
    price_upserter = PersistenceUpserter(price_store, settings.fetch.store_batch_size)
    fund_fetcher = FundamentalsFetcher(fundamentals, settings.fetch)
    fund_upserter = FundamentalsUpserter(price_store, settings.fetch.store_batch_size)

    capabilities = {
        DOMAIN_PRICES:       (quote_fetcher.fetch_quotes, price_upserter.persist),
        DOMAIN_FUNDAMENTALS: (fund_fetcher.fetch, fund_upserter.persist),
    }
    return {
        name: RefreshDomain(config=cfg, fetch=capabilities[name][0], persist=capabilities[name][1])
        for name, cfg in settings.domains.items() if name in capabilities
    }


def build_schedulers(
    settings: Settings,
    directory: InstrumentDirectory,
    price_store: PriceStore,
    job_log: JobLog,
    clock: Callable[[], datetime] = utcnow,
    **providers,
) -> Dict[str, RotatingScheduler]:
    gate = MarketHoursGate(settings.market_hours)
    schedulers = {
        name: RotatingScheduler(domain, directory, job_log, gate=gate, clock=clock)
        for name, domain in build_domains(settings, price_store, **providers).items()
    }
    for name, s in schedulers.items():
        cfg = s.config
        log.info(f"Domain {name}: {cfg.total_slices} slices × {cfg.window_size}, "
                 f"trigger {cfg.trigger_minutes}m, cadence {cfg.tier_cadence}, {cfg.bucketing}")
    return schedulers
