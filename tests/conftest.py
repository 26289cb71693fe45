"""
Shared fixtures: fixed clocks, a small universe, scripted providers and
in-memory stores. Nothing here touches the network or Redis.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

from refresh_engine.config import (
    BUCKET_EPOCH, DOMAIN_PRICES, DomainConfig, FetchSettings, Settings,
    DEFAULT_DOMAINS,
)
from refresh_engine.errors import PersistenceError, ProviderFetchError
from refresh_engine.models import FundamentalsSnapshot, PersistedPriceRecord, Quote
from refresh_engine.providers.base import FundamentalsProvider, QuoteProvider
from refresh_engine.store import InMemoryJobLog, InMemoryPriceStore
from refresh_engine.universe import StaticInstrumentDirectory

# 2024-01-02 is a Tuesday. MYT = UTC+8.
TUESDAY_10_MYT   = datetime(2024, 1, 2, 2, 0, tzinfo=timezone.utc)
TUESDAY_1010_MYT = datetime(2024, 1, 2, 2, 10, tzinfo=timezone.utc)
TUESDAY_20_MYT   = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)
SATURDAY_10_MYT  = datetime(2024, 1, 6, 2, 0, tzinfo=timezone.utc)

CORE = ["1155", "1295", "5347"]
CAPS = {"6888": "15B", "4715": "2.1B", "7106": "0.9B", "0200": "95M"}
CODES = CORE + list(CAPS) + ["0001", "0002", "0003", "0004", "0005"]

NO_DELAY = FetchSettings(primary_batch_size=50, inter_batch_delay_s=0,
                         fallback_delay_s=0, store_batch_size=5)


class ScriptedQuoteProvider(QuoteProvider):
    """Returns quotes for the codes it knows; `down=True` raises on every call."""

    def __init__(self, name: str, prices: Dict[str, float], down: bool = False):
        self.name = name
        self.prices = dict(prices)
        self.down = down
        self.batch_calls: List[List[str]] = []

    async def fetch_batch(self, codes: Sequence[str]) -> Dict[str, Quote]:
        self.batch_calls.append(list(codes))
        if self.down:
            raise ProviderFetchError(self.name, "connection refused")
        return {
            c: Quote(code=c, price=self.prices[c], change=0.01, previous_close=self.prices[c] - 0.01,
                     source=self.name)
            for c in codes if c in self.prices
        }


class ScriptedFundamentalsProvider(FundamentalsProvider):

    def __init__(self, caps: Dict[str, float], down: bool = False):
        self.name = "yahoo"
        self.caps = dict(caps)
        self.down = down
        self.batch_calls: List[List[str]] = []

    async def fetch_batch(self, codes: Sequence[str]) -> Dict[str, FundamentalsSnapshot]:
        self.batch_calls.append(list(codes))
        if self.down:
            raise ProviderFetchError(self.name, "timeout")
        return {
            c: FundamentalsSnapshot(code=c, market_cap=self.caps[c],
                                    week_52_high=2.0, week_52_low=1.0, source="yahoo")
            for c in codes if c in self.caps
        }


class FlakyPriceStore(InMemoryPriceStore):
    """Rejects any upsert batch that contains one of `broken` codes."""

    def __init__(self, broken: Iterable[str] = ()):
        super().__init__()
        self.broken = set(broken)
        self.upsert_calls = 0

    async def upsert(self, records: Sequence[PersistedPriceRecord]) -> None:
        self.upsert_calls += 1
        if any(r.code in self.broken for r in records):
            raise PersistenceError("simulated write failure")
        await super().upsert(records)


class BrokenJobLog(InMemoryJobLog):

    async def write(self, record):
        raise PersistenceError("job log down")


def prices_for(codes: Iterable[str], base: float = 1.0) -> Dict[str, float]:
    return {c: round(base + i * 0.1, 2) for i, c in enumerate(codes)}


def small_prices_domain(**overrides) -> DomainConfig:
    cfg = dict(
        name=DOMAIN_PRICES,
        total_slices=3,
        window_size=2,
        trigger_minutes=10,
        tier_cadence={1: 10, 2: 20, 3: 30},
        bucketing=BUCKET_EPOCH,
        market_hours_only=True,
    )
    cfg.update(overrides)
    return DomainConfig(**cfg).validate()


@pytest.fixture
def directory() -> StaticInstrumentDirectory:
    return StaticInstrumentDirectory.from_codes(CODES, core_codes=CORE, market_caps=CAPS)


@pytest.fixture
def settings() -> Settings:
    domains = dict(DEFAULT_DOMAINS)
    domains[DOMAIN_PRICES] = small_prices_domain()
    return Settings(cron_secret="s3cret", app_env="production", fetch=NO_DELAY, domains=domains)


@pytest.fixture
def price_store() -> InMemoryPriceStore:
    return InMemoryPriceStore()


@pytest.fixture
def job_log() -> InMemoryJobLog:
    return InMemoryJobLog()


@pytest.fixture
def primary() -> ScriptedQuoteProvider:
    return ScriptedQuoteProvider("eodhd", prices_for(CODES))


@pytest.fixture
def fallback() -> ScriptedQuoteProvider:
    return ScriptedQuoteProvider("yahoo", prices_for(CODES, base=2.0))


@pytest.fixture
def fundamentals() -> ScriptedFundamentalsProvider:
    return ScriptedFundamentalsProvider({c: 1e9 + i for i, c in enumerate(CODES)})


def fixed_clock(when: datetime):
    return lambda: when


def find(items, code: str) -> Optional[dict]:
    return next((i for i in items if i["code"] == code), None)
