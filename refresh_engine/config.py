"""
Bursa Refresh — Configuration
──────────────────────────────
Single source of truth for every tunable number.
Read once from the environment (and an optional .env file), then passed
around as frozen dataclasses. Nothing below this module touches os.environ.

Default price cadence (16 slices × 5 codes every 10 minutes):
  ~800 codes ÷ 80 per tick = 10 ticks ≈ 100 minutes for a full tier-3 pass,
  tier-1 slices rotate every tick, tier-2 every 2nd, tier-3 every 3rd.
"""

import os
from dataclasses import dataclass, field
from datetime import time as dtime
from typing import Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from refresh_engine.errors import ConfigurationError

# ── Tier constants ────────────────────────────────────────────
TIER_1 = 1
TIER_2 = 2
TIER_3 = 3
TIERS: Tuple[int, ...] = (TIER_1, TIER_2, TIER_3)

# Market cap thresholds (MYR)
TIER_1_MARKET_CAP_THRESHOLD = 10_000_000_000   # 10B
TIER_2_MARKET_CAP_THRESHOLD =  1_000_000_000   # 1B

# ── Bucketing strategies ─────────────────────────────────────
BUCKET_EPOCH         = "epoch"
BUCKET_MINUTE_OF_DAY = "minute_of_day"
BUCKET_DAY_OF_YEAR   = "day_of_year"
BUCKETINGS = (BUCKET_EPOCH, BUCKET_MINUTE_OF_DAY, BUCKET_DAY_OF_YEAR)

MINUTES_PER_DAY = 24 * 60

# ── Domain names ─────────────────────────────────────────────
DOMAIN_PRICES       = "prices"
DOMAIN_FUNDAMENTALS = "fundamentals"

# Codes the primary (EODHD) does not list; these go straight to the fallback.
# Mostly 5-digit ACE market codes.
FALLBACK_ONLY_CODES: Tuple[str, ...] = (
    "03011",   # AMLEX
    "03012",   # BABA
    "03024",   # CETECH
    "03041",   # 1TECH
    "03059",   # AUTORIS
    "03064",   # MYAXIS
    "0363",    # PMCK
    "0369",    # JSSOLAR
)


@dataclass(frozen=True)
class TierThresholds:
    tier1_market_cap: float = TIER_1_MARKET_CAP_THRESHOLD
    tier2_market_cap: float = TIER_2_MARKET_CAP_THRESHOLD


@dataclass(frozen=True)
class MarketHours:
    """Fixed-offset trading window. Bursa Malaysia: 09:00–17:00 MYT, Mon–Fri."""
    utc_offset_hours: float = 8.0
    open_time:        dtime = dtime(9, 0)
    close_time:       dtime = dtime(17, 0)
    trading_weekdays: Tuple[int, ...] = (0, 1, 2, 3, 4)   # Mon=0 … Fri=4


def cadence_for_tier(tier_cadence: Mapping[int, int], tier: int) -> int:
    """Unknown tiers refresh at the slowest configured cadence."""
    if tier in tier_cadence:
        return tier_cadence[tier]
    return tier_cadence.get(TIER_3, max(tier_cadence.values()))


@dataclass(frozen=True)
class DomainConfig:
    """
    Rotation settings for one data domain.

    trigger_minutes — how often the external trigger calls each slice
    tier_cadence    — minutes between window advances, per tier
    """
    name:                  str
    total_slices:          int
    window_size:           int
    trigger_minutes:       int
    tier_cadence:          Dict[int, int]
    bucketing:             str = BUCKET_EPOCH
    market_hours_only:     bool = True

    def cadence_for(self, tier: int) -> int:
        return cadence_for_tier(self.tier_cadence, tier)

    def validate(self) -> "DomainConfig":
        if self.total_slices < 1:
            raise ConfigurationError(f"{self.name}: total_slices must be >= 1")
        if self.window_size < 1:
            raise ConfigurationError(f"{self.name}: window_size must be >= 1")
        if self.trigger_minutes < 1:
            raise ConfigurationError(f"{self.name}: trigger_minutes must be >= 1")
        if self.bucketing not in BUCKETINGS:
            raise ConfigurationError(
                f"{self.name}: unknown bucketing '{self.bucketing}'",
                {"allowed": list(BUCKETINGS)},
            )
        cadences = [self.tier_cadence.get(t) for t in TIERS]
        if any(c is None or c < 1 for c in cadences):
            raise ConfigurationError(f"{self.name}: every tier needs a positive cadence")
        if cadences != sorted(cadences):
            raise ConfigurationError(
                f"{self.name}: tier cadences must not decrease from tier 1 to tier 3",
                {"tier_cadence": dict(self.tier_cadence)},
            )
        for tier, cadence in self.tier_cadence.items():
            if cadence % self.trigger_minutes:
                raise ConfigurationError(
                    f"{self.name}: tier {tier} cadence {cadence}m is not a multiple "
                    f"of the {self.trigger_minutes}m trigger"
                )
        if self.bucketing == BUCKET_DAY_OF_YEAR:
            if any(c % MINUTES_PER_DAY for c in cadences):
                raise ConfigurationError(
                    f"{self.name}: day_of_year bucketing needs whole-day cadences"
                )
        return self


@dataclass(frozen=True)
class FetchSettings:
    primary_batch_size:  int = 50      # EODHD batch-size limit
    inter_batch_delay_s: float = 1.0   # between primary batches
    fallback_delay_s:    float = 0.5   # between individual fallback calls
    store_batch_size:    int = 5       # records per store write
    fallback_only_codes: Tuple[str, ...] = FALLBACK_ONLY_CODES   # primary never carries these


@dataclass(frozen=True)
class Settings:
    cron_secret:           str = ""
    trusted_caller_header: str = "x-vercel-cron"
    app_env:               str = "production"
    log_level:             str = "INFO"
    redis_url:             str = "redis://localhost:6379"
    eodhd_api_key:         str = ""
    universe_file:         Optional[str] = None
    extra_core_codes:      Tuple[str, ...] = ()
    thresholds:            TierThresholds = field(default_factory=TierThresholds)
    market_hours:          MarketHours = field(default_factory=MarketHours)
    fetch:                 FetchSettings = field(default_factory=FetchSettings)
    domains:               Dict[str, DomainConfig] = field(default_factory=lambda: dict(DEFAULT_DOMAINS))

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"

    def domain(self, name: str) -> DomainConfig:
        cfg = self.domains.get(name)
        if cfg is None:
            raise ConfigurationError(
                f"Unknown domain: {name}", {"domains": sorted(self.domains)}
            )
        return cfg


# ── Defaults per domain ──────────────────────────────────────
DEFAULT_DOMAINS: Dict[str, DomainConfig] = {
    DOMAIN_PRICES: DomainConfig(
        name=DOMAIN_PRICES,
        total_slices=16,
        window_size=5,
        trigger_minutes=10,
        tier_cadence={TIER_1: 10, TIER_2: 20, TIER_3: 30},
        bucketing=BUCKET_EPOCH,
        market_hours_only=True,
    ),
    DOMAIN_FUNDAMENTALS: DomainConfig(
        name=DOMAIN_FUNDAMENTALS,
        total_slices=8,
        window_size=5,
        trigger_minutes=MINUTES_PER_DAY,
        tier_cadence={TIER_1: MINUTES_PER_DAY, TIER_2: MINUTES_PER_DAY, TIER_3: MINUTES_PER_DAY},
        bucketing=BUCKET_DAY_OF_YEAR,
        market_hours_only=False,
    ),
}


# ══════════════════════════════════════════════════════════════
# ENV PARSING
# ══════════════════════════════════════════════════════════════
def _parse_time(raw: str, var: str) -> dtime:
    try:
        hh, mm = raw.strip().split(":")
        return dtime(int(hh), int(mm))
    except ValueError:
        raise ConfigurationError(f"{var} must look like HH:MM, got '{raw}'")


def _parse_codes(raw: Optional[str], default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Comma-separated codes. Unset keeps the default, an empty value clears it."""
    if raw is None:
        return default
    return tuple(c.strip().upper() for c in raw.split(",") if c.strip())


def _parse_int(env: Mapping[str, str], var: str, default: int) -> int:
    raw = env.get(var)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{var} must be an integer, got '{raw}'")


def _parse_float(env: Mapping[str, str], var: str, default: float) -> float:
    raw = env.get(var)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{var} must be a number, got '{raw}'")


def _parse_cadence(raw: Optional[str], var: str, default: Dict[int, int]) -> Dict[int, int]:
    if not raw:
        return dict(default)
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if len(parts) != len(TIERS):
        raise ConfigurationError(f"{var} needs {len(TIERS)} comma-separated minutes, got '{raw}'")
    try:
        return {tier: int(p) for tier, p in zip(TIERS, parts)}
    except ValueError:
        raise ConfigurationError(f"{var} must be integers, got '{raw}'")


def _domain_from_env(env: Mapping[str, str], base: DomainConfig) -> DomainConfig:
    prefix = base.name.upper()
    only_open = env.get(f"{prefix}_MARKET_HOURS_ONLY")
    return DomainConfig(
        name=base.name,
        total_slices=_parse_int(env, f"{prefix}_TOTAL_SLICES", base.total_slices),
        window_size=_parse_int(env, f"{prefix}_WINDOW_SIZE", base.window_size),
        trigger_minutes=_parse_int(env, f"{prefix}_TRIGGER_MINUTES", base.trigger_minutes),
        tier_cadence=_parse_cadence(env.get(f"{prefix}_TIER_CADENCE"),
                                    f"{prefix}_TIER_CADENCE", base.tier_cadence),
        bucketing=env.get(f"{prefix}_BUCKETING", base.bucketing),
        market_hours_only=(base.market_hours_only if only_open is None
                           else only_open.lower() == "true"),
    ).validate()


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from `env` (defaults to os.environ after loading .env).
    Raises ConfigurationError on malformed values.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    core = _parse_codes(env.get("CORE_CODES"), ())
    hours = MarketHours(
        utc_offset_hours=_parse_float(env, "MARKET_UTC_OFFSET_HOURS", 8.0),
        open_time=_parse_time(env.get("MARKET_OPEN", "09:00"), "MARKET_OPEN"),
        close_time=_parse_time(env.get("MARKET_CLOSE", "17:00"), "MARKET_CLOSE"),
    )
    if hours.open_time >= hours.close_time:
        raise ConfigurationError("MARKET_OPEN must be before MARKET_CLOSE")

    return Settings(
        cron_secret=env.get("CRON_SECRET", ""),
        trusted_caller_header=env.get("TRUSTED_CALLER_HEADER", "x-vercel-cron").lower(),
        app_env=env.get("APP_ENV", "production"),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        redis_url=env.get("REDIS_URL", "redis://localhost:6379"),
        eodhd_api_key=env.get("EODHD_API_KEY", ""),
        universe_file=env.get("UNIVERSE_FILE") or None,
        extra_core_codes=core,
        thresholds=TierThresholds(
            tier1_market_cap=_parse_float(env, "TIER1_MARKET_CAP", TIER_1_MARKET_CAP_THRESHOLD),
            tier2_market_cap=_parse_float(env, "TIER2_MARKET_CAP", TIER_2_MARKET_CAP_THRESHOLD),
        ),
        market_hours=hours,
        fetch=FetchSettings(
            primary_batch_size=_parse_int(env, "PRIMARY_BATCH_SIZE", 50),
            inter_batch_delay_s=_parse_float(env, "INTER_BATCH_DELAY_S", 1.0),
            fallback_delay_s=_parse_float(env, "FALLBACK_DELAY_S", 0.5),
            store_batch_size=_parse_int(env, "STORE_BATCH_SIZE", 5),
            fallback_only_codes=_parse_codes(env.get("FALLBACK_ONLY_CODES"), FALLBACK_ONLY_CODES),
        ),
        domains={name: _domain_from_env(env, base) for name, base in DEFAULT_DOMAINS.items()},
    )
