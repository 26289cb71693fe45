import json
from datetime import time

import pytest

from refresh_engine.config import (
    BUCKET_DAY_OF_YEAR, DOMAIN_FUNDAMENTALS, DOMAIN_PRICES, DomainConfig, Settings, load_settings,
)
from refresh_engine.errors import ConfigurationError
from refresh_engine.universe import load_directory


def test_defaults():
    s = load_settings({})
    prices = s.domain(DOMAIN_PRICES)
    assert prices.total_slices == 16 and prices.window_size == 5
    assert prices.trigger_minutes == 10
    assert prices.tier_cadence == {1: 10, 2: 20, 3: 30}
    assert prices.market_hours_only
    funds = s.domain(DOMAIN_FUNDAMENTALS)
    assert funds.bucketing == BUCKET_DAY_OF_YEAR and not funds.market_hours_only
    assert s.market_hours.open_time == time(9) and s.market_hours.close_time == time(17)
    assert s.fetch.primary_batch_size == 50 and s.fetch.store_batch_size == 5
    assert not s.is_development


def test_env_overrides():
    s = load_settings({
        "CRON_SECRET": "abc",
        "APP_ENV": "development",
        "CORE_CODES": "1155.kl, 5347",
        "PRICES_TOTAL_SLICES": "8",
        "PRICES_WINDOW_SIZE": "10",
        "PRICES_TIER_CADENCE": "10,30,60",
        "PRICES_MARKET_HOURS_ONLY": "false",
        "MARKET_OPEN": "08:30",
        "TRUSTED_CALLER_HEADER": "X-Cron-Job",
        "INTER_BATCH_DELAY_S": "0.25",
    })
    p = s.domain(DOMAIN_PRICES)
    assert s.cron_secret == "abc" and s.is_development
    assert s.extra_core_codes == ("1155.KL", "5347")
    assert (p.total_slices, p.window_size) == (8, 10)
    assert p.tier_cadence == {1: 10, 2: 30, 3: 60}
    assert not p.market_hours_only
    assert s.market_hours.open_time == time(8, 30)
    assert s.trusted_caller_header == "x-cron-job"
    assert s.fetch.inter_batch_delay_s == 0.25


def test_fallback_only_codes():
    assert "03011" in load_settings({}).fetch.fallback_only_codes
    assert load_settings({"FALLBACK_ONLY_CODES": "0363, 03012"}).fetch.fallback_only_codes == ("0363", "03012")
    assert load_settings({"FALLBACK_ONLY_CODES": ""}).fetch.fallback_only_codes == ()


@pytest.mark.parametrize("env", [
    {"PRICES_TOTAL_SLICES": "zero"},
    {"PRICES_TOTAL_SLICES": "0"},
    {"PRICES_TIER_CADENCE": "10,20"},
    {"PRICES_TIER_CADENCE": "30,20,10"},
    {"PRICES_TIER_CADENCE": "10,25,30"},
    {"PRICES_BUCKETING": "weekly"},
    {"FUNDAMENTALS_TIER_CADENCE": "1440,1440,2000"},
    {"MARKET_OPEN": "9am"},
    {"MARKET_OPEN": "18:00"},
])
def test_invalid_env_raises(env):
    with pytest.raises(ConfigurationError):
        load_settings(env)


def test_unknown_domain():
    with pytest.raises(ConfigurationError):
        Settings().domain("dividends")


def test_cadence_for_unknown_tier_falls_back_to_tier_three():
    cfg = DomainConfig("x", 1, 1, 10, {1: 10, 2: 20, 3: 30})
    assert cfg.cadence_for(7) == 30


def test_bundled_universe_loads_and_classifies():
    directory = load_directory(Settings())
    instruments = directory.all()
    codes = [i.code for i in instruments]
    assert len(codes) == len(set(codes)) > 50
    by_code = {i.code: i for i in instruments}
    assert by_code["1155"].tier == 1 and not by_code["1155"].is_core   # large cap
    assert by_code["5139"].tier == 1 and by_code["5139"].is_core
    assert by_code["7106"].tier == 3
    assert {i.tier for i in instruments} == {1, 2, 3}


def test_universe_file_override(tmp_path):
    path = tmp_path / "universe.json"
    path.write_text(json.dumps({"instruments": [
        {"code": "1155", "core": True},
        {"code": "4715.KL", "market_cap": "2.1B"},
        {"code": "0001"},
        {"code": "0001"},
    ]}))
    directory = load_directory(Settings(universe_file=str(path), extra_core_codes=("0001",)))
    assert {i.code: i.tier for i in directory.all()} == {"1155": 1, "4715": 2, "0001": 1}


def test_missing_or_broken_universe_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_directory(Settings(universe_file=str(tmp_path / "nope.json")))
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ConfigurationError):
        load_directory(Settings(universe_file=str(bad)))
