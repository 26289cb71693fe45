from datetime import datetime, time, timedelta, timezone

from refresh_engine.config import MarketHours
from refresh_engine.orchestrator.market_hours import MarketHoursGate

MYT = timezone(timedelta(hours=8))


def _myt(y, m, d, hh, mm=0):
    return datetime(y, m, d, hh, mm, tzinfo=MYT)


def test_closed_on_saturday():
    assert not MarketHoursGate().is_open(_myt(2024, 1, 6, 10))


def test_open_tuesday_morning():
    assert MarketHoursGate().is_open(_myt(2024, 1, 2, 10))


def test_closed_tuesday_evening():
    assert not MarketHoursGate().is_open(_myt(2024, 1, 2, 20))


def test_open_is_inclusive_close_is_exclusive():
    gate = MarketHoursGate()
    assert not gate.is_open(_myt(2024, 1, 2, 8, 59))
    assert gate.is_open(_myt(2024, 1, 2, 9, 0))
    assert gate.is_open(_myt(2024, 1, 2, 16, 59))
    assert not gate.is_open(_myt(2024, 1, 2, 17, 0))


def test_utc_input_is_converted_to_market_time():
    gate = MarketHoursGate()
    # Monday 23:30 UTC is Tuesday 07:30 MYT (closed); Tuesday 01:00 UTC is 09:00 MYT (open)
    assert not gate.is_open(datetime(2024, 1, 1, 23, 30, tzinfo=timezone.utc))
    assert gate.is_open(datetime(2024, 1, 2, 1, 0, tzinfo=timezone.utc))
    # Friday 10:00 UTC is 18:00 MYT
    assert not gate.is_open(datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc))


def test_naive_datetime_is_treated_as_utc():
    assert MarketHoursGate().is_open(datetime(2024, 1, 2, 2, 0))


def test_custom_hours():
    gate = MarketHoursGate(MarketHours(utc_offset_hours=0, open_time=time(8), close_time=time(16, 30)))
    assert gate.is_open(datetime(2024, 1, 2, 16, 0, tzinfo=timezone.utc))
    assert not gate.is_open(datetime(2024, 1, 2, 16, 30, tzinfo=timezone.utc))


def test_describe():
    info = MarketHoursGate().describe(_myt(2024, 1, 2, 10))
    assert info["open"] is True
    assert info["window"] == "09:00-17:00"
    assert info["localTime"].startswith("2024-01-02T10:00")
