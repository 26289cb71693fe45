"""
Bursa Refresh — Market Hours Gate
──────────────────────────────────
Is the exchange open right now?

Bursa Malaysia trades Mon–Fri, 09:00 ≤ t < 17:00 MYT (UTC+8, no DST).
A fixed offset is enough: no daylight saving, no tz database needed.
Exchange holidays are not modelled; a holiday tick just refreshes stale data.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from refresh_engine.config import MarketHours
from refresh_engine.models import as_utc


class MarketHoursGate:

    def __init__(self, hours: Optional[MarketHours] = None):
        self.hours = hours or MarketHours()
        self.tz = timezone(timedelta(hours=self.hours.utc_offset_hours))

    def local_time(self, now: datetime) -> datetime:
        return as_utc(now).astimezone(self.tz)

    def is_open(self, now: datetime) -> bool:
        local = self.local_time(now)
        if local.weekday() not in self.hours.trading_weekdays:
            return False
        t = local.time().replace(tzinfo=None)
        return self.hours.open_time <= t < self.hours.close_time

    def describe(self, now: datetime) -> dict:
        local = self.local_time(now)
        return {
            "open":      self.is_open(now),
            "localTime": local.isoformat(),
            "window":    f"{self.hours.open_time:%H:%M}-{self.hours.close_time:%H:%M}",
        }
