"""
Bursa Refresh — Local Trigger
──────────────────────────────
Stand-in for the external cron service: calls GET /refresh for every slice
of every domain at that domain's trigger cadence. Holds no rotation state;
the service decides what each call actually does.

  python trigger.py --base-url http://localhost:8000
  python trigger.py --once --domain prices      # fire one round and exit
"""

import argparse
import asyncio
import logging
from datetime import timedelta, timezone
from typing import Dict, List, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from refresh_engine.config import MINUTES_PER_DAY, DomainConfig, Settings, load_settings

log = logging.getLogger("br.trigger")

REQUEST_TIMEOUT = 60
DAILY_RUN_HOUR  = 18      # market-local, after the close
GRACE_S         = 120


def build_trigger(cfg: DomainConfig, tz: timezone):
    m = cfg.trigger_minutes
    if m % MINUTES_PER_DAY == 0:
        return CronTrigger(hour=DAILY_RUN_HOUR, minute=0, timezone=tz)
    if m < 60 and 60 % m == 0:
        return CronTrigger(minute=f"*/{m}", timezone=tz)
    return IntervalTrigger(minutes=m, timezone=tz)


async def fire_slice(client: httpx.AsyncClient, base_url: str, secret: str,
                     domain: str, index: int) -> Optional[dict]:
    params = {"slice": index, "domain": domain}
    headers = {"Authorization": f"Bearer {secret}"} if secret else {}
    try:
        r = await client.get(f"{base_url}/refresh", params=params, headers=headers)
    except httpx.HTTPError as e:
        log.warning(f"[{domain}:{index}] request failed: {e}")
        return None
    body = r.json() if r.headers.get("content-type", "").startswith("application/json") else {}
    if r.status_code != 200:
        log.warning(f"[{domain}:{index}] HTTP {r.status_code}: {body.get('error', r.text[:80])}")
    elif body.get("skipped"):
        log.debug(f"[{domain}:{index}] skipped ({body.get('reason')})")
    else:
        res = body.get("result", {})
        log.info(f"[{domain}:{index}] {res.get('updated', 0)} updated, "
                 f"{res.get('failed', 0)} failed, {body.get('executionTimeMs')}ms")
    return body


async def fire_domain(base_url: str, secret: str, cfg: DomainConfig,
                      transport: Optional[httpx.AsyncBaseTransport] = None) -> List[Optional[dict]]:
    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=transport) as client:
        return list(await asyncio.gather(*(
            fire_slice(client, base_url, secret, cfg.name, i) for i in range(cfg.total_slices)
        )))


def start_trigger(settings: Settings, base_url: str, domains: List[str]) -> AsyncIOScheduler:
    tz = timezone(timedelta(hours=settings.market_hours.utc_offset_hours))
    scheduler = AsyncIOScheduler(timezone=tz)
    for name in domains:
        cfg = settings.domain(name)
        scheduler.add_job(
            fire_domain,
            build_trigger(cfg, tz),
            args=[base_url, settings.cron_secret, cfg],
            id=f"refresh-{name}",
            name=f"{name}: {cfg.total_slices} slices every {cfg.trigger_minutes}m",
            max_instances=1,
            misfire_grace_time=GRACE_S,
            coalesce=True,
            replace_existing=True,
        )
        log.info(f"  {name}: {cfg.total_slices} slices every {cfg.trigger_minutes}m")
    scheduler.start()
    return scheduler


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Call /refresh for every slice on a schedule.")
    p.add_argument("--base-url", default="http://localhost:8000")
    p.add_argument("--domain", action="append", dest="domains",
                   help="Domain to trigger (repeatable, default: all)")
    p.add_argument("--once", action="store_true", help="Fire one round and exit")
    return p.parse_args(argv)


async def main(argv=None):
    args = parse_args(argv)
    settings = load_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s %(message)s")
    base_url = args.base_url.rstrip("/")
    domains = args.domains or sorted(settings.domains)

    if args.once:
        summary: Dict[str, int] = {}
        for name in domains:
            bodies = await fire_domain(base_url, settings.cron_secret, settings.domain(name))
            summary[name] = sum(1 for b in bodies if b and b.get("success"))
        log.info(f"One round fired: {summary}")
        return

    log.info("Refresh trigger - registering jobs:")
    start_trigger(settings, base_url, domains)
    await asyncio.Event().wait()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
