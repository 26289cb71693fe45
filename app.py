import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from refresh_engine import __version__
from refresh_engine.api.prices_endpoint import get_price_response, get_stale_response
from refresh_engine.api.refresh_endpoint import get_refresh_response
from refresh_engine.config import DOMAIN_PRICES, Settings, load_settings
from refresh_engine.domains import build_schedulers
from refresh_engine.errors import ConfigurationError, PersistenceError
from refresh_engine.orchestrator.scheduler import RotatingScheduler
from refresh_engine.store import (
    InMemoryJobLog, InMemoryPriceStore, JobLog, PriceStore, RedisConnection, RedisJobLog,
    RedisPriceStore,
)
from refresh_engine.universe import InstrumentDirectory, load_directory

log = logging.getLogger("br.app")


@dataclass
class Runtime:
    settings:    Settings
    directory:   Optional[InstrumentDirectory] = None
    price_store: Optional[PriceStore] = None
    job_log:     Optional[JobLog] = None
    redis:       Optional[RedisConnection] = None
    backend:     str = "memory"
    schedulers:  Dict[str, RotatingScheduler] = field(default_factory=dict)


def configure_logging(level: str):
    logging.basicConfig(level=getattr(logging, level, logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s %(message)s")


def create_app(
    settings: Optional[Settings] = None,
    directory: Optional[InstrumentDirectory] = None,
    price_store: Optional[PriceStore] = None,
    job_log: Optional[JobLog] = None,
    **providers,
) -> FastAPI:
    """
    Stores default to Redis (REDIS_URL), falling back to memory when Redis is down.
    Passing stores or providers in skips that (tests, local runs).
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    rt = Runtime(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rt.directory = directory or load_directory(settings)
        if price_store is not None and job_log is not None:
            rt.price_store, rt.job_log, rt.backend = price_store, job_log, "injected"
        else:
            rt.redis = RedisConnection(settings.redis_url)
            client = await rt.redis.get()
            if client:
                rt.price_store, rt.job_log, rt.backend = RedisPriceStore(client), RedisJobLog(client), "redis"
            else:
                rt.price_store, rt.job_log, rt.backend = InMemoryPriceStore(), InMemoryJobLog(), "memory"
        rt.schedulers = build_schedulers(settings, rt.directory, rt.price_store, rt.job_log,
                                         **providers)
        log.info(f"Bursa Refresh {__version__} ready - {len(rt.directory.all())} instruments, "
                 f"store={rt.backend}")
        yield
        if rt.redis:
            await rt.redis.close()

    app = FastAPI(
        title="Bursa Refresh",
        description="Tiered rotating refresh scheduler for Bursa Malaysia prices.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = rt

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {"status": "ok", "docs": "/docs", "refresh": "/refresh?slice=0",
                "domains": sorted(rt.schedulers)}

    @app.get("/health")
    async def health():
        redis_state = "not configured"
        if rt.redis:
            redis_state = "connected" if await rt.redis.get() else "unavailable (using memory store)"
        return {
            "status":    "healthy",
            "store":     rt.backend,
            "redis":     redis_state,
            "domains":   sorted(rt.schedulers),
            "timestamp": int(time.time()),
        }

    @app.api_route("/refresh", methods=["GET", "POST"], tags=["Refresh"])
    async def refresh(
        request: Request,
        slice: Optional[str] = Query(None, description="Slice index, 0-based"),
        secret: Optional[str] = Query(None),
        force: Optional[str] = Query(None, description="true bypasses market hours and cadence"),
        domain: str = Query(DOMAIN_PRICES),
    ):
        status, body = await get_refresh_response(
            settings, rt.schedulers, slice, secret, request.headers, force, domain,
        )
        return JSONResponse(status_code=status, content=body)

    @app.get("/refresh/plan", tags=["Diagnostics"])
    async def refresh_plan(domain: str = Query(DOMAIN_PRICES)):
        scheduler = rt.schedulers.get(domain)
        if scheduler is None:
            raise HTTPException(400, f"Unknown domain: {domain}")
        try:
            return scheduler.plan(provider_batch_size=settings.fetch.primary_batch_size)
        except ConfigurationError as e:
            raise HTTPException(e.status_code, e.message)

    @app.get("/jobs/recent", tags=["Diagnostics"])
    async def recent_jobs(limit: int = Query(20, ge=1, le=200)):
        try:
            jobs = await rt.job_log.recent(limit)
        except PersistenceError as e:
            raise HTTPException(503, e.message)
        return {"count": len(jobs), "jobs": [j.to_dict() for j in jobs]}

    @app.get("/prices/stale", tags=["Prices"])
    async def stale_prices(grace_minutes: int = Query(0, ge=0)):
        try:
            return await get_stale_response(rt.price_store, grace_minutes=grace_minutes)
        except PersistenceError as e:
            raise HTTPException(503, e.message)

    @app.get("/prices/{code}", tags=["Prices"])
    async def get_price(code: str):
        try:
            status, body = await get_price_response(rt.price_store, code)
        except PersistenceError as e:
            raise HTTPException(503, e.message)
        return JSONResponse(status_code=status, content=body)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=8000)
