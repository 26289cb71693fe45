"""
Runs against a live Redis (REDIS_URL, default localhost). Skipped when none is reachable.
Uses database 15 and flushes it around every test.
"""

import os

import pytest
import pytest_asyncio

from refresh_engine.models import JobRecord, PersistedPriceRecord
from refresh_engine.models.records import JOB_COMPLETED
from refresh_engine.store import RedisConnection, RedisJobLog, RedisPriceStore

REDIS_TEST_URL = os.environ.get("REDIS_TEST_URL", "redis://localhost:6379/15")


@pytest_asyncio.fixture
async def redis_client():
    conn = RedisConnection(REDIS_TEST_URL, socket_timeout=0.5)
    client = await conn.get()
    if client is None:
        pytest.skip("Redis not reachable")
    await client.flushdb()
    yield client
    await client.flushdb()
    await conn.close()


def _record(code, price, **kw):
    return PersistedPriceRecord(code=code, price=price, change=0.1, tier=1, data_source="eodhd",
                                scrape_status="success", updated_at="2024-01-02T02:00:00+00:00",
                                next_update_at="2024-01-02T02:20:00+00:00", **kw)


@pytest.mark.asyncio
async def test_upsert_round_trip_and_idempotence(redis_client):
    store = RedisPriceStore(redis_client)
    await store.upsert([_record("1155", 9.55), _record("5347", 13.2)])
    await store.upsert([_record("1155", 9.55)])

    rec = await store.get("1155")
    assert rec.price == 9.55 and rec.tier == 1 and rec.scrape_status == "success"
    assert [r.code for r in await store.all()] == ["1155", "5347"]


@pytest.mark.asyncio
async def test_upsert_removes_fields_that_became_empty(redis_client):
    store = RedisPriceStore(redis_client)
    await store.upsert([_record("1155", 9.55, error_message="stale")])
    await store.upsert([_record("1155", 9.60)])
    rec = await store.get("1155")
    assert rec.error_message is None and rec.price == 9.60


@pytest.mark.asyncio
async def test_patch_only_existing(redis_client):
    store = RedisPriceStore(redis_client)
    await store.upsert([_record("1155", 9.55)])
    marked = await store.patch({
        "1155": {"scrape_status": "failed", "error_message": "no quote"},
        "9999": {"scrape_status": "failed"},
    })
    assert marked == ["1155"]
    rec = await store.get("1155")
    assert rec.price == 9.55 and rec.scrape_status == "failed"
    assert await store.get("9999") is None


@pytest.mark.asyncio
async def test_job_log_recent_is_newest_first(redis_client):
    jobs = RedisJobLog(redis_client)
    for i in range(3):
        await jobs.write(JobRecord(job_id=f"j{i}", domain="prices", slice_index=i,
                                   started_at="2024-01-02T02:00:00+00:00", total_instruments=5))
    done = await jobs.get("j1")
    done.status = JOB_COMPLETED
    done.success_count = 5
    await jobs.write(done)

    recent = await jobs.recent(10)
    assert [j.job_id for j in recent] == ["j2", "j1", "j0"]
    assert recent[1].status == JOB_COMPLETED and recent[1].success_count == 5
