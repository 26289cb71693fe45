import pytest

from refresh_engine.models import JobRecord, PersistedPriceRecord
from refresh_engine.store import InMemoryJobLog, InMemoryPriceStore


@pytest.mark.asyncio
async def test_memory_price_store_patch_and_read():
    store = InMemoryPriceStore()
    await store.upsert([PersistedPriceRecord(code="1155", price=9.5, tier=1)])
    assert await store.patch({"1155": {"scrape_status": "failed"}, "X": {"scrape_status": "failed"}}) == ["1155"]
    assert await store.patch({"X": {"market_cap": 1e9}}, only_existing=False) == ["X"]

    rec = await store.get("1155")
    assert rec.price == 9.5 and rec.scrape_status == "failed"
    assert [r.code for r in await store.all()] == ["1155", "X"]


@pytest.mark.asyncio
async def test_memory_job_log_caps_and_orders():
    log = InMemoryJobLog(cap=2)
    for i in range(3):
        await log.write(JobRecord(job_id=f"j{i}", domain="prices", slice_index=0,
                                  started_at="t", total_instruments=1))
    assert [j.job_id for j in await log.recent()] == ["j2", "j1"]
