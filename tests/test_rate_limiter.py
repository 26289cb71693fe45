import asyncio

import pytest

from refresh_engine.orchestrator import rate_limiter
from refresh_engine.orchestrator.rate_limiter import TokenBucket


class ManualClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


@pytest.fixture(autouse=True)
def fresh_buckets():
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.mark.asyncio
async def test_concurrent_callers_queue_behind_the_burst():
    bucket = TokenBucket(capacity=5, rate=10.0, clock=ManualClock())
    delays = await asyncio.gather(*(bucket.reserve() for _ in range(30)))

    assert delays[:5] == [0.0] * 5
    assert delays == sorted(delays)
    assert delays[5] == pytest.approx(0.1)
    assert max(delays) == pytest.approx(2.5)      # 25 past the burst at 10/s
    assert bucket.queued == pytest.approx(25)


@pytest.mark.asyncio
async def test_refill_pays_down_the_queue():
    clock = ManualClock()
    bucket = TokenBucket(capacity=5, rate=10.0, clock=clock)
    for _ in range(30):
        await bucket.reserve()
    clock.t = 1.0
    assert await bucket.reserve() == pytest.approx(1.6)
    clock.t = 60.0
    assert await bucket.reserve() == 0.0
    assert bucket.queued == 0.0


@pytest.mark.asyncio
async def test_wait_sleeps_for_each_callers_own_slot(monkeypatch):
    slept = []

    async def fake_sleep(s):
        slept.append(s)

    monkeypatch.setattr(rate_limiter.asyncio, "sleep", fake_sleep)
    bucket = TokenBucket(capacity=2, rate=4.0, clock=ManualClock())
    await asyncio.gather(*(bucket.wait() for _ in range(6)))
    assert slept == pytest.approx([0.25, 0.5, 0.75, 1.0])


@pytest.mark.asyncio
async def test_provider_buckets_are_shared_until_reset():
    eodhd = rate_limiter.get_bucket("eodhd")
    assert (eodhd.capacity, eodhd.rate) == (20, 10.0)
    assert rate_limiter.get_bucket("eodhd") is eodhd
    assert rate_limiter.get_bucket("yahoo").rate == 2.0

    await rate_limiter.acquire("eodhd")
    rate_limiter.reset()
    assert rate_limiter.get_bucket("eodhd") is not eodhd


def test_bucket_rejects_non_positive_rate():
    with pytest.raises(ValueError):
        TokenBucket(capacity=5, rate=0)
