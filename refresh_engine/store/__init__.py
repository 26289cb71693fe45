from refresh_engine.store.job_log import InMemoryJobLog, JobLog, RedisJobLog
from refresh_engine.store.price_store import InMemoryPriceStore, PriceStore, RedisPriceStore
from refresh_engine.store.redis_client import RedisConnection

__all__ = [
    "PriceStore", "RedisPriceStore", "InMemoryPriceStore",
    "JobLog", "RedisJobLog", "InMemoryJobLog",
    "RedisConnection",
]
