"""
Bursa Refresh — Redis Connection
─────────────────────────────────
Lazily connected, self-healing redis.asyncio client.
`get()` returns None when Redis is down so callers can pick the memory store.
"""

import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

log = logging.getLogger("br.redis")


class RedisConnection:

    def __init__(self, url: str, socket_timeout: float = 2.0):
        self.url = url
        self.socket_timeout = socket_timeout
        self._client: Optional[aioredis.Redis] = None

    async def get(self) -> Optional[aioredis.Redis]:
        if self._client:
            try:
                await self._client.ping()
                return self._client
            except (RedisError, OSError):
                self._client = None
        try:
            client = aioredis.from_url(self.url, decode_responses=True,
                                       socket_timeout=self.socket_timeout)
            await client.ping()
            log.info("Redis connected")
            self._client = client
            return client
        except (RedisError, OSError) as e:
            log.warning(f"Redis unavailable ({e}) - using in-memory store")
            return None

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None
