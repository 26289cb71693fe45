"""
Bursa Refresh — Job Log
────────────────────────
One JobRecord per invocation. Written when the job opens (running) and once
more when it closes; the second write is the final one.

Redis layout:
  job:{job_id}   JSON string, expires after JOB_TTL
  jobs:recent    list of job ids, newest first, capped at RECENT_CAP
"""

import json
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from refresh_engine.errors import PersistenceError
from refresh_engine.models import JOB_RUNNING, JobRecord

log = logging.getLogger("br.jobs")

JOB_KEY    = "job:{job_id}"
RECENT_KEY = "jobs:recent"
RECENT_CAP = 500
JOB_TTL    = 7 * 24 * 3600


class JobLog(ABC):

    @abstractmethod
    async def write(self, record: JobRecord) -> None: ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[JobRecord]: ...

    @abstractmethod
    async def recent(self, limit: int = 20) -> List[JobRecord]: ...


class RedisJobLog(JobLog):

    def __init__(self, client: aioredis.Redis):
        self.r = client

    async def write(self, record: JobRecord) -> None:
        try:
            async with self.r.pipeline(transaction=True) as pipe:
                pipe.setex(JOB_KEY.format(job_id=record.job_id), JOB_TTL,
                           json.dumps(record.to_dict()))
                if record.status == JOB_RUNNING:
                    pipe.lpush(RECENT_KEY, record.job_id)
                    pipe.ltrim(RECENT_KEY, 0, RECENT_CAP - 1)
                await pipe.execute()
        except RedisError as e:
            raise PersistenceError(f"job log write failed for {record.job_id}: {e}")

    async def get(self, job_id: str) -> Optional[JobRecord]:
        try:
            raw = await self.r.get(JOB_KEY.format(job_id=job_id))
        except RedisError as e:
            raise PersistenceError(f"job log read failed for {job_id}: {e}")
        return JobRecord.from_dict(json.loads(raw)) if raw else None

    async def recent(self, limit: int = 20) -> List[JobRecord]:
        try:
            ids = await self.r.lrange(RECENT_KEY, 0, max(limit, 1) - 1)
            if not ids:
                return []
            raws = await self.r.mget([JOB_KEY.format(job_id=i) for i in ids])
        except RedisError as e:
            raise PersistenceError(f"job log scan failed: {e}")
        return [JobRecord.from_dict(json.loads(r)) for r in raws if r]


class InMemoryJobLog(JobLog):

    def __init__(self, cap: int = RECENT_CAP):
        self.records: Dict[str, JobRecord] = {}
        self._order: Deque[str] = deque(maxlen=cap)

    async def write(self, record: JobRecord) -> None:
        if record.job_id not in self.records:
            self._order.appendleft(record.job_id)
        self.records[record.job_id] = JobRecord.from_dict(record.to_dict())

    async def get(self, job_id: str) -> Optional[JobRecord]:
        return self.records.get(job_id)

    async def recent(self, limit: int = 20) -> List[JobRecord]:
        return [self.records[i] for i in list(self._order)[:limit] if i in self.records]
