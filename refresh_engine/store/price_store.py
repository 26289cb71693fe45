"""
Bursa Refresh — Price Store
────────────────────────────
Durable PersistedPriceRecord rows, exactly one per code.

Redis layout:
  price:{code}   hash, one field per record attribute (absent = None)
  prices:codes   set of every code that has a row

Writes:
  upsert(records)    price group replaced as a whole; fundamentals untouched
  patch(updates)     field-level merge (failure markers, fundamentals)
Both go through a MULTI/EXEC pipeline so a record is never half-written.
Rows are never deleted here.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from refresh_engine.errors import PersistenceError
from refresh_engine.models import PersistedPriceRecord

log = logging.getLogger("br.store")

PRICE_KEY = "price:{code}"
CODES_KEY = "prices:codes"


class PriceStore(ABC):

    @abstractmethod
    async def upsert(self, records: Sequence[PersistedPriceRecord]) -> None:
        """Write-wins on the price field group. Raises PersistenceError."""

    @abstractmethod
    async def patch(self, updates: Mapping[str, Mapping[str, Any]],
                    only_existing: bool = True) -> List[str]:
        """Merge fields into rows. Returns the codes actually written."""

    @abstractmethod
    async def get(self, code: str) -> Optional[PersistedPriceRecord]: ...

    @abstractmethod
    async def all(self) -> List[PersistedPriceRecord]: ...


def _split(fields: Mapping[str, Any]):
    to_set = {k: str(v) for k, v in fields.items() if v is not None}
    to_del = [k for k, v in fields.items() if v is None]
    return to_set, to_del


# ══════════════════════════════════════════════════════════════
# REDIS
# ══════════════════════════════════════════════════════════════
class RedisPriceStore(PriceStore):

    def __init__(self, client: aioredis.Redis):
        self.r = client

    async def upsert(self, records: Sequence[PersistedPriceRecord]) -> None:
        if not records:
            return
        try:
            async with self.r.pipeline(transaction=True) as pipe:
                for rec in records:
                    key = PRICE_KEY.format(code=rec.code)
                    to_set, to_del = _split(rec.price_write())
                    to_set["code"] = rec.code
                    pipe.hset(key, mapping=to_set)
                    if to_del:
                        pipe.hdel(key, *to_del)
                    pipe.sadd(CODES_KEY, rec.code)
                await pipe.execute()
        except RedisError as e:
            raise PersistenceError(f"upsert of {len(records)} records failed: {e}",
                                   {"codes": [r.code for r in records]})

    async def patch(self, updates: Mapping[str, Mapping[str, Any]],
                    only_existing: bool = True) -> List[str]:
        codes = list(updates)
        if not codes:
            return []
        try:
            if only_existing:
                async with self.r.pipeline(transaction=False) as pipe:
                    for code in codes:
                        pipe.exists(PRICE_KEY.format(code=code))
                    exists = await pipe.execute()
                codes = [c for c, e in zip(codes, exists) if e]
                if not codes:
                    return []
            async with self.r.pipeline(transaction=True) as pipe:
                for code in codes:
                    key = PRICE_KEY.format(code=code)
                    to_set, to_del = _split(updates[code])
                    to_set["code"] = code
                    pipe.hset(key, mapping=to_set)
                    if to_del:
                        pipe.hdel(key, *to_del)
                    pipe.sadd(CODES_KEY, code)
                await pipe.execute()
        except RedisError as e:
            raise PersistenceError(f"patch of {len(codes)} records failed: {e}", {"codes": codes})
        return codes

    async def get(self, code: str) -> Optional[PersistedPriceRecord]:
        try:
            raw = await self.r.hgetall(PRICE_KEY.format(code=code))
        except RedisError as e:
            raise PersistenceError(f"read of {code} failed: {e}")
        return PersistedPriceRecord.from_dict(raw) if raw else None

    async def all(self) -> List[PersistedPriceRecord]:
        try:
            codes = sorted(await self.r.smembers(CODES_KEY))
            if not codes:
                return []
            async with self.r.pipeline(transaction=False) as pipe:
                for code in codes:
                    pipe.hgetall(PRICE_KEY.format(code=code))
                rows = await pipe.execute()
        except RedisError as e:
            raise PersistenceError(f"scan of price rows failed: {e}")
        return [PersistedPriceRecord.from_dict(row) for row in rows if row]


# ══════════════════════════════════════════════════════════════
# IN-MEMORY (Redis down, local runs, tests)
# ══════════════════════════════════════════════════════════════
class InMemoryPriceStore(PriceStore):

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}

    def _merge(self, code: str, fields: Mapping[str, Any]):
        row = self.rows.setdefault(code, {"code": code})
        for k, v in fields.items():
            if v is None:
                row.pop(k, None)
            else:
                row[k] = v

    async def upsert(self, records: Sequence[PersistedPriceRecord]) -> None:
        for rec in records:
            self._merge(rec.code, rec.price_write())

    async def patch(self, updates: Mapping[str, Mapping[str, Any]],
                    only_existing: bool = True) -> List[str]:
        written = []
        for code, fields in updates.items():
            if only_existing and code not in self.rows:
                continue
            self._merge(code, fields)
            written.append(code)
        return written

    async def get(self, code: str) -> Optional[PersistedPriceRecord]:
        row = self.rows.get(code)
        return PersistedPriceRecord.from_dict(row) if row else None

    async def all(self) -> List[PersistedPriceRecord]:
        return [PersistedPriceRecord.from_dict(self.rows[c]) for c in sorted(self.rows)]
