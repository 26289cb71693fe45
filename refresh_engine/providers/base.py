"""
Bursa Refresh — Provider Interfaces
────────────────────────────────────
A provider turns codes into results. It never writes to the store.

Contract for fetch_batch:
  - codes it could not price are simply absent from the returned dict
  - ProviderFetchError means the call itself failed (nothing usable came back)
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from refresh_engine.models import FundamentalsSnapshot, Quote


class QuoteProvider(ABC):

    name: str = "unknown"

    @abstractmethod
    async def fetch_batch(self, codes: Sequence[str]) -> Dict[str, Quote]: ...

    async def fetch_one(self, code: str) -> Optional[Quote]:
        return (await self.fetch_batch([code])).get(code)


class FundamentalsProvider(ABC):

    name: str = "unknown"

    @abstractmethod
    async def fetch_batch(self, codes: Sequence[str]) -> Dict[str, FundamentalsSnapshot]: ...


def chunked(codes: Sequence[str], size: int) -> List[List[str]]:
    size = max(1, size)
    return [list(codes[i:i + size]) for i in range(0, len(codes), size)]
