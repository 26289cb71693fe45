"""
Bursa Refresh — HTTP Client
────────────────────────────
Shared GET-with-retry used by every provider.

  200          → parsed JSON
  401 / 403    → None immediately (bad key or blocked, retrying won't help)
  404          → None immediately (unknown symbol)
  429          → back off and retry
  5xx / error  → retry, then ProviderFetchError once attempts run out
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from refresh_engine.errors import ProviderFetchError

log = logging.getLogger("br.http")

REQUEST_TIMEOUT = 10
RETRY_ATTEMPTS  = 3
RETRY_DELAY     = 2.0

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
}


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    provider: str,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    attempts: int = RETRY_ATTEMPTS,
    retry_delay: float = RETRY_DELAY,
) -> Optional[Any]:
    last_error = "no attempts made"
    for attempt in range(attempts):
        try:
            r = await client.get(url, params=params,
                                 headers=headers or DEFAULT_HEADERS,
                                 timeout=REQUEST_TIMEOUT)
            if r.status_code == 200:
                return r.json()
            if r.status_code == 429:
                wait = retry_delay * (attempt + 1) * 2
                log.warning(f"{provider}: rate limited, waiting {wait}s")
                last_error = "HTTP 429"
                await asyncio.sleep(wait)
                continue
            if r.status_code in (401, 403, 404):
                log.warning(f"{provider}: HTTP {r.status_code}, skipping {url[:60]}")
                return None
            last_error = f"HTTP {r.status_code}"
            log.warning(f"{provider}: HTTP {r.status_code} from {url[:60]}")
        except httpx.TimeoutException:
            last_error = "timeout"
            log.warning(f"{provider}: timeout (attempt {attempt+1}): {url[:60]}")
        except (httpx.HTTPError, ValueError) as e:
            last_error = str(e) or type(e).__name__
            log.warning(f"{provider}: error (attempt {attempt+1}): {last_error}")
        if attempt < attempts - 1:
            await asyncio.sleep(retry_delay)
    raise ProviderFetchError(provider, f"giving up after {attempts} attempts ({last_error})",
                             {"url": url[:80]})
