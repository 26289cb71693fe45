"""
Bursa Refresh — Refresh API Endpoint
─────────────────────────────────────
/refresh?slice=N&secret=S&force=true&domain=prices

Called by the external trigger, one URL per slice. Every outcome is JSON:

  200  completed, or skipped (market closed / not due / empty slice)
  400  missing or out-of-range slice, unknown domain
  401  not authorized (nothing recorded)
  500  unrecoverable fetch or store error, with jobId for correlation
"""

import hmac
import logging
from typing import Dict, Mapping, Optional, Tuple

from refresh_engine.config import Settings
from refresh_engine.errors import AuthorizationError, ConfigurationError, RefreshError
from refresh_engine.orchestrator.scheduler import (
    SKIP_EMPTY_SLICE, SKIP_MARKET_CLOSED, SKIP_NOT_DUE, InvocationResult, InvocationState,
    RotatingScheduler,
)

log = logging.getLogger("br.api.refresh")

_SKIP_MESSAGES = {
    SKIP_MARKET_CLOSED: "Market closed, no refresh needed",
    SKIP_NOT_DUE:       "Slice not due on this tick",
    SKIP_EMPTY_SLICE:   "Slice has no instruments",
}


def _matches(candidate: Optional[str], expected: str) -> bool:
    return bool(candidate) and hmac.compare_digest(candidate.encode(), expected.encode())


def authorize(settings: Settings, secret: Optional[str], headers: Mapping[str, str]):
    """
    Accepts, in order: development mode, the trusted caller header,
    ?secret=, Authorization: Bearer. Raises AuthorizationError otherwise.
    """
    if settings.is_development:
        return
    if settings.trusted_caller_header and headers.get(settings.trusted_caller_header) is not None:
        return
    if settings.cron_secret:
        if _matches(secret, settings.cron_secret):
            return
        auth = headers.get("authorization") or ""
        if auth.startswith("Bearer ") and _matches(auth[len("Bearer "):].strip(), settings.cron_secret):
            return
    raise AuthorizationError("Unauthorized")


def parse_slice(raw: Optional[str]) -> int:
    if raw is None or str(raw).strip() == "":
        raise ConfigurationError("Missing slice parameter")
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ConfigurationError(f"Invalid slice: {raw}")


def parse_force(raw: Optional[str]) -> bool:
    return str(raw or "").strip().lower() in ("1", "true", "yes")


def _rotation(result: InvocationResult) -> Optional[dict]:
    w = result.window
    if w is None:
        return None
    return {
        "offset":             w.offset,
        "stocksInSlice":      result.slice_size,
        "stocksThisCall":     w.size,
        "cycleInfo":          w.cycle_info(result.slice_size),
        "callsPerSliceCycle": w.cycles_needed,
        "cadenceMinutes":     result.cadence_minutes,
    }


def shape_response(result: InvocationResult) -> Tuple[int, dict]:
    body: Dict[str, object] = {
        "success":     result.ok,
        "domain":      result.domain,
        "slice":       result.slice_index,
        "totalSlices": result.total_slices,
    }

    if result.state == InvocationState.SKIPPED:
        body.update({
            "skipped": True,
            "reason":  result.skip_reason,
            "message": _SKIP_MESSAGES.get(result.skip_reason, "Skipped"),
        })
        rotation = _rotation(result)
        if rotation:
            body["rotation"] = rotation
        body["executionTimeMs"] = result.execution_time_ms
        return 200, body

    body["jobId"] = result.job_id
    body["rotation"] = _rotation(result)

    if result.state == InvocationState.FAILED:
        err = result.error
        body.update({
            "error": err.message if err else "Refresh failed",
            "code":  err.code if err else "fatal",
            "executionTimeMs": result.execution_time_ms,
        })
        return 500, body

    up = result.upsert
    body["result"] = {
        "updated":     up.updated if up else 0,
        "failed":      up.failed if up else 0,
        "failedCodes": list(up.failed_codes) if up else [],
        "sources":     dict(result.fetch_stats),
    }
    body["executionTimeMs"] = result.execution_time_ms
    return 200, body


async def get_refresh_response(
    settings: Settings,
    schedulers: Mapping[str, RotatingScheduler],
    slice_raw: Optional[str],
    secret: Optional[str],
    headers: Mapping[str, str],
    force_raw: Optional[str] = None,
    domain: Optional[str] = None,
) -> Tuple[int, dict]:
    """Main handler for /refresh. Returns (status_code, body)."""
    try:
        authorize(settings, secret, headers)
    except AuthorizationError as e:
        log.warning("Refresh rejected: unauthorized")
        return e.status_code, {"success": False, **e.to_dict()}

    try:
        name = domain or "prices"
        scheduler = schedulers.get(name)
        if scheduler is None:
            raise ConfigurationError(f"Unknown domain: {name}", {"domains": sorted(schedulers)})
        slice_index = parse_slice(slice_raw)
        result = await scheduler.run(slice_index, force=parse_force(force_raw))
    except ConfigurationError as e:
        log.warning(f"Refresh rejected: {e.message}")
        return e.status_code, {"success": False, **e.to_dict()}
    except RefreshError as e:
        log.error(f"Refresh failed before a job was opened: {e.message}")
        return e.status_code, {"success": False, **e.to_dict()}

    return shape_response(result)
