"""
Bursa Refresh — Rotating Scheduler
═══════════════════════════════════════════════════════════════════════

One stateless invocation = one slice, one window, one job record.
The same class runs every data domain; a domain only supplies its
config, a fetch capability and a persist capability.

─────────────────────────────────────────────────────────────────────
INVOCATION FLOW
─────────────────────────────────────────────────────────────────────

  slice index valid?            no  → ConfigurationError (400, no job)
  market open? (gated domains)  no  → SKIPPED  market_closed
  slice has members?            no  → SKIPPED  empty_slice
  slice due this tick?          no  → SKIPPED  not_due
  ── job opened (RUNNING) ──
  fetch window codes
  persist results               unrecoverable → FAILED  (job closed failed)
  ── job closed (COMPLETED) ──

`force` skips the market gate and the due check, nothing else.

─────────────────────────────────────────────────────────────────────
TIER CADENCE
─────────────────────────────────────────────────────────────────────

A slice moves at the cadence of its highest-priority tier. With the
default 10/20/30 minute cadences and a 10 minute trigger:

  tier-1 slice   new window every tick
  tier-2 slice   new window every 2nd tick, skipped in between
  tier-3 slice   new window every 3rd tick

Each stored row gets next_update_at = now + the cadence of its own tier.

Per-code failures never fail the invocation. They are counted,
marked in the store and returned in failedCodes.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

from refresh_engine.config import DomainConfig
from refresh_engine.errors import ConfigurationError, FatalError, PersistenceError, RefreshError
from refresh_engine.models import (
    JOB_COMPLETED, JOB_FAILED, FetchOutcome, Instrument, JobRecord, RotationWindow, Slice,
    UpsertResult, utc_iso,
)
from refresh_engine.orchestrator.market_hours import MarketHoursGate
from refresh_engine.orchestrator.partitioner import get_slice, partition
from refresh_engine.orchestrator.priority_tiers import tier_stats
from refresh_engine.orchestrator.rotation import (
    full_cycle_minutes, is_due, select_window, snap_to_tick,
)
from refresh_engine.store.job_log import JobLog
from refresh_engine.universe.directory import InstrumentDirectory

log = logging.getLogger("br.scheduler")

FetchFn   = Callable[[List[str]], Awaitable[FetchOutcome]]
# (outcome, code -> tier, tier -> cadence minutes, now)
PersistFn = Callable[[FetchOutcome, Mapping[str, int], Mapping[int, int], datetime],
                    Awaitable[UpsertResult]]

SKIP_MARKET_CLOSED = "market_closed"
SKIP_EMPTY_SLICE   = "empty_slice"
SKIP_NOT_DUE       = "not_due"


class InvocationState(str, Enum):
    SKIPPED   = "skipped"
    RUNNING   = "running"
    COMPLETED = "completed"
    FAILED    = "failed"


@dataclass
class RefreshDomain:
    config:  DomainConfig
    fetch:   FetchFn
    persist: PersistFn

    @property
    def name(self) -> str:
        return self.config.name


@dataclass
class InvocationResult:
    state:             InvocationState
    domain:            str
    slice_index:       int
    total_slices:      int
    job_id:            Optional[str] = None
    skip_reason:       Optional[str] = None
    slice_size:        int = 0
    cadence_minutes:   Optional[int] = None
    window:            Optional[RotationWindow] = None
    upsert:            Optional[UpsertResult] = None
    fetch_stats:       Dict[str, int] = field(default_factory=dict)
    execution_time_ms: int = 0
    error:             Optional[RefreshError] = None

    @property
    def ok(self) -> bool:
        return self.state in (InvocationState.COMPLETED, InvocationState.SKIPPED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_job_id(domain: str, slice_index: int) -> str:
    return f"{domain}-{slice_index}-{uuid.uuid4().hex[:10]}"


class RotatingScheduler:

    def __init__(
        self,
        domain:     RefreshDomain,
        directory:  InstrumentDirectory,
        job_log:    JobLog,
        gate:       Optional[MarketHoursGate] = None,
        clock:      Callable[[], datetime] = utcnow,
        job_ids:    Callable[[str, int], str] = _new_job_id,
    ):
        self.domain = domain
        self.config = domain.config
        self.directory = directory
        self.job_log = job_log
        self.gate = gate or MarketHoursGate()
        self.clock = clock
        self.job_ids = job_ids

    # ── slicing ───────────────────────────────────────────────
    def _universe(self) -> List[Instrument]:
        universe = self.directory.all()
        if not universe:
            raise ConfigurationError("Instrument universe is empty")
        return universe

    def slices(self) -> List[Slice]:
        return partition(self._universe(), self.config.total_slices)

    def slice(self, index: int) -> Slice:
        return get_slice(self._universe(), self.config.total_slices, index)

    def cadence_for(self, sl: Slice) -> int:
        return self.config.cadence_for(sl.dominant_tier or max(self.config.tier_cadence))

    # ── invocation ────────────────────────────────────────────
    async def run(self, slice_index: int, force: bool = False,
                  now: Optional[datetime] = None) -> InvocationResult:
        """Raises ConfigurationError before any work; everything else ends in a result."""
        t0 = time.monotonic()
        now = now or self.clock()
        cfg = self.config
        sl = self.slice(slice_index)

        result = InvocationResult(
            state=InvocationState.SKIPPED,
            domain=cfg.name,
            slice_index=slice_index,
            total_slices=cfg.total_slices,
            slice_size=sl.size,
        )

        def elapsed() -> int:
            return int((time.monotonic() - t0) * 1000)

        if cfg.market_hours_only and not force and not self.gate.is_open(now):
            log.info(f"[{cfg.name}:{slice_index}] market closed - skipped")
            result.skip_reason = SKIP_MARKET_CLOSED
            result.execution_time_ms = elapsed()
            return result

        if sl.is_empty:
            log.info(f"[{cfg.name}:{slice_index}] empty slice - nothing to do")
            result.skip_reason = SKIP_EMPTY_SLICE
            result.window = RotationWindow(offset=0, size=0, cycle_index=0, cycles_needed=0, bucket=0)
            result.execution_time_ms = elapsed()
            return result

        cadence = self.cadence_for(sl)
        result.cadence_minutes = cadence
        tick = snap_to_tick(now, cfg.trigger_minutes, cfg.bucketing, self.gate.tz)
        window = select_window(sl, tick, cfg.window_size, cadence, cfg.bucketing, self.gate.tz)
        result.window = window

        if not force and not is_due(now, cadence, cfg.trigger_minutes, cfg.bucketing, self.gate.tz):
            log.info(f"[{cfg.name}:{slice_index}] tier {sl.dominant_tier} on {cadence}m cadence "
                     f"- not due this tick")
            result.skip_reason = SKIP_NOT_DUE
            result.execution_time_ms = elapsed()
            return result

        # ── RUNNING ──
        result.state = InvocationState.RUNNING
        job = JobRecord(
            job_id=self.job_ids(cfg.name, slice_index),
            domain=cfg.name,
            slice_index=slice_index,
            started_at=utc_iso(now),
            total_instruments=window.size,
        )
        result.job_id = job.job_id
        await self._write_job(job)
        log.info(f"[{cfg.name}:{slice_index}] job {job.job_id} - "
                 f"{window.size} codes, {window.cycle_info(sl.size)}")

        try:
            outcome = await self.domain.fetch(window.codes)
            result.fetch_stats = dict(outcome.stats)
            tiers = {m.code: m.tier for m in window.members}
            upsert = await self.domain.persist(outcome, tiers, cfg.tier_cadence, now)
        except RefreshError as e:
            return await self._fail(result, job, e, elapsed())
        except Exception as e:
            log.exception(f"[{cfg.name}:{slice_index}] unexpected error")
            return await self._fail(result, job, FatalError(f"Unexpected error: {e}"), elapsed())

        result.upsert = upsert
        result.state = InvocationState.COMPLETED
        result.execution_time_ms = elapsed()

        job.status = JOB_COMPLETED
        job.completed_at = utc_iso(self.clock())
        job.success_count = upsert.updated
        job.failed_count = upsert.failed
        job.failed_codes = list(upsert.failed_codes)
        job.execution_time_ms = result.execution_time_ms
        await self._write_job(job)

        log.info(f"[{cfg.name}:{slice_index}] done - {upsert.updated} updated, "
                 f"{upsert.failed} failed, {result.execution_time_ms}ms")
        return result

    async def _fail(self, result: InvocationResult, job: JobRecord,
                    error: RefreshError, elapsed_ms: int) -> InvocationResult:
        log.error(f"[{result.domain}:{result.slice_index}] job {job.job_id} failed: {error.message}")
        result.state = InvocationState.FAILED
        result.error = error
        result.execution_time_ms = elapsed_ms

        job.status = JOB_FAILED
        job.completed_at = utc_iso(self.clock())
        job.failed_count = job.total_instruments
        job.execution_time_ms = elapsed_ms
        job.error_summary = error.message[:500]
        await self._write_job(job)
        return result

    async def _write_job(self, job: JobRecord):
        try:
            await self.job_log.write(job)
        except PersistenceError as e:
            log.warning(f"Job log unavailable for {job.job_id}: {e.message}")

    # ── diagnostics ───────────────────────────────────────────
    def plan(self, now: Optional[datetime] = None, provider_batch_size: int = 50) -> dict:
        """Where every slice of this domain stands at `now`."""
        now = now or self.clock()
        cfg = self.config
        slices = self.slices()
        rows = []
        for sl in slices:
            if sl.is_empty:
                rows.append({"slice": sl.index, "size": 0, "empty": True})
                continue
            cadence = self.cadence_for(sl)
            tick = snap_to_tick(now, cfg.trigger_minutes, cfg.bucketing, self.gate.tz)
            window = select_window(sl, tick, cfg.window_size, cadence, cfg.bucketing, self.gate.tz)
            rows.append({
                "slice":            sl.index,
                "size":             sl.size,
                "dominantTier":     sl.dominant_tier,
                "cadenceMinutes":   cadence,
                "cyclesNeeded":     window.cycles_needed,
                "fullCycleMinutes": full_cycle_minutes(sl.size, cfg.window_size, cadence),
                "dueNow":           is_due(now, cadence, cfg.trigger_minutes,
                                           cfg.bucketing, self.gate.tz),
                "window": {
                    "offset":    window.offset,
                    "codes":     window.codes,
                    "cycleInfo": window.cycle_info(sl.size),
                },
            })

        tiers = [m.tier for sl in slices for m in sl.members]
        return {
            "domain":          cfg.name,
            "totalSlices":     cfg.total_slices,
            "windowSize":      cfg.window_size,
            "triggerMinutes":  cfg.trigger_minutes,
            "bucketing":       cfg.bucketing,
            "marketHoursOnly": cfg.market_hours_only,
            "market":          self.gate.describe(now),
            "tierStats":       tier_stats(tiers, cfg.tier_cadence, provider_batch_size),
            "slices":          rows,
        }
