"""Periodic status cycles and the published report snapshot."""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

import httpx
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import StatusConfig, get_config
from .drift import DriftEvaluator
from .guards import ProbeGuards
from .http_client import StatusHttpClient, build_async_client
from .models import HealthResult, HealthStatus, ReportSnapshot, utc_now
from .probes import REFERENCE_PROBE_ID, Probe, ProbeContext, build_probes
from .reference import ReferenceClock
from .report import ReportBuilder, assemble_snapshot


logger = structlog.get_logger(__name__)

CYCLE_JOB_ID = "status_cycle"


class CycleState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class StatusChecker:
    """
    Runs the fixed probe set once per interval and publishes the merged
    report. Readers only ever see a fully built snapshot.
    """

    def __init__(
        self,
        config: Optional[StatusConfig] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        probes: Optional[Iterable[Probe]] = None,
        on_first_report: Optional[Callable[[str], None]] = None,
    ):
        self.config = config or get_config()
        self.probes: List[Probe] = list(probes) if probes is not None else build_probes(self.config)
        self.order = [p.probe_id for p in self.probes]
        if len(set(self.order)) != len(self.order):
            raise ValueError(f"Duplicate probe ids: {self.order}")

        self.reference = ReferenceClock.from_config(self.config)
        self.drift = DriftEvaluator(
            block_threshold=self.config.thresholds.block_level_diff,
            minute_threshold=self.config.thresholds.timestamp_minutes,
            absolute_level_threshold=self.config.thresholds.absolute_level_diff,
        )
        self.guards = ProbeGuards()
        self.builder = ReportBuilder()
        self.state = CycleState.IDLE

        self._client = http_client
        self._owns_client = http_client is None
        self._http: Optional[StatusHttpClient] = None
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._on_first_report = on_first_report
        self._first_report_emitted = False
        self._cycle_counter = 0
        self._running_cycles = 0

        self._results: Dict[str, HealthResult] = {p.probe_id: p.last_result for p in self.probes}
        self._snapshot = assemble_snapshot(
            order=self.order,
            results=self._results,
            cycle=0,
            completed_at=None,
            builder=self.builder,
        )

    @property
    def snapshot(self) -> ReportSnapshot:
        return self._snapshot

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def get_status(self) -> str:
        """Text of the last completed cycle. Never triggers a check."""
        return self._snapshot.text

    def _context(self) -> ProbeContext:
        if self._http is None:
            if self._client is None:
                self._client = build_async_client(self.config)
            self._http = StatusHttpClient.from_config(self._client, self.config)
        return ProbeContext(
            http=self._http,
            config=self.config,
            reference=self.reference,
            drift=self.drift,
            guards=self.guards,
        )

    async def _run_probe(self, probe: Probe, ctx: ProbeContext) -> HealthResult:
        try:
            return await probe.run(ctx)
        except Exception as e:
            logger.error("Probe raised past its boundary", probe_id=probe.probe_id, error=f"{type(e).__name__}: {e}")
            return HealthResult(
                probe_id=probe.probe_id,
                status=HealthStatus.UNKNOWN,
                message=f"Cannot determine {probe.title or probe.probe_id} status.",
            )

    async def _gather(self, ctx: ProbeContext) -> Dict[str, HealthResult]:
        reference_probes = [p for p in self.probes if p.probe_id == REFERENCE_PROBE_ID]
        dependent = [p for p in self.probes if p.depends_on_reference and p.probe_id != REFERENCE_PROBE_ID]
        independent = [p for p in self.probes if p not in reference_probes and p not in dependent]

        tasks: Dict[str, asyncio.Task] = {
            p.probe_id: asyncio.create_task(self._run_probe(p, ctx)) for p in independent
        }
        # Ordering barrier: dependents start only after the reference refresh resolved.
        for probe in reference_probes:
            task = asyncio.create_task(self._run_probe(probe, ctx))
            tasks[probe.probe_id] = task
            await asyncio.wait([task])
        for probe in dependent:
            tasks[probe.probe_id] = asyncio.create_task(self._run_probe(probe, ctx))

        await asyncio.gather(*tasks.values())
        return {probe_id: task.result() for probe_id, task in tasks.items()}

    async def run_cycle(self) -> ReportSnapshot:
        """Run every probe once and publish the merged snapshot."""
        self._cycle_counter += 1
        cycle = self._cycle_counter
        self._running_cycles += 1
        self.state = CycleState.RUNNING
        logger.info("Checking status", cycle=cycle)
        try:
            results = await self._gather(self._context())
        finally:
            self._running_cycles -= 1
            if self._running_cycles == 0:
                self.state = CycleState.IDLE
        return self._publish(cycle, results)

    def _publish(self, cycle: int, results: Dict[str, HealthResult]) -> ReportSnapshot:
        if cycle < self._snapshot.cycle:
            return self._merge_late(cycle, results)

        for probe_id, result in results.items():
            self._results[probe_id] = result
        snapshot = assemble_snapshot(
            order=self.order,
            results=dict(self._results),
            cycle=cycle,
            completed_at=utc_now(),
            builder=self.builder,
        )
        self._snapshot = snapshot

        failing = [r.probe_id for r in snapshot.results if not r.ok]
        logger.info("Status cycle complete", cycle=cycle, failing=failing)

        if not self._first_report_emitted:
            self._first_report_emitted = True
            logger.info("Initial status report", report=snapshot.text)
            if self._on_first_report is not None:
                self._on_first_report(snapshot.text)
        return snapshot

    def _merge_late(self, cycle: int, results: Dict[str, HealthResult]) -> ReportSnapshot:
        """
        An older cycle finished after a newer one was published. Its results
        are dropped, except fresh runs of exclusive probes that the newer
        cycle skipped while they were in flight.
        """
        late = {
            p.probe_id: results[p.probe_id]
            for p in self.probes
            if p.exclusive
            and results.get(p.probe_id) is p.last_result
            and self._results.get(p.probe_id) is not p.last_result
        }
        if not late:
            logger.info("Discarding results of an older cycle", cycle=cycle, published_cycle=self._snapshot.cycle)
            return self._snapshot

        self._results.update(late)
        self._snapshot = assemble_snapshot(
            order=self.order,
            results=dict(self._results),
            cycle=self._snapshot.cycle,
            completed_at=utc_now(),
            builder=self.builder,
        )
        logger.info(
            "Merged late exclusive results",
            cycle=cycle,
            published_cycle=self._snapshot.cycle,
            probes=sorted(late),
        )
        return self._snapshot

    async def start_checking(self) -> None:
        """Begin periodic cycles; the first one runs immediately. Idempotent."""
        if self._scheduler is not None:
            logger.warning("Status checking already started")
            return

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            func=self.run_cycle,
            trigger=IntervalTrigger(seconds=self.config.interval_seconds),
            id=CYCLE_JOB_ID,
            name="Teia status check cycle",
            next_run_time=datetime.now(timezone.utc),
            max_instances=3,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Status checking started", interval_seconds=self.config.interval_seconds, probes=len(self.probes))

    async def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Status checking stopped")
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
            self._http = None


_default_checker: Optional[StatusChecker] = None


def get_checker() -> StatusChecker:
    global _default_checker
    if _default_checker is None:
        _default_checker = StatusChecker()
    return _default_checker


async def start_checking() -> StatusChecker:
    checker = get_checker()
    await checker.start_checking()
    return checker


def get_status() -> str:
    return get_checker().get_status()
