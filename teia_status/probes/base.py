from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

import structlog

from teia_status.config import StatusConfig
from teia_status.drift import DriftEvaluator
from teia_status.errors import StatusCheckError
from teia_status.guards import ProbeGuards
from teia_status.http_client import StatusHttpClient
from teia_status.models import HealthItem, HealthResult, HealthStatus, ReferenceHeight, utc_now

if TYPE_CHECKING:
    from teia_status.reference import ReferenceClock


logger = structlog.get_logger(__name__)


@dataclass
class ProbeContext:
    http: StatusHttpClient
    config: StatusConfig
    reference: "ReferenceClock"
    drift: DriftEvaluator
    guards: ProbeGuards = field(default_factory=ProbeGuards)
    clock: Callable[[], datetime] = utc_now

    def reference_height(self) -> ReferenceHeight | None:
        return self.reference.usable(self.clock())


class Probe:
    """
    One health check against one external service.

    Subclasses implement ``check``; ``run`` is the boundary that turns every
    failure into a result so a broken service never aborts the cycle.
    """

    probe_id: str = ""
    title: str = ""
    # Ordering: run only after the reference refresh has completed.
    depends_on_reference: bool = False
    # Short-circuit to UNKNOWN when the reference height is unusable.
    requires_reference: bool = True
    # Overlapping runs are skipped and return the previous result.
    exclusive: bool = False

    def __init__(self) -> None:
        self.last_result = self.pending_result()

    def result(
        self,
        status: HealthStatus,
        message: str,
        *,
        items: tuple[HealthItem, ...] | list[HealthItem] = (),
        **metrics: Any,
    ) -> HealthResult:
        return HealthResult(
            probe_id=self.probe_id,
            status=status,
            message=message,
            metrics=metrics,
            items=tuple(items),
        )

    def pending_result(self) -> HealthResult:
        return self.result(HealthStatus.UNKNOWN, f"{self.title} status has not been checked yet.")

    def failure_result(self, exc: Exception) -> HealthResult:
        return self.result(HealthStatus.DOWN, f"{self.title} is experiencing technical difficulties.")

    def reference_unavailable_result(self) -> HealthResult:
        return self.result(
            HealthStatus.UNKNOWN,
            f"Cannot determine {self.title} status: reference chain height unavailable.",
        )

    async def check(self, ctx: ProbeContext) -> HealthResult:
        raise NotImplementedError

    async def run(self, ctx: ProbeContext) -> HealthResult:
        if self.exclusive:
            async with ctx.guards.hold(self.probe_id) as acquired:
                if not acquired:
                    logger.debug("Probe already running, skipping", probe_id=self.probe_id)
                    return self.last_result
                result = await self._run_checked(ctx)
        else:
            result = await self._run_checked(ctx)
        self.last_result = result
        return result

    async def _run_checked(self, ctx: ProbeContext) -> HealthResult:
        if self.depends_on_reference and self.requires_reference and ctx.reference_height() is None:
            return self.reference_unavailable_result()
        try:
            return await self.check(ctx)
        except StatusCheckError as exc:
            logger.warning("Probe check failed", probe_id=self.probe_id, error=str(exc))
            return self.failure_result(exc)
        except Exception as exc:
            logger.exception("Probe check crashed", probe_id=self.probe_id, error=f"{type(exc).__name__}: {exc}")
            return self.failure_result(exc)
