from __future__ import annotations

from teia_status.models import HealthResult, HealthStatus
from teia_status.probes.base import Probe, ProbeContext


class TzktApiProbe(Probe):
    """
    Refreshes the reference clock, then checks that the TzKT API still
    answers account queries and does not trail the chain.
    """

    probe_id = "tzkt_api"
    title = "TzKT API"

    async def check(self, ctx: ProbeContext) -> HealthResult:
        height = await ctx.reference.refresh(ctx.http, ctx.clock())
        await ctx.http.get(
            ctx.config.endpoints.tzkt_operations,
            timeout=ctx.config.timeouts.tzkt_operations_seconds,
        )
        metrics = {"level": height.level, "known_level": height.known_level, "lag": height.lag}
        if ctx.reference.lagging:
            return self.result(
                HealthStatus.DEGRADED,
                "TzKT API has fallen behind the blockchain updates.",
                **metrics,
            )
        return self.result(HealthStatus.OK, "TzKT API is online.", **metrics)

    def failure_result(self, exc: Exception) -> HealthResult:
        return self.result(HealthStatus.DOWN, "TzKT API is down.")
