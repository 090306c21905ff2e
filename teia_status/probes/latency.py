from __future__ import annotations

import asyncio
import time
from typing import Callable

from teia_status.errors import MalformedResponse, Unreachable
from teia_status.models import HealthResult, HealthStatus
from teia_status.probes.base import Probe, ProbeContext


def is_responsive(elapsed_ms: float, threshold_ms: float) -> bool:
    return elapsed_ms < threshold_ms


class GatewayLatencyProbe(Probe):
    """
    Loads a small fixed artifact through an IPFS gateway and times the round
    trip. The whole fetch is bounded by ``timeouts.gateway_seconds``.
    """

    endpoint_name: str = ""

    def __init__(self, timer: Callable[[], float] = time.perf_counter) -> None:
        super().__init__()
        self._timer = timer

    def artifact_url(self, ctx: ProbeContext) -> str:
        return getattr(ctx.config.endpoints, self.endpoint_name)

    def validate(self, url: str, body: bytes) -> None:
        if not body:
            raise MalformedResponse(url, "empty body")

    async def _load(self, ctx: ProbeContext, url: str) -> None:
        body = await ctx.http.get_bytes(url, timeout=ctx.config.timeouts.gateway_seconds)
        self.validate(url, body)

    async def check(self, ctx: ProbeContext) -> HealthResult:
        url = self.artifact_url(ctx)
        started = self._timer()
        bound = ctx.config.timeouts.gateway_seconds
        try:
            await asyncio.wait_for(self._load(ctx, url), timeout=bound)
        except asyncio.TimeoutError as exc:
            raise Unreachable(url, f"no response within {bound}s") from exc
        elapsed_ms = (self._timer() - started) * 1000.0

        if is_responsive(elapsed_ms, ctx.config.thresholds.latency_ms):
            return self.result(HealthStatus.OK, f"{self.title} is responsive.", latency_ms=int(elapsed_ms))
        return self.result(HealthStatus.DEGRADED, f"{self.title} is slow.", latency_ms=int(elapsed_ms))


class NftStorageGatewayProbe(GatewayLatencyProbe):
    probe_id = "ipfs_gateway"
    title = "IPFS gateway (nftstorage.link)"
    endpoint_name = "nft_storage_gateway"


class TeiaGatewayProbe(GatewayLatencyProbe):
    probe_id = "teia_ipfs_gateway"
    title = "IPFS gateway (cache.teia.rocks)"
    endpoint_name = "teia_ipfs_gateway"
    expected_text = "ok"

    def validate(self, url: str, body: bytes) -> None:
        text = body.decode("utf-8", errors="replace").strip()
        if text != self.expected_text:
            raise MalformedResponse(url, f"invalid content: {text[:40]!r}")
