from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

import structlog

from teia_status.errors import MalformedResponse, StatusCheckError
from teia_status.models import HealthItem, HealthResult, HealthStatus
from teia_status.probes.base import Probe, ProbeContext


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RpcNodeStatus:
    node: str
    level_delta: int | None = None
    elapsed_ms: int | None = None
    status_code: int | None = None
    error: str | None = None


def node_header_url(node: str) -> str:
    return f"https://{node}/chains/main/blocks/head/header"


class RpcNodesProbe(Probe):
    """
    Fans out to every configured RPC node and levels each one against the
    reference height. One node failing is recorded for that node only; the
    batch message is built after every node has resolved.
    """

    probe_id = "rpc_nodes"
    title = "RPC nodes"
    depends_on_reference = True
    exclusive = True

    def __init__(self, timer: Callable[[], float] = time.perf_counter) -> None:
        super().__init__()
        self._timer = timer
        self.nodes: tuple[RpcNodeStatus, ...] = ()

    def pending_result(self) -> HealthResult:
        return self.result(HealthStatus.UNKNOWN, "Cannot determine RPC nodes status")

    def failure_result(self, exc: Exception) -> HealthResult:
        return self.pending_result()

    def reference_unavailable_result(self) -> HealthResult:
        return self.pending_result()

    async def _probe_node(self, ctx: ProbeContext, node: str, reference_level: int) -> RpcNodeStatus:
        url = node_header_url(node)
        started = self._timer()
        try:
            resp = await ctx.http.get(url, timeout=ctx.config.timeouts.rpc_node_seconds, retries=0)
            try:
                level = int(resp.json()["level"])
            except (ValueError, KeyError, TypeError) as exc:
                raise MalformedResponse(url, f"missing level: {type(exc).__name__}") from exc
        except StatusCheckError as exc:
            logger.warning("RPC node check failed", node=node, error=str(exc))
            return RpcNodeStatus(node=node, error=str(exc))
        elapsed_ms = int(round((self._timer() - started) * 1000.0))
        return RpcNodeStatus(
            node=node,
            level_delta=abs(reference_level - level),
            elapsed_ms=elapsed_ms,
            status_code=resp.status_code,
        )

    def _item(self, ctx: ProbeContext, s: RpcNodeStatus) -> HealthItem:
        if s.error is not None or s.level_delta is None:
            return HealthItem(label=s.node, status=HealthStatus.UNKNOWN, message=f"{s.node}: Cannot determine status")
        status_text = "OK" if s.status_code == 200 else str(s.status_code)
        message = f"{s.node}: level={s.level_delta} time={s.elapsed_ms}, status={status_text}"
        in_range = s.level_delta <= ctx.config.thresholds.block_level_diff
        status = HealthStatus.OK if in_range and s.status_code == 200 else HealthStatus.DEGRADED
        return HealthItem(label=s.node, status=status, message=message)

    async def check(self, ctx: ProbeContext) -> HealthResult:
        height = ctx.reference_height()
        if height is None:
            return self.reference_unavailable_result()
        nodes = list(ctx.config.rpc_nodes)
        if not nodes:
            return self.result(HealthStatus.UNKNOWN, "No RPC nodes configured.")

        outcomes = await asyncio.gather(
            *(self._probe_node(ctx, node, height.level) for node in nodes),
            return_exceptions=True,
        )
        statuses: list[RpcNodeStatus] = []
        for node, outcome in zip(nodes, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("RPC node check crashed", node=node, error=f"{type(outcome).__name__}: {outcome}")
                statuses.append(RpcNodeStatus(node=node, error=f"{type(outcome).__name__}: {outcome}"))
            else:
                statuses.append(outcome)

        self.nodes = tuple(statuses)
        items = [self._item(ctx, s) for s in statuses]
        failed = sum(1 for s in statuses if s.error is not None)
        healthy = all(i.status is HealthStatus.OK for i in items)
        return self.result(
            HealthStatus.OK if healthy else HealthStatus.DEGRADED,
            "RPC nodes status:",
            items=items,
            nodes=len(items),
            failed=failed,
        )
