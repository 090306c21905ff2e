from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from teia_status.errors import MalformedResponse
from teia_status.models import HealthResult, HealthStatus
from teia_status.probes.base import Probe, ProbeContext


MEMPOOL_QUERY = """query Mempool($contract: String!) {
  transactions(where: {destination: {_eq: $contract}, status: {_neq: "in_chain"}, network: {_eq: "mainnet"}}, limit: 100, order_by: {created_at: desc}) {
    hash
    status
    created_at
    errors
  }
}"""

LATEST_ID_QUERY = """query LatestFeed {
  token(order_by: {id: desc}, limit: 1, where: {artifact_uri: {_neq: ""}}) {
    id
  }
}"""

SWAP_HISTORY_QUERY = """query swapHistory($timestamp: timestamptz!, $contract: String!) {
  swap(where: {contract_address: {_eq: $contract}, timestamp: {_gte: $timestamp}}) {
    token_id
  }
}"""

MINT_HISTORY_QUERY = """query mintHistory($timestamp: timestamptz!) {
  token(where: {artifact_uri: {_neq: ""}, timestamp: {_gte: $timestamp}}) {
    id
  }
}"""


def day_ago_timestamp(now: datetime) -> str:
    """Hasura timestamptz for 24 hours before ``now``, second precision, UTC."""
    return (now - timedelta(days=1)).strftime("%Y-%m-%dT%H:%M:%S") + "+00:00"


def _rows(data: dict[str, Any], key: str, source: str) -> list[Any]:
    rows = data.get(key)
    if not isinstance(rows, list):
        raise MalformedResponse(source, f"{key} is not a list")
    return rows


class MempoolProbe(Probe):
    probe_id = "mempool"
    title = "Mempool"

    async def check(self, ctx: ProbeContext) -> HealthResult:
        endpoint = ctx.config.endpoints.mempool_graphql
        data = await ctx.http.graphql(
            endpoint,
            MEMPOOL_QUERY,
            operation_name="Mempool",
            variables={"contract": ctx.config.marketplace_contract},
        )
        pending = len(_rows(data, "transactions", endpoint))
        if pending > ctx.config.thresholds.mempool_max_transactions:
            return self.result(
                HealthStatus.DEGRADED,
                "High number of transactions in the blockchain mempool.",
                pending=pending,
            )
        return self.result(HealthStatus.OK, "Nominal number of transactions in the blockchain mempool.", pending=pending)

    def failure_result(self, exc: Exception) -> HealthResult:
        return self.result(HealthStatus.UNKNOWN, "Mempool status cannot be queried.")


class SummaryProbe(Probe):
    """
    Reports a single number for the report footer. A failed refresh keeps the
    last known value and marks it UNKNOWN.
    """

    metric_name = "count"

    def __init__(self, initial_value: int = 0) -> None:
        self.value = int(initial_value)
        super().__init__()

    def render(self, value: int) -> str:
        raise NotImplementedError

    async def fetch_value(self, ctx: ProbeContext) -> int:
        raise NotImplementedError

    def pending_result(self) -> HealthResult:
        return self.result(HealthStatus.UNKNOWN, self.render(self.value), **{self.metric_name: self.value})

    async def check(self, ctx: ProbeContext) -> HealthResult:
        self.value = await self.fetch_value(ctx)
        return self.result(HealthStatus.OK, self.render(self.value), **{self.metric_name: self.value})

    def failure_result(self, exc: Exception) -> HealthResult:
        return self.result(HealthStatus.UNKNOWN, self.render(self.value), **{self.metric_name: self.value})


class LatestMintProbe(SummaryProbe):
    probe_id = "latest_mint"
    title = "Latest mint"
    metric_name = "token_id"

    def render(self, value: int) -> str:
        return f"Latest mint is OBJKT {value}."

    async def fetch_value(self, ctx: ProbeContext) -> int:
        endpoint = ctx.config.endpoints.teia_graphql
        data = await ctx.http.graphql(endpoint, LATEST_ID_QUERY, operation_name="LatestFeed", variables={})
        rows = _rows(data, "token", endpoint)
        if not rows or not isinstance(rows[0], dict):
            raise MalformedResponse(endpoint, "no token returned")
        try:
            return int(rows[0].get("id"))
        except (TypeError, ValueError) as exc:
            raise MalformedResponse(endpoint, f"invalid token id: {rows[0].get('id')!r}") from exc


class MintHistoryProbe(SummaryProbe):
    probe_id = "mint_history"
    title = "Mint history"

    def render(self, value: int) -> str:
        return f"Number of OBJKT mints in the last 24 hours: {value}"

    async def fetch_value(self, ctx: ProbeContext) -> int:
        endpoint = ctx.config.endpoints.teia_graphql
        data = await ctx.http.graphql(
            endpoint,
            MINT_HISTORY_QUERY,
            operation_name="mintHistory",
            variables={"timestamp": day_ago_timestamp(ctx.clock())},
        )
        return len(_rows(data, "token", endpoint))


class SwapHistoryProbe(SummaryProbe):
    probe_id = "swap_history"
    title = "Swap history"

    def render(self, value: int) -> str:
        return f"Number of Teia swaps in the last 24 hours: {value}"

    async def fetch_value(self, ctx: ProbeContext) -> int:
        endpoint = ctx.config.endpoints.teia_graphql
        data = await ctx.http.graphql(
            endpoint,
            SWAP_HISTORY_QUERY,
            operation_name="swapHistory",
            variables={
                "timestamp": day_ago_timestamp(ctx.clock()),
                "contract": ctx.config.marketplace_contract,
            },
        )
        return len(_rows(data, "swap", endpoint))
