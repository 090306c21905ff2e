from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog

from teia_status.drift import describe_drift
from teia_status.errors import MalformedResponse, StatusCheckError
from teia_status.models import HealthResult, HealthStatus
from teia_status.probes.base import Probe, ProbeContext


logger = structlog.get_logger(__name__)

DIPDUP_HEAD_STATUS_QUERY = """query {
  dipdup_head_status {
    name
    status
  }
}"""

DIPDUP_HEAD_QUERY = """query {
  dipdup_head {
    created_at
    hash
    level
    name
    timestamp
    updated_at
  }
}"""

TEZTOK_LEVEL_QUERY = """query MyQuery {
  events_aggregate {
    aggregate {
      max {
        level
      }
    }
  }
}"""

TEZTOK_MEDIASTATUS_QUERY = """query MyQuery($limit: Int!) {
  tokens(order_by: {minted_at: desc}, limit: $limit) {
    metadata_status
  }
}"""

TZPROFILES_HEAD_QUERY = """{
  dipdup_head {
    name
    level
    timestamp
  }
}"""

METADATA_ERROR_STATES = {"error", "unprocessed"}


def _level(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _dig(obj: Any, *path: str) -> Any:
    cur = obj
    for key in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _parse_timestamp(value: Any, source: str) -> datetime:
    s = str(value or "").strip()
    if not s:
        raise MalformedResponse(source, "missing timestamp")
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError as exc:
        raise MalformedResponse(source, f"invalid timestamp: {value!r}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class DriftProbe(Probe):
    """Compares a service's head level with the reference height."""

    depends_on_reference = True

    def drift_result(self, ctx: ProbeContext, candidate_level: int | None) -> HealthResult:
        height = ctx.reference_height()
        if height is None:
            return self.reference_unavailable_result()
        if not candidate_level:
            return self.result(HealthStatus.DOWN, f"{self.title} is offline.")
        comparison = ctx.drift.compare(height.level, candidate_level)
        status, message = describe_drift(self.title, comparison)
        return self.result(
            status,
            message,
            reference_level=height.level,
            level=candidate_level,
            delta=int(comparison.delta),
        )


class TeiaIndexerProbe(DriftProbe):
    probe_id = "teia_indexer"
    title = "Teia indexer"

    async def check(self, ctx: ProbeContext) -> HealthResult:
        if ctx.reference.lagging:
            return self.result(
                HealthStatus.DEGRADED,
                "Teia indexer problem: TzKT API has fallen behind the blockchain updates.",
            )

        endpoint = ctx.config.endpoints.teia_graphql
        status_data = await ctx.http.graphql(endpoint, DIPDUP_HEAD_STATUS_QUERY)
        statuses = status_data.get("dipdup_head_status")
        if not isinstance(statuses, list):
            raise MalformedResponse(endpoint, "dipdup_head_status is not a list")
        tzkt_node = next((s for s in statuses if isinstance(s, dict) and s.get("status") == "OK"), None)
        if tzkt_node is None:
            return self.result(HealthStatus.UNKNOWN, "Cannot determine the Teia indexer head status.")

        head_data = await ctx.http.graphql(endpoint, DIPDUP_HEAD_QUERY)
        heads = head_data.get("dipdup_head")
        if not isinstance(heads, list):
            raise MalformedResponse(endpoint, "dipdup_head is not a list")
        mainnet = next((h for h in heads if isinstance(h, dict) and h.get("name") == tzkt_node.get("name")), None)
        if mainnet is None:
            return self.result(HealthStatus.DOWN, f"{self.title} is experiencing technical difficulties.")

        return self.drift_result(ctx, _level(mainnet.get("level")))


class TeiaTzktProbe(DriftProbe):
    probe_id = "teia_tzkt"
    title = "Teia TzKT server"

    async def check(self, ctx: ProbeContext) -> HealthResult:
        head = await ctx.http.get_json(ctx.config.endpoints.teia_tzkt_head)
        return self.drift_result(ctx, _level(_dig(head, "level")))


class TeztokIndexerProbe(DriftProbe):
    probe_id = "teztok_indexer"
    title = "TezTok indexer"

    async def check(self, ctx: ProbeContext) -> HealthResult:
        endpoint = ctx.config.endpoints.teztok_graphql
        try:
            data = await ctx.http.graphql(endpoint, TEZTOK_LEVEL_QUERY, operation_name="MyQuery", variables={})
        except StatusCheckError as exc:
            logger.warning("TezTok level query failed", probe_id=self.probe_id, error=str(exc))
            return self.result(HealthStatus.DOWN, f"{self.title} is offline.")

        result = self.drift_result(ctx, _level(_dig(data, "events_aggregate", "aggregate", "max", "level")))
        if not result.ok:
            return result

        limit = ctx.config.thresholds.metadata_sample_size
        try:
            media = await ctx.http.graphql(
                endpoint,
                TEZTOK_MEDIASTATUS_QUERY,
                operation_name="MyQuery",
                variables={"limit": limit},
            )
        except StatusCheckError as exc:
            logger.warning("TezTok metadata query failed", probe_id=self.probe_id, error=str(exc))
            return result

        tokens = media.get("tokens")
        if not isinstance(tokens, list):
            return result
        errors = sum(
            1 for t in tokens if isinstance(t, dict) and t.get("metadata_status") in METADATA_ERROR_STATES
        )
        if errors >= ctx.config.thresholds.metadata_error_count:
            return self.result(
                HealthStatus.DEGRADED,
                f"{self.title} metadata processing errors.",
                **dict(result.metrics),
                metadata_errors=errors,
            )
        return self.result(result.status, result.message, **dict(result.metrics), metadata_errors=errors)


class TzProfilesProbe(Probe):
    """
    The indexer head must be both recent (minutes) and close to the chain
    head (blocks) before the profile API itself is queried.
    """

    probe_id = "tzprofiles"
    title = "TzProfiles"
    depends_on_reference = True
    requires_reference = False

    async def check(self, ctx: ProbeContext) -> HealthResult:
        endpoint = ctx.config.endpoints.tzprofiles_indexer
        data = await ctx.http.graphql(endpoint, TZPROFILES_HEAD_QUERY)
        heads = data.get("dipdup_head")
        if not isinstance(heads, list) or not heads or not isinstance(heads[0], dict):
            raise MalformedResponse(endpoint, "dipdup_head is empty")
        head = heads[0]

        observed = _parse_timestamp(head.get("timestamp"), endpoint)
        by_time = ctx.drift.compare_timestamp(observed, ctx.clock())
        comparisons = [by_time]
        metrics: dict[str, Any] = {"minutes_behind": int(by_time.delta)}

        height = ctx.reference_height()
        level = _level(head.get("level"))
        if height is not None and level is not None:
            by_level = ctx.drift.compare_absolute(height.known_level, level)
            comparisons.append(by_level)
            metrics["delta"] = int(by_level.delta)

        if not ctx.drift.all_in_sync(*comparisons):
            return self.result(
                HealthStatus.DEGRADED,
                "TzProfiles indexer has fallen behind the blockchain updates.",
                **metrics,
            )

        profile = await ctx.http.get_json(ctx.config.endpoints.tzprofiles_api)
        if isinstance(profile, (list, dict, str)) and len(profile) > 0:
            return self.result(HealthStatus.OK, "TzProfiles is online.", **metrics)
        return self.result(HealthStatus.DOWN, "TzProfiles is down.", **metrics)

    def failure_result(self, exc: Exception) -> HealthResult:
        return self.result(HealthStatus.DOWN, "TzProfiles is down.")
