from __future__ import annotations

import re
from typing import Any

import structlog

from teia_status.errors import MalformedResponse, StatusCheckError
from teia_status.models import HealthResult, HealthStatus
from teia_status.probes.base import Probe, ProbeContext


logger = structlog.get_logger(__name__)

TEZOS_ADDRESS_RE = re.compile(r"^(tz1|tz2|tz3|KT1)[0-9a-zA-Z]{33}$")
BUILD_COMMIT_META_RE = re.compile(r'<meta name="build-commit" content="([a-z0-9]*)"', re.IGNORECASE)
UNRESOLVED_INCIDENT_RE = re.compile(r"unresolved-incidents", re.IGNORECASE)
COMPONENT_STATUS_RE = re.compile(r'data-component-status="([a-z_]*)"', re.IGNORECASE)
COMMIT_HASH_HEADER = "x-teia-commit-hash"

OBJKT_TOKEN_QUERY = """query getTokenAsks($tokenId: String!, $fa2: String!) {
  token(where: {token_id: {_eq: $tokenId}, fa_contract: {_eq: $fa2}}) {
    creators {
      creator_address
    }
    royalties {
      receiver_address
      amount
      decimals
    }
    listings(order_by: {price: asc}, where: {price: {_gt: 0}, _or: [{status: {_eq: "active"}, currency_id: {_eq: 1}, seller: {owner_operators: {token: {fa_contract: {_eq: $fa2}, token_id: {_eq: $tokenId}}, allowed: {_eq: true}}, held_tokens: {quantity: {_gt: "0"}, token: {fa_contract: {_eq: $fa2}, token_id: {_eq: $tokenId}}}}}, {status: {_eq: "active"}}]}) {
      id
      amount
      amount_left
      price
      seller_address
      shares
      seller {
        alias
        address
      }
    }
  }
}"""
OBJKT_SAMPLE_TOKEN = {"tokenId": "768380", "fa2": "KT1RJ6PbjHpwc3M5rw5s2Nbmefwbuwbdxton"}


def valid_tezos_address(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return TEZOS_ADDRESS_RE.match(value.strip()) is not None


class TeiaGuiProbe(Probe):
    probe_id = "teia_gui"
    title = "Teia.art"

    async def check(self, ctx: ProbeContext) -> HealthResult:
        html = await ctx.http.get_text(ctx.config.endpoints.teia_gui)
        if "<head>" in html:
            return self.result(HealthStatus.OK, "Teia.art is online.")
        return self.result(HealthStatus.DOWN, "Teia.art is offline.")

    def failure_result(self, exc: Exception) -> HealthResult:
        return self.result(HealthStatus.DOWN, "Teia.art is offline.")


class TeiaCommitProbe(Probe):
    """Compares the deployed GUI build with the head of teia-ui main."""

    probe_id = "teia_commit"
    title = "Teia.art build"

    async def _deployed_sha(self, ctx: ProbeContext) -> str | None:
        url = ctx.config.endpoints.teia_gui
        try:
            resp = await ctx.http.head(url)
            sha = resp.headers.get(COMMIT_HASH_HEADER)
            if sha:
                return sha.strip()
        except StatusCheckError as exc:
            logger.info("Commit header lookup failed, falling back to page meta", error=str(exc))

        html = await ctx.http.get_text(url)
        match = BUILD_COMMIT_META_RE.search(html)
        if match and match.group(1):
            return match.group(1)
        return None

    async def check(self, ctx: ProbeContext) -> HealthResult:
        sha = await self._deployed_sha(ctx)
        if not sha:
            return self.result(HealthStatus.UNKNOWN, "Cannot determine the Teia.art build commit.")

        headers = {"Accept": "application/vnd.github+json", "User-Agent": ctx.config.user_agent}
        if ctx.config.github_token:
            headers["Authorization"] = f"token {ctx.config.github_token}"
        latest = await ctx.http.get_json(ctx.config.endpoints.github_latest_commit, headers=headers)
        latest_sha = latest.get("sha") if isinstance(latest, dict) else None
        if not latest_sha:
            raise MalformedResponse(ctx.config.endpoints.github_latest_commit, "missing sha")

        if latest_sha == sha:
            return self.result(HealthStatus.OK, "Teia.art has the latest GitHub commit.", deployed=sha)
        return self.result(
            HealthStatus.DEGRADED,
            "Teia.art is behind the latest GitHub commit.",
            deployed=sha,
            latest=latest_sha,
        )

    def failure_result(self, exc: Exception) -> HealthResult:
        return self.result(HealthStatus.UNKNOWN, "Cannot determine whether Teia.art has the latest GitHub commit.")


class ObjktIndexerProbe(Probe):
    probe_id = "objkt_indexer"
    title = "Objkt.com indexer"

    async def check(self, ctx: ProbeContext) -> HealthResult:
        try:
            data = await ctx.http.graphql(
                ctx.config.endpoints.objkt_graphql,
                OBJKT_TOKEN_QUERY,
                operation_name="getTokenAsks",
                variables=dict(OBJKT_SAMPLE_TOKEN),
            )
        except MalformedResponse as exc:
            logger.warning("Objkt token query returned no data", error=str(exc))
            return self.result(HealthStatus.DOWN, "Objkt.com indexer is offline.")
        if data.get("token"):
            return self.result(HealthStatus.OK, "Objkt.com indexer is online.")
        return self.result(HealthStatus.DOWN, "Objkt.com indexer is offline.")


class NftStorageProbe(Probe):
    """Reads the public status page, then hits the authenticated API."""

    probe_id = "nft_storage"
    title = "NFT.Storage"

    async def check(self, ctx: ProbeContext) -> HealthResult:
        try:
            page = await ctx.http.get_text(ctx.config.endpoints.nft_storage_status_page)
        except StatusCheckError as exc:
            logger.warning("NFT.Storage status page unavailable", error=str(exc))
            return self.result(HealthStatus.UNKNOWN, "NFT.Storage status is unknown.")

        if UNRESOLVED_INCIDENT_RE.search(page):
            return self.result(HealthStatus.DEGRADED, "NFT.Storage is experiencing an incident.")
        match = COMPONENT_STATUS_RE.search(page)
        if not match:
            return self.result(HealthStatus.UNKNOWN, "NFT.Storage status is unknown.")
        component_status = match.group(1)
        if component_status != "operational":
            return self.result(
                HealthStatus.DOWN,
                "NFT.Storage is experiencing an outage.",
                component_status=component_status,
            )

        headers = {}
        if ctx.config.nft_storage_key:
            headers["Authorization"] = f"Bearer {ctx.config.nft_storage_key}"
        body = await ctx.http.get_json(ctx.config.endpoints.nft_storage_api, headers=headers)
        if isinstance(body, dict) and body.get("ok"):
            return self.result(HealthStatus.OK, "NFT.Storage is operational.")
        return self.result(HealthStatus.DOWN, "NFT.Storage is experiencing an outage.")

    def failure_result(self, exc: Exception) -> HealthResult:
        return self.result(HealthStatus.DOWN, "NFT.Storage is experiencing an outage.")


class RestrictedListProbe(Probe):
    probe_id = "restricted_list"
    title = "Restricted list"

    async def check(self, ctx: ProbeContext) -> HealthResult:
        restricted = await ctx.http.get_json(ctx.config.endpoints.restricted_list)
        if not isinstance(restricted, list):
            return self.result(HealthStatus.DEGRADED, "Restricted list is not formatted correctly.")
        for address in restricted:
            if not valid_tezos_address(address):
                return self.result(
                    HealthStatus.DEGRADED,
                    f"Restricted list contains an invalid address: {address}.",
                    entries=len(restricted),
                )
        return self.result(HealthStatus.OK, "Restricted list is well-formatted.", entries=len(restricted))

    def failure_result(self, exc: Exception) -> HealthResult:
        return self.result(HealthStatus.DOWN, "Restricted list could not be retrieved.")
