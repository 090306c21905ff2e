from __future__ import annotations

from typing import Any

from teia_status.errors import MalformedResponse
from teia_status.models import HealthItem, HealthResult, HealthStatus
from teia_status.probes.base import Probe, ProbeContext


MAX_POLL_OPTIONS = 3


def _voter(vote: Any) -> str | None:
    if not isinstance(vote, dict):
        return None
    key = vote.get("key")
    if not isinstance(key, dict):
        return None
    address = key.get("address")
    return address if isinstance(address, str) else None


def poll_options(poll: dict[str, Any]) -> dict[str, str]:
    """Option id ("1".."3") -> display name. Yes/no polls get fixed names."""
    options = dict(poll)
    if str(options.get("multi")) == "false":
        options["opt1"] = "YES"
        options["opt2"] = "NO"
    names: dict[str, str] = {}
    for i in range(1, MAX_POLL_OPTIONS + 1):
        name = options.get(f"opt{i}")
        if name:
            names[str(i)] = str(name)
    return names


class DaoVotesProbe(Probe):
    """Tallies the DAO token distribution poll, counting eligible voters only."""

    probe_id = "dao_votes"
    title = "Teia Token Distribution Voting"

    async def check(self, ctx: ProbeContext) -> HealthResult:
        cfg = ctx.config.dao_votes
        users = await ctx.http.get_json(cfg.users_list)
        if not isinstance(users, list):
            return self.result(HealthStatus.DEGRADED, "Teia user list is not formatted correctly.")

        poll_url = f"{cfg.poll_base}{cfg.poll_id}"
        poll = await ctx.http.get_json(poll_url)
        if not isinstance(poll, dict):
            raise MalformedResponse(poll_url, "poll description is not an object")
        names = poll_options(poll)

        votes_url = cfg.votes.format(poll_id=cfg.poll_id)
        all_votes = await ctx.http.get_json(votes_url)
        if not isinstance(all_votes, list):
            raise MalformedResponse(votes_url, "votes are not a list")

        eligible = set(u for u in users if isinstance(u, str))
        votes = [v for v in all_votes if _voter(v) in eligible]
        tally = {option: 0 for option in names}
        for vote in votes:
            option = str(vote.get("value"))
            if option in tally:
                tally[option] += 1

        items = []
        for option, name in names.items():
            count = tally[option]
            share = (count * 100.0 / len(votes)) if votes else 0.0
            items.append(HealthItem(label=name, status=HealthStatus.OK, message=f"{name}: {count} votes ({share:.1f}%)"))

        invalid = len(all_votes) - len(votes)
        return self.result(
            HealthStatus.OK,
            f"{len(votes)} Teia users have voted so far ({invalid} votes were invalid):",
            items=items,
            votes=len(votes),
            invalid=invalid,
        )

    def failure_result(self, exc: Exception) -> HealthResult:
        return self.result(HealthStatus.UNKNOWN, "Cannot determine Teia Token Distribution Voting results")
