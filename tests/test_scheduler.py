from __future__ import annotations

import asyncio

import pytest

from teia_status.models import HealthStatus
from teia_status.probes import Probe, build_probes
from teia_status.scheduler import CYCLE_JOB_ID, StatusChecker


DECLARED_ORDER = [
    "teia_gui",
    "teia_commit",
    "teia_indexer",
    "teia_tzkt",
    "teztok_indexer",
    "objkt_indexer",
    "ipfs_gateway",
    "teia_ipfs_gateway",
    "nft_storage",
    "tzkt_api",
    "tzprofiles",
    "mempool",
    "restricted_list",
    "rpc_nodes",
    "latest_mint",
    "mint_history",
    "swap_history",
]


class StaticProbe(Probe):
    def __init__(self, probe_id: str, status: HealthStatus = HealthStatus.OK, *, log: list | None = None) -> None:
        self.probe_id = probe_id
        self.title = probe_id
        super().__init__()
        self.status = status
        self.log = log if log is not None else []
        self.calls = 0

    async def check(self, ctx):
        self.calls += 1
        self.log.append(self.probe_id)
        return self.result(self.status, f"{self.probe_id} call {self.calls}")


class CrashingProbe(StaticProbe):
    async def check(self, ctx):
        raise RuntimeError("unexpected payload")


class EscapingProbe(StaticProbe):
    """Breaks the run() contract to exercise the scheduler's own fallback."""

    async def run(self, ctx):
        raise RuntimeError("escaped")


class SlowReferenceProbe(StaticProbe):
    async def check(self, ctx):
        await asyncio.sleep(0.01)
        self.log.append("reference done")
        return self.result(HealthStatus.OK, "reference refreshed")


class DependentProbe(StaticProbe):
    depends_on_reference = True
    requires_reference = False


class GatedProbe(StaticProbe):
    def __init__(self, probe_id: str) -> None:
        super().__init__(probe_id)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def check(self, ctx):
        self.calls += 1
        call = self.calls
        if call == 1:
            self.entered.set()
            await self.gate.wait()
        return self.result(HealthStatus.OK, f"call {call}")


def _checker(config, router, probes, **kwargs) -> StatusChecker:
    return StatusChecker(config, http_client=router.client(), probes=probes, **kwargs)


def test_default_probe_set_is_in_declared_order(config) -> None:
    assert [p.probe_id for p in build_probes(config)] == DECLARED_ORDER


def test_dao_votes_probe_only_when_enabled(config) -> None:
    cfg = config.model_copy(update={"dao_votes": config.dao_votes.model_copy(update={"enabled": True})})
    ids = [p.probe_id for p in build_probes(cfg)]
    assert ids.index("dao_votes") == ids.index("rpc_nodes") + 1
    assert ids[-3:] == ["latest_mint", "mint_history", "swap_history"]


def test_status_before_first_cycle(config, router) -> None:
    checker = StatusChecker(config, http_client=router.client())

    assert checker.snapshot.cycle == 0
    assert checker.snapshot.probe_ids == DECLARED_ORDER
    assert "Teia.art status has not been checked yet." in checker.get_status()
    assert "Latest mint is OBJKT 701552." in checker.get_status()


def test_duplicate_probe_ids_are_rejected(config, router) -> None:
    with pytest.raises(ValueError):
        _checker(config, router, [StaticProbe("a"), StaticProbe("a")])


@pytest.mark.asyncio
async def test_cycle_reports_every_probe_despite_failures(config, router) -> None:
    probes = [
        StaticProbe("first"),
        CrashingProbe("crashing"),
        EscapingProbe("escaping"),
        StaticProbe("last", HealthStatus.DEGRADED),
    ]
    checker = _checker(config, router, probes)

    snapshot = await checker.run_cycle()

    assert snapshot.probe_ids == ["first", "crashing", "escaping", "last"]
    assert snapshot.result("first").status is HealthStatus.OK
    assert snapshot.result("crashing").status is HealthStatus.DOWN
    assert snapshot.result("crashing").message == "crashing is experiencing technical difficulties."
    assert snapshot.result("escaping").status is HealthStatus.UNKNOWN
    assert snapshot.result("last").status is HealthStatus.DEGRADED
    assert snapshot.text.splitlines() == [
        "first call 1",
        "**crashing is experiencing technical difficulties.**",
        "**Cannot determine escaping status.**",
        "**last call 1**",
    ]


@pytest.mark.asyncio
async def test_dependents_wait_for_reference_refresh(config, router) -> None:
    log: list[str] = []
    probes = [
        DependentProbe("drift_a", log=log),
        StaticProbe("independent", log=log),
        SlowReferenceProbe("tzkt_api", log=log),
        DependentProbe("drift_b", log=log),
    ]
    checker = _checker(config, router, probes)

    snapshot = await checker.run_cycle()

    done = log.index("reference done")
    assert log.index("drift_a") > done
    assert log.index("drift_b") > done
    assert log.index("independent") < done
    # Report order is declaration order, not completion order.
    assert snapshot.probe_ids == ["drift_a", "independent", "tzkt_api", "drift_b"]


@pytest.mark.asyncio
async def test_get_status_is_idempotent_between_cycles(config, router) -> None:
    probe = StaticProbe("only")
    checker = _checker(config, router, [probe])
    await checker.run_cycle()

    first = checker.get_status()
    second = checker.get_status()

    assert first == second == "only call 1"
    assert probe.calls == 1

    await checker.run_cycle()
    assert checker.get_status() == "only call 2"


@pytest.mark.asyncio
async def test_first_report_callback_fires_once(config, router) -> None:
    reports: list[str] = []
    checker = _checker(config, router, [StaticProbe("only")], on_first_report=reports.append)

    await checker.run_cycle()
    await checker.run_cycle()

    assert reports == ["only call 1"]


@pytest.mark.asyncio
async def test_older_cycle_never_replaces_newer_snapshot(config, router) -> None:
    probe = GatedProbe("gated")
    checker = _checker(config, router, [probe])

    older = asyncio.create_task(checker.run_cycle())
    await probe.entered.wait()
    newer = await checker.run_cycle()
    assert newer.cycle == 2

    probe.gate.set()
    await older

    assert checker.snapshot.cycle == 2
    assert checker.get_status() == "call 2"


@pytest.mark.asyncio
async def test_start_checking_is_idempotent(config, router) -> None:
    probe = StaticProbe("only")
    checker = _checker(config, router, [probe])

    await checker.start_checking()
    await checker.start_checking()
    try:
        assert checker.running
        jobs = checker._scheduler.get_jobs()
        assert [job.id for job in jobs] == [CYCLE_JOB_ID]

        for _ in range(200):
            if checker.snapshot.cycle:
                break
            await asyncio.sleep(0.01)
        assert checker.snapshot.cycle >= 1
    finally:
        await checker.stop()
    assert not checker.running


class GatedExclusiveProbe(GatedProbe):
    exclusive = True


@pytest.mark.asyncio
async def test_late_exclusive_run_is_merged_into_newer_snapshot(config, router) -> None:
    gated = GatedExclusiveProbe("fan_out")
    plain = StaticProbe("plain")
    checker = _checker(config, router, [gated, plain])

    older = asyncio.create_task(checker.run_cycle())
    await gated.entered.wait()
    newer = await checker.run_cycle()
    # The newer cycle skipped the in-flight fan-out and kept its previous result.
    assert newer.result("fan_out").status is HealthStatus.UNKNOWN
    assert gated.calls == 1

    gated.gate.set()
    await older

    assert checker.snapshot.cycle == 2
    assert checker.snapshot.result("fan_out").message == "call 1"
    assert checker.snapshot.result("plain").message == "plain call 2"
    assert checker.get_status().splitlines() == ["call 1", "plain call 2"]


@pytest.mark.asyncio
async def test_unreachable_reference_cycle_with_default_probes(config, router) -> None:
    router.fail(config.endpoints.tzkt_head)
    router.text(config.endpoints.teia_gui, "<html><head><title>Teia</title></head></html>")
    checker = StatusChecker(config, http_client=router.client())

    snapshot = await checker.run_cycle()

    assert snapshot.probe_ids == DECLARED_ORDER
    assert len(snapshot.text.splitlines()) == len(DECLARED_ORDER)
    assert snapshot.result("teia_gui").status is HealthStatus.OK
    assert snapshot.result("tzkt_api").status is HealthStatus.DOWN
    assert snapshot.result("tzkt_api").message == "TzKT API is down."
    for probe_id in ("teia_indexer", "teia_tzkt", "teztok_indexer", "rpc_nodes"):
        assert snapshot.result(probe_id).status is HealthStatus.UNKNOWN, probe_id
    # Unrouted services answer 404 and are reported, not dropped.
    assert snapshot.result("objkt_indexer").status is HealthStatus.DOWN
    assert snapshot.result("latest_mint").message == "Latest mint is OBJKT 701552."
    assert not any(str(r.url).endswith("/chains/main/blocks/head/header") for r in router.calls)
