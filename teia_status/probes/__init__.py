"""The fixed set of health probes, in report order."""

from teia_status.config import StatusConfig

from .activity import LatestMintProbe, MempoolProbe, MintHistoryProbe, SwapHistoryProbe
from .base import Probe, ProbeContext
from .dao_votes import DaoVotesProbe
from .indexers import TeiaIndexerProbe, TeiaTzktProbe, TeztokIndexerProbe, TzProfilesProbe
from .latency import NftStorageGatewayProbe, TeiaGatewayProbe
from .reachability import NftStorageProbe, ObjktIndexerProbe, RestrictedListProbe, TeiaCommitProbe, TeiaGuiProbe
from .rpc_nodes import RpcNodesProbe
from .tzkt import TzktApiProbe

REFERENCE_PROBE_ID = TzktApiProbe.probe_id


def build_probes(config: StatusConfig) -> list[Probe]:
    """Instantiate every probe in declared report order."""
    probes: list[Probe] = [
        TeiaGuiProbe(),
        TeiaCommitProbe(),
        TeiaIndexerProbe(),
        TeiaTzktProbe(),
        TeztokIndexerProbe(),
        ObjktIndexerProbe(),
        NftStorageGatewayProbe(),
        TeiaGatewayProbe(),
        NftStorageProbe(),
        TzktApiProbe(),
        TzProfilesProbe(),
        MempoolProbe(),
        RestrictedListProbe(),
        RpcNodesProbe(),
    ]
    if config.dao_votes.enabled:
        probes.append(DaoVotesProbe())
    probes.extend(
        [
            LatestMintProbe(initial_value=config.initial_latest_mint_id),
            MintHistoryProbe(),
            SwapHistoryProbe(),
        ]
    )
    return probes


__all__ = [
    "REFERENCE_PROBE_ID",
    "DaoVotesProbe",
    "LatestMintProbe",
    "MempoolProbe",
    "MintHistoryProbe",
    "NftStorageGatewayProbe",
    "NftStorageProbe",
    "ObjktIndexerProbe",
    "Probe",
    "ProbeContext",
    "RestrictedListProbe",
    "RpcNodesProbe",
    "SwapHistoryProbe",
    "TeiaCommitProbe",
    "TeiaGatewayProbe",
    "TeiaGuiProbe",
    "TeiaIndexerProbe",
    "TeiaTzktProbe",
    "TeztokIndexerProbe",
    "TzProfilesProbe",
    "TzktApiProbe",
    "build_probes",
]
