from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    DOWN = "down"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ReferenceHeight:
    level: int
    known_level: int
    observed_at: datetime

    @property
    def lag(self) -> int:
        """Blocks the indexed head trails the chain head known to the indexer."""
        return self.known_level - self.level

    def age_seconds(self, now: datetime | None = None) -> float:
        now = now or utc_now()
        return max(0.0, (now - self.observed_at).total_seconds())


@dataclass(frozen=True)
class HealthItem:
    label: str
    status: HealthStatus
    message: str


@dataclass(frozen=True)
class HealthResult:
    probe_id: str
    status: HealthStatus
    message: str
    metrics: Mapping[str, Any] = field(default_factory=dict, hash=False)
    items: tuple[HealthItem, ...] = ()

    def __post_init__(self) -> None:
        # Freeze the mapping so a published result cannot be edited in place.
        object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics or {})))
        object.__setattr__(self, "items", tuple(self.items or ()))

    @property
    def ok(self) -> bool:
        return self.status is HealthStatus.OK


@dataclass(frozen=True)
class ReportSnapshot:
    cycle: int
    completed_at: datetime | None
    results: tuple[HealthResult, ...]
    text: str

    @property
    def probe_ids(self) -> list[str]:
        return [r.probe_id for r in self.results]

    def result(self, probe_id: str) -> HealthResult | None:
        for r in self.results:
            if r.probe_id == probe_id:
                return r
        return None

    def _metric(self, probe_id: str, key: str) -> Any:
        r = self.result(probe_id)
        if r is None:
            return None
        return r.metrics.get(key)

    @property
    def latest_mint_id(self) -> int | None:
        return self._metric("latest_mint", "token_id")

    @property
    def mints_24h(self) -> int | None:
        return self._metric("mint_history", "count")

    @property
    def swaps_24h(self) -> int | None:
        return self._metric("swap_history", "count")
