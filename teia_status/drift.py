from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime

from teia_status.models import HealthStatus, utc_now


BLOCKCHAIN_LEVEL_DIFF = 50
TIMESTAMP_MINUTES_DIFF = 10
ABSOLUTE_LEVEL_DIFF = 5

PRONE_TO_FAIL = "During this period, operations (mint, collect, swap) are prone to fail."


@dataclass(frozen=True)
class DriftComparison:
    delta: float
    threshold: float
    units: str = "blocks"
    # Excluded from equality so compare(a, b) == compare(b, a).
    reference: float | None = field(default=None, compare=False)
    candidate: float | None = field(default=None, compare=False)

    @property
    def in_sync(self) -> bool:
        return self.delta <= self.threshold


class DriftEvaluator:
    """
    Compares two independently reported measures of the same chain height or
    time. Comparisons are instantaneous: no smoothing, no history.
    """

    def __init__(
        self,
        *,
        block_threshold: int = BLOCKCHAIN_LEVEL_DIFF,
        minute_threshold: int = TIMESTAMP_MINUTES_DIFF,
        absolute_level_threshold: int = ABSOLUTE_LEVEL_DIFF,
    ) -> None:
        self.block_threshold = block_threshold
        self.minute_threshold = minute_threshold
        self.absolute_level_threshold = absolute_level_threshold

    def compare(
        self,
        reference: float,
        candidate: float,
        threshold: float | None = None,
        units: str = "blocks",
    ) -> DriftComparison:
        if threshold is None:
            threshold = self.minute_threshold if units == "minutes" else self.block_threshold
        return DriftComparison(
            delta=abs(reference - candidate),
            reference=reference,
            candidate=candidate,
            threshold=threshold,
            units=units,
        )

    def compare_absolute(self, reference: int, candidate: int) -> DriftComparison:
        return self.compare(reference, candidate, threshold=self.absolute_level_threshold)

    def compare_timestamp(
        self,
        observed: datetime,
        now: datetime | None = None,
        threshold: float | None = None,
    ) -> DriftComparison:
        now = now or utc_now()
        minutes = math.ceil(abs((now - observed).total_seconds()) / 60.0)
        return self.compare(minutes, 0, threshold=threshold, units="minutes")

    @staticmethod
    def all_in_sync(*comparisons: DriftComparison) -> bool:
        return all(c.in_sync for c in comparisons)


def _format_delta(delta: float) -> str:
    if float(delta).is_integer():
        return str(int(delta))
    return f"{delta:.1f}"


def describe_drift(name: str, comparison: DriftComparison) -> tuple[HealthStatus, str]:
    if comparison.in_sync:
        return HealthStatus.OK, f"{name} is up to date."
    return (
        HealthStatus.DEGRADED,
        f"{name} is currently delayed by {_format_delta(comparison.delta)} {comparison.units}. {PRONE_TO_FAIL}",
    )
