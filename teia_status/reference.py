from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from teia_status.config import StatusConfig
from teia_status.errors import MalformedResponse, StatusCheckError
from teia_status.http_client import StatusHttpClient
from teia_status.models import ReferenceHeight, utc_now


logger = structlog.get_logger(__name__)


def _as_level(value: Any, field_name: str, source: str) -> int:
    if isinstance(value, bool) or value is None:
        raise MalformedResponse(source, f"missing {field_name}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MalformedResponse(source, f"invalid {field_name}: {value!r}") from exc


def parse_head(data: Any, *, source: str, observed_at: datetime) -> ReferenceHeight:
    if not isinstance(data, dict):
        raise MalformedResponse(source, "head is not an object")
    level = _as_level(data.get("level"), "level", source)
    known_raw = data.get("knownLevel")
    known_level = level if known_raw is None else _as_level(known_raw, "knownLevel", source)
    return ReferenceHeight(level=level, known_level=known_level, observed_at=observed_at)


class ReferenceClock:
    """
    Authoritative chain height for one cycle, read from the TzKT API head.

    A failed refresh keeps the previous height but marks it stale; readers go
    through ``usable`` which refuses heights older than ``max_age_seconds``.
    """

    def __init__(self, head_url: str, *, max_lag_blocks: int = 10, max_age_seconds: float = 300.0) -> None:
        self.head_url = head_url
        self.max_lag_blocks = int(max_lag_blocks)
        self.max_age_seconds = float(max_age_seconds)
        self.current: ReferenceHeight | None = None
        self.stale = False
        self.last_error: str | None = None

    @classmethod
    def from_config(cls, config: StatusConfig) -> "ReferenceClock":
        return cls(
            config.endpoints.tzkt_head,
            max_lag_blocks=config.thresholds.reference_max_lag_blocks,
            max_age_seconds=config.thresholds.max_reference_age_seconds,
        )

    async def refresh(self, http: StatusHttpClient, now: datetime | None = None) -> ReferenceHeight:
        try:
            data = await http.get_json(self.head_url)
            height = parse_head(data, source=self.head_url, observed_at=now or utc_now())
        except StatusCheckError as exc:
            self.stale = True
            self.last_error = str(exc)
            logger.warning(
                "Reference height refresh failed",
                error=self.last_error,
                previous_level=self.current.level if self.current else None,
            )
            raise
        self.current = height
        self.stale = False
        self.last_error = None
        return height

    @property
    def lagging(self) -> bool:
        return self.current is not None and self.current.lag > self.max_lag_blocks

    def usable(self, now: datetime | None = None) -> ReferenceHeight | None:
        if self.current is None:
            return None
        if self.current.age_seconds(now) > self.max_age_seconds:
            return None
        return self.current
