from __future__ import annotations

from datetime import datetime
from typing import Mapping, Sequence

from teia_status.models import HealthResult, HealthStatus, ReportSnapshot


def bold(text: str) -> str:
    """Discord/Telegram markdown emphasis for anything that needs attention."""
    s = (text or "").strip()
    if not s:
        return s
    return f"**{s}**"


def _render_line(status: HealthStatus, message: str) -> str:
    text = str(message or "").strip()
    if status is HealthStatus.OK:
        return text
    return bold(text)


class ReportBuilder:
    """
    Renders results into the composite status text.

    The order of ``results`` is the order of the report; consumers read it
    positionally, so nothing is sorted or dropped here.
    """

    def build(self, results: Sequence[HealthResult]) -> str:
        lines: list[str] = []
        for result in results:
            try:
                lines.append(_render_line(result.status, result.message))
                for item in result.items:
                    lines.append(f"- {_render_line(item.status, item.message)}")
            except Exception:
                lines.append(bold(f"{getattr(result, 'probe_id', 'probe')}: status cannot be rendered."))
        return "\n".join(lines)


def placeholder_result(probe_id: str) -> HealthResult:
    return HealthResult(
        probe_id=probe_id,
        status=HealthStatus.UNKNOWN,
        message=f"Cannot determine {probe_id} status.",
    )


def assemble_snapshot(
    *,
    order: Sequence[str],
    results: Mapping[str, HealthResult],
    cycle: int,
    completed_at: datetime | None,
    builder: ReportBuilder | None = None,
) -> ReportSnapshot:
    """One entry per declared probe id, in declared order; missing ids become UNKNOWN."""
    ordered = tuple(results.get(probe_id) or placeholder_result(probe_id) for probe_id in order)
    text = (builder or ReportBuilder()).build(ordered)
    return ReportSnapshot(cycle=cycle, completed_at=completed_at, results=ordered, text=text)
