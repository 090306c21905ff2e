"""Health-check aggregator for the services behind teia.art."""

from .models import HealthItem, HealthResult, HealthStatus, ReferenceHeight, ReportSnapshot
from .scheduler import StatusChecker, get_status, start_checking

__all__ = [
    "HealthItem",
    "HealthResult",
    "HealthStatus",
    "ReferenceHeight",
    "ReportSnapshot",
    "StatusChecker",
    "get_status",
    "start_checking",
]
