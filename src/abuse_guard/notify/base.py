"""Abstract base class for all notification channels."""

from __future__ import annotations

from abc import ABC, abstractmethod

from abuse_guard.models.alert import SEVERITY_RANK, Alert, Severity


class NotificationChannel(ABC):
    name: str = "channel"

    def __init__(self, min_severity: Severity = "warning") -> None:
        self.min_severity = min_severity

    def accepts(self, alert: Alert) -> bool:
        return SEVERITY_RANK[alert.severity] >= SEVERITY_RANK[self.min_severity]

    @abstractmethod
    async def send(self, alert: Alert) -> bool:
        """Deliver *alert*. Return False (or raise) on failure."""
        ...
