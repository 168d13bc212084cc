"""Result dataclasses shared by the detection layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from abuse_guard.models.alert import AlertDecision
from abuse_guard.models.policy import IPPolicyEntry

Verdict = Literal["normal", "attack"]


@dataclass
class DetectionResult:
    address: str
    verdict: Verdict
    event_count: int
    window_seconds: float
    threshold: float  # requests per second

    @property
    def observed_rate(self) -> float:
        return self.event_count / self.window_seconds

    @property
    def is_attack(self) -> bool:
        return self.verdict == "attack"


@dataclass
class EnforcementResult:
    entry: IPPolicyEntry
    alert: AlertDecision


@dataclass
class ConnectionCheckResult:
    active_connections: int
    threshold: int
    window_seconds: int
    exceeded: bool
    alert: AlertDecision | None = None


@dataclass
class SweepReport:
    """One detection cycle over recently active addresses."""

    checked: list[str] = field(default_factory=list)
    attacks: list[DetectionResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)  # allow- or deny-listed
    failed: list[str] = field(default_factory=list)  # store unavailable
    connections: ConnectionCheckResult | None = None
    enabled: bool = True


@dataclass
class DetectionStats:
    ddos_events: int
    attacking_addresses: list[str]
    last_attack_at: datetime | None
    blocked: list[IPPolicyEntry]
    hours: int
