"""DDoS detection by per-address request rate over a trailing window.

An address is under attack when

    events in [now - window, now] / window  >  threshold

The comparison is strict: traffic exactly at the limit stays Normal.
detect_attack() only reads the Event Log; enforce_detection() is the part
that installs a temporary block and raises the critical alert.

The concurrent-connection check is system wide. It alerts but never blocks,
and it is independent of the per-address verdicts: one does not suppress
the other.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from abuse_guard.config import DetectionConfig
from abuse_guard.detections.base import (
    ConnectionCheckResult,
    DetectionResult,
    DetectionStats,
    EnforcementResult,
    SweepReport,
)
from abuse_guard.dispatcher import AlertDispatcher
from abuse_guard.errors import StoreUnavailable, ValidationError
from abuse_guard.models.base import _utcnow
from abuse_guard.models.event import SecurityEvent
from abuse_guard.models.policy import normalize_address
from abuse_guard.policy import IPPolicyService
from abuse_guard.store.events import EventStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

CONNECTIONS_ALERT_KEY = "ddos:connections"


def ddos_alert_key(address: str) -> str:
    return f"ddos:{address}"


class AnomalyDetector:
    def __init__(
        self,
        event_store: EventStore,
        policy: IPPolicyService,
        dispatcher: AlertDispatcher,
        config: DetectionConfig,
        clock: Clock = _utcnow,
    ) -> None:
        self._event_store = event_store
        self._policy = policy
        self._dispatcher = dispatcher
        self._config = config
        self._clock = clock

    async def detect_attack(
        self,
        address: str,
        window_seconds: float | None = None,
        threshold: float | None = None,
    ) -> DetectionResult:
        """Classify *address* as normal or attack from its recent event volume."""
        address = normalize_address(address)
        window = self._config.window_seconds if window_seconds is None else window_seconds
        limit = self._config.requests_per_second_threshold if threshold is None else threshold
        if window <= 0:
            raise ValidationError(f"Detection window must be positive, got {window}")
        if limit <= 0:
            raise ValidationError(f"Rate threshold must be positive, got {limit}")

        now = self._clock()
        count = await self._event_store.count(
            address,
            since=now - timedelta(seconds=window),
            until=now,
            event_types=self._config.event_types,
        )
        verdict = "attack" if count / window > limit else "normal"
        result = DetectionResult(
            address=address,
            verdict=verdict,
            event_count=count,
            window_seconds=window,
            threshold=limit,
        )
        logger.info(
            "DDoS check for %s - requests: %d, rate: %.3f/s, threshold: %s/s",
            address, count, result.observed_rate, limit,
        )
        if result.is_attack:
            logger.warning(
                "DDoS attack detected for %s: %.3f requests/second (threshold: %s)",
                address, result.observed_rate, limit,
            )
        return result

    async def enforce_detection(
        self,
        address: str,
        detection: DetectionResult,
        block_duration_minutes: float | None = None,
        reason: str | None = None,
    ) -> EnforcementResult | None:
        """Block and alert on an attack verdict; a normal verdict is a no-op.

        Re-enforcing an ongoing attack overwrites the single policy row
        (refreshing expires_at) and deduplicates against the active alert.
        """
        if not detection.is_attack:
            return None
        address = normalize_address(address)
        minutes = (
            self._config.auto_block_duration_minutes
            if block_duration_minutes is None
            else block_duration_minutes
        )
        reason = reason or (
            f"DDoS attack detected ({detection.threshold:g} req/s threshold)"
        )

        logger.warning("Auto-blocking IP %s for %s minutes: %s", address, minutes, reason)
        entry = await self._policy.block(address, minutes, reason, actor="ddos-detector")
        await self._record_attack(detection)
        decision = await self._dispatcher.raise_alert(
            self._dispatcher.component,
            "critical",
            ddos_alert_key(address),
            (
                f"IP {address} automatically blocked due to DDoS attack: {reason} "
                f"(duration: {minutes:g} minutes)"
            ),
            metadata={
                "requests_per_second": detection.observed_rate,
                "event_count": detection.event_count,
                "threshold": detection.threshold,
                "window_seconds": detection.window_seconds,
            },
        )
        return EnforcementResult(entry=entry, alert=decision)

    async def check_connection_rate_limiting(self) -> ConnectionCheckResult:
        """Compare the number of recently active sources with the global threshold."""
        now = self._clock()
        window = self._config.connection_window_seconds
        threshold = self._config.concurrent_connections_threshold
        count = await self._event_store.count_active_connections(
            since=now - timedelta(seconds=window),
            until=now,
            event_types=self._config.event_types,
        )
        logger.info("Concurrent connections check - count: %d, threshold: %d", count, threshold)

        result = ConnectionCheckResult(
            active_connections=count,
            threshold=threshold,
            window_seconds=window,
            exceeded=count > threshold,
        )
        if result.exceeded:
            logger.warning(
                "High concurrent connections detected: %d (threshold: %d)", count, threshold
            )
            result.alert = await self._dispatcher.raise_alert(
                self._dispatcher.component,
                "warning",
                CONNECTIONS_ALERT_KEY,
                f"High concurrent connections: {count} active sources in {window}s (threshold: {threshold})",
                metadata={"concurrent_connections": count, "threshold": threshold},
            )
        return result

    async def check_and_block(
        self,
        address: str | None = None,
        window_seconds: float | None = None,
        threshold: float | None = None,
    ) -> SweepReport:
        """Run one detection cycle for *address*, or for every recently active address."""
        if not self._config.enabled:
            logger.info("DDoS protection is disabled")
            return SweepReport(enabled=False)

        report = SweepReport()
        if address is not None:
            candidates = [normalize_address(address)]
        else:
            window = self._config.window_seconds if window_seconds is None else window_seconds
            now = self._clock()
            candidates = await self._event_store.active_addresses(
                since=now - timedelta(seconds=window),
                until=now,
                event_types=self._config.event_types,
            )

        for candidate in candidates:
            try:
                await self._check_candidate(candidate, report, window_seconds, threshold)
            except StoreUnavailable as exc:
                logger.error("DDoS check for %s failed: %s", candidate, exc)
                report.failed.append(candidate)

        report.connections = await self.check_connection_rate_limiting()

        if report.attacks:
            logger.warning("DDoS protection blocked %d IP(s)", len(report.attacks))
        else:
            logger.info("No DDoS attacks detected")
        return report

    async def _check_candidate(
        self,
        candidate: str,
        report: SweepReport,
        window_seconds: float | None,
        threshold: float | None,
    ) -> None:
        status = await self._policy.status(candidate)
        if status.entry is not None and status.entry.list_type in ("allow", "deny"):
            # allow-listed sources bypass detection; deny-listed ones are
            # already blocked permanently and must not be downgraded
            logger.debug("IP %s is %s-listed, skipping DDoS check", candidate, status.entry.list_type)
            report.skipped.append(candidate)
            return
        report.checked.append(candidate)
        detection = await self.detect_attack(candidate, window_seconds, threshold)
        if detection.is_attack:
            await self.enforce_detection(candidate, detection)
            report.attacks.append(detection)

    async def stats(self, hours: int = 24) -> DetectionStats:
        since = self._clock() - timedelta(hours=hours)
        attackers = await self._event_store.active_addresses(since=since, event_types=["ddos"])
        ddos_events = await self._event_store.count_type("ddos", since=since)
        last_attack = await self._event_store.last_observed("ddos", since=since)
        blocked = [
            entry
            for entry in await self._policy.list_entries(active_only=True)
            if entry.list_type in ("temp_block", "deny")
        ]
        return DetectionStats(
            ddos_events=ddos_events,
            attacking_addresses=attackers,
            last_attack_at=last_attack,
            blocked=blocked,
            hours=hours,
        )

    async def _record_attack(self, detection: DetectionResult) -> None:
        event = SecurityEvent(
            event_type="ddos",
            source_address=detection.address,
            metadata={
                "requests_per_second": detection.observed_rate,
                "threshold": detection.threshold,
                "window_seconds": detection.window_seconds,
            },
            observed_at=self._clock(),
        )
        try:
            await self._event_store.insert(event)
        except StoreUnavailable as exc:
            logger.warning("Could not record ddos event for %s: %s", detection.address, exc)
