"""IPPolicyService: allow/deny/temporary-block rules over the PolicyStore.

Expiry is enforced at read time: a temp_block whose expires_at has passed
reads as absent whether or not cleanup has run. Cleanup only reclaims
storage.

classify() fails open. If the store cannot be reached the address is
reported as allowed (fail_open=True) straight away, and a warning alert keyed
"store_unavailable" is raised from a background task so the outage itself
is visible. At most one such report runs at a time per service; while the
alert store is down too, channels are notified directly at most once per
dedup window. Mutations and status() never fail open; StoreUnavailable
reaches the caller.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable

from pymongo.errors import DuplicateKeyError

from abuse_guard.dispatcher import AlertDispatcher
from abuse_guard.errors import StoreUnavailable, ValidationError
from abuse_guard.models.alert import Alert
from abuse_guard.models.base import _utcnow
from abuse_guard.models.event import SecurityEvent
from abuse_guard.models.policy import (
    LIST_PRECEDENCE,
    IPPolicyEntry,
    ListType,
    PolicyDecision,
    PolicyStatus,
    normalize_address,
    validate_list_type,
)
from abuse_guard.store.events import EventStore
from abuse_guard.store.policies import PolicyStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

STORE_UNAVAILABLE_KEY = "store_unavailable"

_DISPOSITION = {"allow": "allowed", "deny": "denied", "temp_block": "temp_blocked"}


class IPPolicyService:
    def __init__(
        self,
        policy_store: PolicyStore,
        event_store: EventStore | None = None,
        dispatcher: AlertDispatcher | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._policy_store = policy_store
        self._event_store = event_store
        self._dispatcher = dispatcher
        self._clock = clock
        self._outage_report: asyncio.Task[None] | None = None
        self._last_direct_notify: datetime | None = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def classify(self, address: str) -> PolicyDecision:
        address = normalize_address(address)
        try:
            entry = await self._effective_entry(address)
        except StoreUnavailable as exc:
            logger.warning("Policy lookup for %s failed, failing open: %s", address, exc)
            self._schedule_outage_report(exc)
            return PolicyDecision(address=address, disposition="allowed", fail_open=True)
        return _decision(address, entry)

    async def status(self, address: str) -> PolicyStatus:
        address = normalize_address(address)
        entry = await self._effective_entry(address)
        return PolicyStatus(address=address, decision=_decision(address, entry), entry=entry)

    async def is_allow_listed(self, address: str) -> bool:
        entry = await self._effective_entry(normalize_address(address))
        return entry is not None and entry.list_type == "allow"

    async def list_entries(
        self, list_type: str | None = None, active_only: bool = False
    ) -> list[IPPolicyEntry]:
        """Entries newest first, optionally filtered by type and expiry."""
        if list_type in (None, "", "all"):
            list_type = None
        else:
            list_type = validate_list_type(list_type)
        active_at = self._clock() if active_only else None
        return await self._policy_store.list_entries(list_type, active_at=active_at)  # type: ignore[arg-type]

    async def _effective_entry(self, address: str) -> IPPolicyEntry | None:
        # The unique index allows one row per address; precedence still
        # decides if legacy data ever holds more than one.
        rows = await self._policy_store.find_active(address, self._clock())
        if not rows:
            return None
        return min(rows, key=lambda row: LIST_PRECEDENCE[row.list_type])

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def upsert(
        self,
        address: str,
        list_type: str,
        reason: str,
        ttl: timedelta | None = None,
        actor: str = "system",
    ) -> IPPolicyEntry:
        address = normalize_address(address)
        list_type = validate_list_type(list_type)
        if ttl is not None and ttl <= timedelta(0):
            raise ValidationError(f"TTL must be positive, got {ttl}")
        if list_type == "allow" and ttl is not None:
            raise ValidationError("Allow entries never expire; ttl must not be set")
        if list_type == "temp_block" and ttl is None:
            raise ValidationError("A temporary block requires a ttl")

        now = self._clock()
        entry = IPPolicyEntry(
            address=address,
            list_type=list_type,
            reason=reason,
            created_at=now,
            expires_at=now + ttl if ttl is not None else None,
            created_by=actor,
        )
        try:
            await self._policy_store.upsert(entry)
        except DuplicateKeyError:
            # Two first-time upserts raced on the unique index; the retry
            # matches the winner's document and takes the update path.
            await self._policy_store.upsert(entry)

        logger.info("IP %s set to %s by %s: %s", address, list_type, actor, reason)
        await self._audit(
            "unblock" if list_type == "allow" else "block",
            address,
            {"action": f"{list_type}_add", "reason": reason, "type": list_type},
        )
        return entry

    async def remove(self, address: str, list_types: Iterable[str]) -> int:
        """Delete *address* rows of the given types. Missing rows are not an error."""
        address = normalize_address(address)
        types: list[ListType] = [validate_list_type(t) for t in list_types]
        if not types:
            raise ValidationError("At least one list type is required")
        removed = await self._policy_store.delete(address, types)
        if removed:
            logger.info("IP %s removed from %s", address, ", ".join(types))
            await self._audit("unblock", address, {"action": "remove", "types": types})
        else:
            logger.debug("IP %s had no %s entry", address, ", ".join(types))
        return removed

    async def cleanup_expired(self) -> int:
        return await self._policy_store.delete_expired_temp_blocks(self._clock())

    # Operator-facing shorthands

    async def allow_add(self, address: str, reason: str = "Added to allow-list", actor: str = "system") -> IPPolicyEntry:
        return await self.upsert(address, "allow", reason, actor=actor)

    async def allow_remove(self, address: str) -> int:
        return await self.remove(address, ["allow"])

    async def deny_add(self, address: str, reason: str = "Added to deny-list", actor: str = "system") -> IPPolicyEntry:
        return await self.upsert(address, "deny", reason, actor=actor)

    async def deny_remove(self, address: str) -> int:
        return await self.remove(address, ["deny"])

    async def block(
        self,
        address: str,
        duration_minutes: float = 15,
        reason: str = "Temporary block",
        actor: str = "system",
    ) -> IPPolicyEntry:
        if duration_minutes <= 0:
            raise ValidationError(f"Block duration must be positive, got {duration_minutes}")
        return await self.upsert(
            address, "temp_block", reason, ttl=timedelta(minutes=duration_minutes), actor=actor
        )

    async def unblock(self, address: str) -> int:
        return await self.remove(address, ["temp_block", "deny"])

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def _audit(self, event_type: str, address: str, metadata: dict) -> None:  # type: ignore[type-arg]
        if self._event_store is None:
            return
        event = SecurityEvent(
            event_type=event_type,  # type: ignore[arg-type]
            source_address=address,
            metadata=metadata,
            observed_at=self._clock(),
        )
        try:
            await self._event_store.insert(event)
        except StoreUnavailable as exc:
            # The policy write already committed
            logger.warning("Could not record %s audit event for %s: %s", event_type, address, exc)

    def _schedule_outage_report(self, exc: StoreUnavailable) -> None:
        if self._dispatcher is None:
            return
        if self._outage_report is not None and not self._outage_report.done():
            return
        self._outage_report = asyncio.create_task(self._report_store_outage(self._dispatcher, exc))
        self._outage_report.add_done_callback(_log_report_failure)

    async def drain(self) -> None:
        """Wait for a pending store outage report, if any."""
        if self._outage_report is not None:
            await asyncio.wait([self._outage_report])

    async def _report_store_outage(self, dispatcher: AlertDispatcher, exc: StoreUnavailable) -> None:
        component = dispatcher.component
        message = f"IP policy store unavailable, classification failing open: {exc}"
        try:
            await dispatcher.raise_alert(component, "warning", STORE_UNAVAILABLE_KEY, message)
            return
        except StoreUnavailable:
            pass

        now = self._clock()
        if self._last_direct_notify is not None and now - self._last_direct_notify < dispatcher.dedup_window:
            logger.debug("Alert store still unavailable; outage already notified at %s", self._last_direct_notify)
            return
        self._last_direct_notify = now
        logger.error("Alert store unavailable too; notifying channels directly")
        await dispatcher.notify(
            Alert(
                component=component,
                severity="warning",
                alert_key=STORE_UNAVAILABLE_KEY,
                message=message,
                created_at=now,
                updated_at=now,
            )
        )


def _log_report_failure(task: asyncio.Task[None]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Store outage report failed: %s", task.exception())


def _decision(address: str, entry: IPPolicyEntry | None) -> PolicyDecision:
    if entry is None or entry.list_type == "allow":
        return PolicyDecision(address=address, disposition="allowed", reason=entry.reason if entry else None)
    return PolicyDecision(
        address=address,
        disposition=_DISPOSITION[entry.list_type],  # type: ignore[arg-type]
        reason=entry.reason,
        expires_at=entry.expires_at,
    )
