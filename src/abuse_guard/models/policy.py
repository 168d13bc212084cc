"""IP policy models: the stored entry and the read-side decision types."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, get_args

from pydantic import BaseModel, Field, IPvAnyAddress, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from abuse_guard.errors import ValidationError
from abuse_guard.models.base import UtcDatetime, _utcnow

ListType = Literal["allow", "deny", "temp_block"]
Disposition = Literal["allowed", "denied", "temp_blocked"]

LIST_TYPES: tuple[str, ...] = get_args(ListType)

# Lower value wins when several rows could apply to one address.
LIST_PRECEDENCE: dict[str, int] = {"allow": 0, "deny": 1, "temp_block": 2}

_address_adapter: TypeAdapter[IPvAnyAddress] = TypeAdapter(IPvAnyAddress)


def normalize_address(raw: str) -> str:
    """Return the canonical text form of an IPv4/IPv6 literal.

    Raises ValidationError for anything that is not a syntactically valid
    address literal (hostnames, CIDR ranges, integers, empty strings).
    """
    if not isinstance(raw, str) or not raw:
        raise ValidationError(f"Invalid IP address: {raw!r}")
    try:
        return str(_address_adapter.validate_python(raw))
    except PydanticValidationError:
        raise ValidationError(f"Invalid IP address: {raw}") from None


def validate_list_type(raw: str) -> ListType:
    if raw not in LIST_TYPES:
        raise ValidationError(
            f"Unknown list type: {raw} (expected one of {', '.join(LIST_TYPES)})"
        )
    return raw  # type: ignore[return-value]


class IPPolicyEntry(BaseModel):
    """Disposition of one source address. At most one per address."""

    address: str
    list_type: ListType
    reason: str
    created_at: UtcDatetime = Field(default_factory=_utcnow)
    expires_at: UtcDatetime | None = None  # None = permanent
    created_by: str = "system"

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class PolicyDecision(BaseModel):
    """Result of classifying an address against the policy table."""

    address: str
    disposition: Disposition
    reason: str | None = None
    expires_at: UtcDatetime | None = None
    fail_open: bool = False  # True when the store was unreachable

    @property
    def is_blocked(self) -> bool:
        return self.disposition != "allowed"


class PolicyStatus(BaseModel):
    """classify() plus the entry that produced the decision, if any."""

    address: str
    decision: PolicyDecision
    entry: IPPolicyEntry | None = None
