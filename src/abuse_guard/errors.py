"""Exception taxonomy shared by every component."""

from __future__ import annotations


class AbuseGuardError(Exception):
    """Base class for errors raised by abuse_guard."""


class ValidationError(AbuseGuardError):
    """Malformed input: bad address, unknown list type, non-positive window/threshold/ttl.

    Always surfaced to the caller and never retried.
    """


class StoreUnavailable(AbuseGuardError):
    """The durable store timed out or could not be reached."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None and str(cause) else ""
        super().__init__(f"store unavailable during {operation}{detail}")
