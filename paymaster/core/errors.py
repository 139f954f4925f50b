"""
Sponsorship Errors

Every error raised by the sponsorship engine carries a stable machine-readable
``kind`` and a human-readable ``reason``. Errors are split into recoverable
(an upstream hiccup that may be retried) and terminal (validation, policy and
accounting failures that must never be retried).
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Stable error identifiers exposed to RPC clients."""

    VALIDATION = "validation_error"
    POLICY_REJECTED = "policy_rejected"
    INSUFFICIENT_DEPOSIT = "insufficient_deposit"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    SIGNING_UNAVAILABLE = "signing_unavailable"
    FORMAT = "format_error"
    RESERVATION = "reservation_error"
    INTERNAL_INVARIANT = "internal_invariant_violation"


class SponsorshipError(Exception):
    """Base class for all sponsorship failures."""

    kind: ErrorKind = ErrorKind.INTERNAL_INVARIANT
    recoverable: bool = False

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(reason)
        self.reason = reason
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "reason": self.reason, **self.details}


class ValidationError(SponsorshipError):
    """Malformed or out-of-bound operation field."""

    kind = ErrorKind.VALIDATION

    def __init__(self, field: str, rule: str, reason: str):
        super().__init__(reason, {"field": field, "rule": rule})
        self.field = field
        self.rule = rule


class PolicyRejected(SponsorshipError):
    """Business-rule denial."""

    kind = ErrorKind.POLICY_REJECTED

    def __init__(self, rule: str, reason: str):
        super().__init__(reason, {"rule": rule})
        self.rule = rule


class InsufficientDeposit(SponsorshipError):
    """The deposit cannot cover the requested reservation."""

    kind = ErrorKind.INSUFFICIENT_DEPOSIT

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Deposit cannot cover {requested} wei (available {available} wei)",
            {"requested": requested, "available": available},
        )
        self.requested = requested
        self.available = available


class UpstreamError(SponsorshipError):
    """Base class for chain client failures."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    recoverable = True


class UpstreamTimeout(UpstreamError):
    """A chain call exceeded its deadline."""

    kind = ErrorKind.UPSTREAM_TIMEOUT


class UpstreamUnavailable(UpstreamError):
    """The chain client failed, or retries were exhausted."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class SigningUnavailable(SponsorshipError):
    """The signing key could not be loaded or a signing call failed."""

    kind = ErrorKind.SIGNING_UNAVAILABLE


class FormatError(SponsorshipError):
    """A paymasterAndData payload could not be decoded."""

    kind = ErrorKind.FORMAT


class ReservationNotFound(SponsorshipError):
    kind = ErrorKind.RESERVATION

    def __init__(self, reservation_id: str):
        super().__init__(f"Unknown reservation {reservation_id}", {"reservationId": reservation_id})
        self.reservation_id = reservation_id


class ReservationStateError(SponsorshipError):
    """A reservation was asked to make an illegal state transition."""

    kind = ErrorKind.RESERVATION

    def __init__(self, reservation_id: str, state: str, action: str):
        super().__init__(
            f"Cannot {action} reservation {reservation_id} in state {state}",
            {"reservationId": reservation_id, "state": state},
        )
        self.reservation_id = reservation_id
        self.state = state


class InternalInvariantViolation(SponsorshipError):
    """Accounting invariant broken. Never corrected silently."""

    kind = ErrorKind.INTERNAL_INVARIANT
