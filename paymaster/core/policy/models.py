"""
Sponsorship Policy Models

Defines the decision and configuration types used by the policy engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Optional

if TYPE_CHECKING:
    from ...config import Settings


@dataclass(frozen=True)
class PolicyViolation:
    """A single rule's reason for refusing sponsorship."""
    rule: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SponsorshipDecision:
    """Outcome of evaluating one operation. Derived, never persisted."""
    approved: bool
    max_cost: int = 0
    violation: Optional[PolicyViolation] = None

    @classmethod
    def accept(cls, max_cost: int) -> "SponsorshipDecision":
        return cls(approved=True, max_cost=max_cost)

    @classmethod
    def reject(cls, violation: PolicyViolation) -> "SponsorshipDecision":
        return cls(approved=False, violation=violation)

    @property
    def reason(self) -> Optional[str]:
        return self.violation.message if self.violation else None

    @property
    def rule(self) -> Optional[str]:
        return self.violation.rule if self.violation else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approved": self.approved,
            "maxCost": self.max_cost,
            "rule": self.rule,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class PolicyConfig:
    """
    Sponsorship policy settings.

    Empty allow/deny sets and a zero rate limit disable the matching rule.
    """
    max_cost_per_operation: int = 10**17
    sender_allowlist: FrozenSet[bytes] = field(default_factory=frozenset)
    sender_denylist: FrozenSet[bytes] = field(default_factory=frozenset)
    selector_denylist: FrozenSet[str] = field(default_factory=frozenset)
    global_exposure_cap: Optional[int] = None
    rate_limit_requests: int = 0
    rate_limit_window_seconds: int = 60
    gas_price_buffer_percent: int = 0

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PolicyConfig":
        from ..userop import parse_address

        return cls(
            max_cost_per_operation=settings.max_cost_per_operation_wei,
            sender_allowlist=frozenset(parse_address(a, "sender_allowlist") for a in settings.sender_allowlist),
            sender_denylist=frozenset(parse_address(a, "sender_denylist") for a in settings.sender_denylist),
            selector_denylist=frozenset(settings.selector_denylist),
            global_exposure_cap=settings.global_exposure_cap_wei,
            rate_limit_requests=settings.rate_limit_requests,
            rate_limit_window_seconds=settings.rate_limit_window_seconds,
            gas_price_buffer_percent=settings.gas_price_buffer_percent,
        )
