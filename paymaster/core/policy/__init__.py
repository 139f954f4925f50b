"""
Sponsorship Policy Module

Pluggable eligibility rules for paymaster sponsorship.
"""

from .engine import PolicyEngine, default_rules
from .models import PolicyConfig, PolicyViolation, SponsorshipDecision
from .rules import (
    AVAILABLE_DEPOSIT_RULE,
    AvailableDepositRule,
    CostCeilingRule,
    GlobalExposureRule,
    PolicyRule,
    SelectorDenylistRule,
    SenderAllowlistRule,
    SenderDenylistRule,
    SenderRateLimitRule,
)

__all__ = [
    # Engine
    "PolicyEngine",
    "default_rules",
    # Rules
    "PolicyRule",
    "AVAILABLE_DEPOSIT_RULE",
    "AvailableDepositRule",
    "CostCeilingRule",
    "GlobalExposureRule",
    "SelectorDenylistRule",
    "SenderAllowlistRule",
    "SenderDenylistRule",
    "SenderRateLimitRule",
    # Models
    "PolicyConfig",
    "PolicyViolation",
    "SponsorshipDecision",
]
