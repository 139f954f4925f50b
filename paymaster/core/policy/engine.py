"""
Sponsorship Policy Engine

Decides whether a validated operation is sponsored and how much of the deposit
to reserve for it. Rules run in order and the first violation wins.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Sequence

from ..ledger import DepositSnapshot
from ..validator import NormalizedOperation
from .models import PolicyConfig, SponsorshipDecision
from .rules import (
    AvailableDepositRule,
    CostCeilingRule,
    GlobalExposureRule,
    PolicyRule,
    SelectorDenylistRule,
    SenderAllowlistRule,
    SenderDenylistRule,
    SenderRateLimitRule,
)

logger = logging.getLogger(__name__)


def default_rules(
    config: PolicyConfig,
    clock: Callable[[], float] = time.monotonic,
) -> List[PolicyRule]:
    """
    Build the rule chain for ``config``.

    With nothing configured this is the minimal policy: accept iff the cost is
    within the per-operation ceiling and the deposit can cover it.
    """
    rules: List[PolicyRule] = []
    if config.sender_allowlist:
        rules.append(SenderAllowlistRule(config.sender_allowlist))
    if config.sender_denylist:
        rules.append(SenderDenylistRule(config.sender_denylist))
    if config.selector_denylist:
        rules.append(SelectorDenylistRule(config.selector_denylist))
    rules.append(CostCeilingRule(config.max_cost_per_operation))
    rules.append(AvailableDepositRule())
    if config.global_exposure_cap is not None:
        rules.append(GlobalExposureRule(config.global_exposure_cap))
    if config.rate_limit_requests > 0:
        rules.append(
            SenderRateLimitRule(
                config.rate_limit_requests,
                config.rate_limit_window_seconds,
                clock=clock,
            )
        )
    return rules


class PolicyEngine:
    """
    Evaluates operations against a pluggable rule chain.

    The deposit is read once per decision through ``snapshot_provider``; the
    engine never mutates the ledger.
    """

    def __init__(
        self,
        snapshot_provider: Callable[[], DepositSnapshot],
        config: Optional[PolicyConfig] = None,
        rules: Optional[Sequence[PolicyRule]] = None,
    ):
        self.config = config or PolicyConfig()
        self.rules: List[PolicyRule] = list(rules) if rules is not None else default_rules(self.config)
        self._snapshot_provider = snapshot_provider

    def reservation_amount(self, op: NormalizedOperation) -> int:
        """Max cost plus the configured gas price buffer, rounded up."""
        buffered = op.max_cost * (100 + self.config.gas_price_buffer_percent)
        return -(-buffered // 100)

    def decide(self, op: NormalizedOperation) -> SponsorshipDecision:
        amount = self.reservation_amount(op)
        snapshot = self._snapshot_provider()

        for rule in self.rules:
            violation = rule.evaluate(op, amount, snapshot)
            if violation is not None:
                logger.info("Policy rule %s rejected operation: %s", violation.rule, violation.message)
                return SponsorshipDecision.reject(violation)

        return SponsorshipDecision.accept(amount)
