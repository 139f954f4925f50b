"""
Sponsorship Policy Rules

Each rule answers one question about an operation and returns a
``PolicyViolation`` when the answer is no. Rules are plain objects satisfying
``PolicyRule`` so deployments can plug in their own.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, FrozenSet, Optional, Protocol

from eth_utils import to_checksum_address

from ..ledger import DepositSnapshot
from ..validator import NormalizedOperation
from .models import PolicyViolation

AVAILABLE_DEPOSIT_RULE = "available_deposit"


class PolicyRule(Protocol):
    name: str

    def evaluate(
        self,
        op: NormalizedOperation,
        amount: int,
        snapshot: DepositSnapshot,
    ) -> Optional[PolicyViolation]:
        """Return a violation to reject ``op``, or None to let it through."""


class SenderAllowlistRule:
    name = "sender_allowlist"

    def __init__(self, allowed: FrozenSet[bytes]):
        self.allowed = allowed

    def evaluate(self, op, amount, snapshot):
        if op.sender in self.allowed:
            return None
        return PolicyViolation(
            rule=self.name,
            message=f"Sender {to_checksum_address(op.sender)} is not on the sponsorship allowlist",
        )


class SenderDenylistRule:
    name = "sender_denylist"

    def __init__(self, denied: FrozenSet[bytes]):
        self.denied = denied

    def evaluate(self, op, amount, snapshot):
        if op.sender not in self.denied:
            return None
        return PolicyViolation(
            rule=self.name,
            message=f"Sender {to_checksum_address(op.sender)} is denied sponsorship",
        )


class SelectorDenylistRule:
    name = "selector_denylist"

    def __init__(self, denied: FrozenSet[str]):
        self.denied = frozenset(s.lower() for s in denied)

    def evaluate(self, op, amount, snapshot):
        if op.selector is None or op.selector.lower() not in self.denied:
            return None
        return PolicyViolation(
            rule=self.name,
            message=f"Call selector {op.selector} is not sponsored",
            details={"selector": op.selector},
        )


class CostCeilingRule:
    name = "cost_ceiling"

    def __init__(self, max_cost: int):
        self.max_cost = max_cost

    def evaluate(self, op, amount, snapshot):
        if op.max_cost <= self.max_cost:
            return None
        return PolicyViolation(
            rule=self.name,
            message=f"Maximum cost {op.max_cost} wei exceeds ceiling {self.max_cost} wei",
            details={"maxCost": op.max_cost, "ceiling": self.max_cost},
        )


class AvailableDepositRule:
    name = AVAILABLE_DEPOSIT_RULE

    def evaluate(self, op, amount, snapshot):
        if amount <= snapshot.available:
            return None
        return PolicyViolation(
            rule=self.name,
            message=f"Deposit cannot cover {amount} wei (available {snapshot.available} wei)",
            details={"requested": amount, "available": snapshot.available},
        )


class GlobalExposureRule:
    """Caps the total wei held by outstanding reservations."""

    name = "global_exposure_cap"

    def __init__(self, cap: int):
        self.cap = cap

    def evaluate(self, op, amount, snapshot):
        if snapshot.reserved + amount <= self.cap:
            return None
        return PolicyViolation(
            rule=self.name,
            message="Outstanding sponsorship exposure cap reached",
            details={"reserved": snapshot.reserved, "cap": self.cap},
        )


class SenderRateLimitRule:
    """
    Rolling-window request quota per sender.

    Every evaluation counts as one request, so place this rule last to charge
    only requests that passed every other check.
    """

    name = "sender_rate_limit"

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[bytes, Deque[float]] = {}
        self._last_purge = clock()
        self._lock = threading.Lock()

    @property
    def tracked_senders(self) -> int:
        with self._lock:
            return len(self._hits)

    def evaluate(self, op, amount, snapshot):
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            if now - self._last_purge >= self.window_seconds:
                self._purge_idle_locked(cutoff)
                self._last_purge = now
            hits = self._hits.get(op.sender)
            if hits is None:
                hits = self._hits[op.sender] = deque()
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.limit:
                retry_after = max(0, int(hits[0] + self.window_seconds - now))
                return PolicyViolation(
                    rule=self.name,
                    message=f"Rate limit exceeded: {self.limit} requests per {self.window_seconds}s",
                    details={"retryAfter": retry_after},
                )
            hits.append(now)
        return None

    def _purge_idle_locked(self, cutoff: float) -> None:
        # Senders whose newest hit has left the window hold no quota.
        idle = [sender for sender, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for sender in idle:
            del self._hits[sender]
