"""
Validity window allocation for paymaster authorizations.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

# EntryPoint unpacks validAfter / validUntil as uint48
MAX_TIMESTAMP = 2**48 - 1


@dataclass(frozen=True)
class ValidityWindow:
    valid_after: int
    valid_until: int

    def __post_init__(self) -> None:
        if not 0 <= self.valid_after <= MAX_TIMESTAMP or not 0 <= self.valid_until <= MAX_TIMESTAMP:
            raise ValueError("Validity timestamps must fit in uint48")
        if self.valid_after >= self.valid_until:
            raise ValueError("valid_after must be strictly before valid_until")

    @property
    def duration(self) -> int:
        return self.valid_until - self.valid_after

    def contains(self, timestamp: int) -> bool:
        return self.valid_after <= timestamp <= self.valid_until


class ValidityWindowAllocator:
    """
    Computes ``(validAfter, validUntil)`` for a new authorization.

    ``validAfter`` is back-dated by the clock skew tolerance so that an
    execution node running slightly behind still honors the authorization.
    """

    def __init__(
        self,
        ttl_seconds: int,
        clock_skew_tolerance_seconds: int,
        max_validity_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if clock_skew_tolerance_seconds < 0:
            raise ValueError("clock_skew_tolerance_seconds must be non-negative")
        if ttl_seconds + clock_skew_tolerance_seconds > max_validity_seconds:
            raise ValueError("ttl plus clock skew tolerance exceeds max_validity_seconds")
        self.ttl_seconds = ttl_seconds
        self.clock_skew_tolerance_seconds = clock_skew_tolerance_seconds
        self.max_validity_seconds = max_validity_seconds
        self._clock = clock

    def now(self) -> int:
        return int(self._clock())

    def allocate(self, now: Optional[int] = None) -> ValidityWindow:
        if now is None:
            now = self.now()
        return ValidityWindow(
            valid_after=max(0, now - self.clock_skew_tolerance_seconds),
            valid_until=now + self.ttl_seconds,
        )
