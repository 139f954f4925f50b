"""
Upstream Retry Strategy

Bounded retries with exponential backoff and a per-attempt deadline for calls
to the chain client. Terminal sponsorship errors are never retried.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Optional, TypeVar

from .errors import SponsorshipError, UpstreamError, UpstreamTimeout, UpstreamUnavailable

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay_seconds: float = 0.2
    max_delay_seconds: float = 2.0
    exponential_base: float = 2.0
    timeout_seconds: float = 3.0
    jitter: bool = True
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number."""
        delay = min(
            self.initial_delay_seconds * (self.exponential_base ** attempt),
            self.max_delay_seconds,
        )
        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay += random.uniform(-jitter_range, jitter_range)
        return max(delay, 0)


class RetryStrategy:
    """
    Retries recoverable upstream failures up to ``max_attempts`` times.

    Each attempt runs under ``timeout_seconds``; a missed deadline counts as an
    ``UpstreamTimeout``. Once attempts are exhausted the last failure is
    surfaced as ``UpstreamUnavailable``.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or RetryConfig()
        self.logger = logger or logging.getLogger(__name__)

    async def execute(
        self,
        operation: Callable[[], Coroutine[Any, Any, T]],
        name: str = "upstream call",
    ) -> T:
        last_error: Optional[UpstreamError] = None

        for attempt in range(self.config.max_attempts):
            try:
                return await asyncio.wait_for(operation(), timeout=self.config.timeout_seconds)
            except asyncio.TimeoutError:
                last_error = UpstreamTimeout(
                    f"{name} exceeded {self.config.timeout_seconds}s deadline"
                )
            except SponsorshipError as e:
                if not e.recoverable:
                    raise
                last_error = e if isinstance(e, UpstreamError) else UpstreamUnavailable(e.reason)

            if attempt < self.config.max_attempts - 1:
                delay = self.config.get_delay(attempt)
                self.logger.warning(
                    "%s attempt %d/%d failed: %s. Retrying in %.2fs",
                    name,
                    attempt + 1,
                    self.config.max_attempts,
                    last_error.reason,
                    delay,
                )
                await asyncio.sleep(delay)

        raise UpstreamUnavailable(
            f"{name} failed after {self.config.max_attempts} attempts: {last_error.reason}",
            {"attempts": self.config.max_attempts, "lastError": last_error.kind.value},
        ) from last_error
