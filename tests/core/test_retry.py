"""
Tests for the upstream retry strategy.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from paymaster.core.errors import (
    ErrorKind,
    PolicyRejected,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from paymaster.core.retry import RetryConfig, RetryStrategy


def strategy(max_attempts=3, timeout_seconds=1.0) -> RetryStrategy:
    return RetryStrategy(
        RetryConfig(
            max_attempts=max_attempts,
            initial_delay_seconds=0,
            jitter=False,
            timeout_seconds=timeout_seconds,
        )
    )


class TestRetryConfig:
    def test_exponential_delay(self):
        config = RetryConfig(initial_delay_seconds=0.2, max_delay_seconds=1.0, jitter=False)

        assert config.get_delay(0) == pytest.approx(0.2)
        assert config.get_delay(1) == pytest.approx(0.4)
        assert config.get_delay(2) == pytest.approx(0.8)
        assert config.get_delay(3) == pytest.approx(1.0)

    def test_jitter_stays_in_range(self):
        config = RetryConfig(initial_delay_seconds=1.0, jitter=True, jitter_factor=0.1)
        for _ in range(20):
            assert 0.9 <= config.get_delay(0) <= 1.1

    def test_requires_one_attempt(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryConfig(max_attempts=0)


class TestRetryStrategy:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        operation = AsyncMock(return_value=42)

        assert await strategy().execute(operation) == 42
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        operation = AsyncMock(side_effect=[UpstreamTimeout("slow"), 42])

        assert await strategy().execute(operation) == 42
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_terminal_error_not_retried(self):
        operation = AsyncMock(side_effect=PolicyRejected("denylist", "nope"))

        with pytest.raises(PolicyRejected):
            await strategy().execute(operation)
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_exhaustion_surfaces_unavailable(self):
        operation = AsyncMock(side_effect=UpstreamUnavailable("connection refused"))

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await strategy(max_attempts=3).execute(operation, name="eth_gasPrice")

        error = exc_info.value
        assert operation.await_count == 3
        assert error.kind == ErrorKind.UPSTREAM_UNAVAILABLE
        assert error.details == {"attempts": 3, "lastError": "upstream_unavailable"}
        assert "eth_gasPrice" in error.reason
        assert isinstance(error.__cause__, UpstreamUnavailable)

    @pytest.mark.asyncio
    async def test_per_attempt_deadline(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await strategy(max_attempts=2, timeout_seconds=0.02).execute(slow)

        assert exc_info.value.details["lastError"] == ErrorKind.UPSTREAM_TIMEOUT.value
