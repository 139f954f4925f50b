"""
Tests for the expiry sweeper and deposit monitor workers.
"""

import asyncio
import logging

import pytest

from paymaster.core.errors import ReservationNotFound, UpstreamUnavailable
from paymaster.core.ledger import DepositLedger, ReservationState
from paymaster.workers import DepositMonitor, ExpirySweeper

from conftest import START_TIME, make_chain


@pytest.fixture
def ledger(clock):
    return DepositLedger(100, clock=clock)


# =============================================================================
# ExpirySweeper Tests
# =============================================================================


class TestExpirySweeper:
    def test_reclaims_lapsed_reservation(self, ledger, clock):
        reservation_id = ledger.reserve(60, expires_at=START_TIME + 5)
        sweeper = ExpirySweeper(ledger, clock=clock)

        clock.advance(5)
        assert sweeper.sweep() == 0

        clock.advance(1)
        assert sweeper.sweep() == 1

        assert ledger.get(reservation_id).state == ReservationState.RELEASED
        assert ledger.snapshot().available == 100
        assert sweeper.total_reclaimed == 1

    def test_grace_period(self, ledger):
        ledger.reserve(60, expires_at=START_TIME + 5)
        sweeper = ExpirySweeper(ledger, grace_seconds=10)

        assert sweeper.sweep(now=START_TIME + 6) == 0
        assert sweeper.sweep(now=START_TIME + 16) == 1

    def test_committed_reservations_untouched(self, ledger):
        reservation_id = ledger.reserve(60, expires_at=START_TIME + 5)
        ledger.commit(reservation_id)

        ExpirySweeper(ledger).sweep(now=START_TIME + 60)

        assert ledger.snapshot().balance == 40

    def test_prunes_after_retention(self, ledger, clock):
        reservation_id = ledger.reserve(60, expires_at=START_TIME + 5)
        ledger.release(reservation_id)
        sweeper = ExpirySweeper(ledger, retention_seconds=600, clock=clock)

        clock.advance(601)
        sweeper.sweep()

        assert ledger.snapshot().pending == 0
        with pytest.raises(ReservationNotFound):
            ledger.get(reservation_id)

    @pytest.mark.asyncio
    async def test_background_loop(self, ledger, clock):
        ledger.reserve(60, expires_at=START_TIME + 5)
        clock.advance(10)
        sweeper = ExpirySweeper(ledger, interval_seconds=0.01, clock=clock)

        await sweeper.start()
        assert sweeper.is_running
        for _ in range(100):
            if sweeper.total_reclaimed:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()

        assert sweeper.total_reclaimed == 1
        assert not sweeper.is_running
        assert ledger.snapshot().reserved == 0

    @pytest.mark.asyncio
    async def test_stop_without_start(self, ledger):
        await ExpirySweeper(ledger).stop()


# =============================================================================
# DepositMonitor Tests
# =============================================================================


class TestDepositMonitor:
    @pytest.mark.asyncio
    async def test_healthy_balance(self, ledger, caplog):
        chain = make_chain()
        chain.get_balance.return_value = 1_000
        monitor = DepositMonitor(chain, ledger, "0x" + "aa" * 20, low_water_wei=500)

        with caplog.at_level(logging.WARNING):
            assert await monitor.check() == 1_000

        assert monitor.last_balance == 1_000
        assert not [r for r in caplog.records if r.name.startswith("paymaster.workers")]
        chain.get_balance.assert_awaited_once_with("0x" + "aa" * 20)

    @pytest.mark.asyncio
    async def test_low_balance_warns(self, ledger, caplog):
        chain = make_chain()
        chain.get_balance.return_value = 200
        monitor = DepositMonitor(chain, ledger, "0x" + "aa" * 20, low_water_wei=500)

        with caplog.at_level(logging.WARNING):
            await monitor.check()

        assert any("low-water" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_drift_warns_without_touching_ledger(self, ledger, caplog):
        chain = make_chain()
        chain.get_balance.return_value = 50
        monitor = DepositMonitor(chain, ledger, "0x" + "aa" * 20)

        with caplog.at_level(logging.WARNING):
            await monitor.check()

        assert any("below ledger balance" in record.getMessage() for record in caplog.records)
        assert ledger.snapshot().balance == 100

    @pytest.mark.asyncio
    async def test_chain_failure_is_reported(self, ledger):
        chain = make_chain()
        chain.get_balance.side_effect = UpstreamUnavailable("node down")
        monitor = DepositMonitor(chain, ledger, "0x" + "aa" * 20)

        assert await monitor.check() is None
        assert monitor.last_balance is None
