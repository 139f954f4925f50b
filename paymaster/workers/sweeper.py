"""
Reservation expiry sweeper and deposit monitor.

Both run as scheduled asyncio tasks next to the request path. The sweeper goes
through the same ledger lock as live traffic, so it never races a request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Callable, Optional

from ..core.errors import SponsorshipError
from ..core.ledger import DepositLedger

if TYPE_CHECKING:
    from ..providers.base import ChainClient


class PeriodicWorker:
    """Runs ``run_once`` every ``interval_seconds`` until stopped."""

    name = "worker"

    def __init__(self, interval_seconds: float, logger: Optional[logging.Logger] = None) -> None:
        self.interval_seconds = interval_seconds
        self.logger = logger or logging.getLogger(f"paymaster.workers.{self.name}")
        self._task: asyncio.Task | None = None
        self.run_count = 0
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run_loop(), name=f"paymaster-{self.name}")
        self.logger.info("%s started; interval=%ss", self.name, self.interval_seconds)

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.info("%s stopped", self.name)

    async def run_once(self) -> None:
        raise NotImplementedError

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
                self.last_error = None
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                self.last_error = str(exc)
                self.logger.warning("%s tick failed: %s", self.name, exc, exc_info=True)
            finally:
                self.run_count += 1


class ExpirySweeper(PeriodicWorker):
    """
    Releases reservations whose validity window lapsed without a commit or
    release, then forgets settled reservations past their retention period.
    """

    name = "expiry_sweeper"

    def __init__(
        self,
        ledger: DepositLedger,
        interval_seconds: float = 5.0,
        grace_seconds: float = 0,
        retention_seconds: float = 600,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(interval_seconds, logger)
        self.ledger = ledger
        self.grace_seconds = grace_seconds
        self.retention_seconds = retention_seconds
        self._clock = clock
        self.total_reclaimed = 0

    async def run_once(self) -> None:
        self.sweep()

    def sweep(self, now: Optional[float] = None) -> int:
        if now is None:
            now = self._clock()
        reclaimed = self.ledger.sweep_expired(now - self.grace_seconds)
        pruned = self.ledger.prune_settled(now - self.retention_seconds)
        if reclaimed:
            self.total_reclaimed += reclaimed
            self.logger.warning("Reclaimed %d expired reservations", reclaimed)
        if pruned:
            self.logger.debug("Pruned %d settled reservations", pruned)
        return reclaimed


class DepositMonitor(PeriodicWorker):
    """Watches the on-chain deposit; reports only, never touches the ledger."""

    name = "deposit_monitor"

    def __init__(
        self,
        chain: "ChainClient",
        ledger: DepositLedger,
        address: str,
        interval_seconds: float = 60.0,
        low_water_wei: int = 0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(interval_seconds, logger)
        self.chain = chain
        self.ledger = ledger
        self.address = address
        self.low_water_wei = low_water_wei
        self.last_balance: Optional[int] = None

    async def run_once(self) -> None:
        await self.check()

    async def check(self) -> Optional[int]:
        try:
            onchain = await self.chain.get_balance(self.address)
        except SponsorshipError as exc:
            self.logger.warning("Deposit balance check failed: %s", exc.reason)
            return None

        self.last_balance = onchain
        tracked = self.ledger.snapshot().balance
        if onchain < self.low_water_wei:
            self.logger.warning(
                "Deposit %s below low-water mark: %d < %d wei",
                self.address,
                onchain,
                self.low_water_wei,
            )
        if onchain < tracked:
            self.logger.warning(
                "On-chain deposit %d wei is below ledger balance %d wei; top up or reseed the ledger",
                onchain,
                tracked,
            )
        return onchain
