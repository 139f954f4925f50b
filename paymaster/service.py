"""
Service wiring.

Builds the sponsorship engine from one immutable ``Settings`` value and owns
the lifecycle of its background workers and chain client.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from eth_utils import to_checksum_address

from .config import Settings
from .core.errors import SponsorshipError
from .core.ledger import DepositLedger
from .core.pipeline import SponsorshipPipeline
from .core.policy import PolicyConfig, PolicyEngine
from .core.retry import RetryConfig, RetryStrategy
from .core.signer import PaymasterSigner
from .core.userop import parse_address
from .core.validator import RequestValidator, ValidatorConfig
from .core.window import ValidityWindowAllocator
from .providers.base import ChainClient
from .providers.chain import ChainConfig, JsonRpcChainClient
from .workers import DepositMonitor, ExpirySweeper

logger = logging.getLogger(__name__)


@dataclass
class SponsorshipService:
    settings: Settings
    chain: ChainClient
    signer: PaymasterSigner
    ledger: DepositLedger
    pipeline: SponsorshipPipeline
    sweeper: ExpirySweeper
    monitor: Optional[DepositMonitor]
    deposit_address: str
    seeded: bool = False

    @property
    def entry_points(self) -> list[str]:
        if not self.settings.entry_point_address:
            return []
        return [to_checksum_address(self.settings.entry_point_address)]

    async def seed_deposit(self) -> None:
        """Load the starting balance into the ledger, once."""
        if self.seeded:
            return
        amount = self.settings.initial_deposit_wei
        if amount is None:
            try:
                amount = await self.chain.get_balance(self.deposit_address)
            except SponsorshipError as exc:
                # Serve with an empty ledger; every request is rejected as
                # insufficient_deposit until the deposit is known.
                logger.error("Could not read deposit for %s: %s", self.deposit_address, exc.reason)
                return
        if amount > 0:
            self.ledger.credit(amount)
        self.seeded = True
        logger.info("Deposit ledger seeded for %s with %d wei", self.deposit_address, amount)

    async def start(self) -> None:
        await self.seed_deposit()
        await self.sweeper.start()
        if self.monitor is not None:
            await self.monitor.start()

    async def stop(self) -> None:
        await self.sweeper.stop()
        if self.monitor is not None:
            await self.monitor.stop()
        aclose = getattr(self.chain, "aclose", None)
        if aclose is not None:
            await aclose()

    async def health(self) -> Dict[str, Any]:
        chain_status: Dict[str, Any]
        health_check = getattr(self.chain, "health_check", None)
        if health_check is not None:
            chain_status = await health_check()
        else:
            chain_status = {"status": "unknown"}
        return {
            "status": "healthy" if chain_status.get("status") in ("healthy", "disabled") else "degraded",
            "chainId": self.settings.chain_id,
            "signer": self.signer.address,
            "paymaster": self.pipeline.paymaster_address,
            "deposit": self.ledger.snapshot().to_dict(),
            "seeded": self.seeded,
            "chain": chain_status,
            "sweeper": {
                "running": self.sweeper.is_running,
                "reclaimed": self.sweeper.total_reclaimed,
            },
        }


def build_service(
    settings: Settings,
    chain: Optional[ChainClient] = None,
    signer: Optional[PaymasterSigner] = None,
    clock: Callable[[], float] = time.time,
) -> SponsorshipService:
    """Assemble the pipeline and its workers. Raises ``SigningUnavailable`` without a key."""
    if signer is None:
        signer = PaymasterSigner.from_settings(settings)
    if chain is None:
        chain = JsonRpcChainClient(
            ChainConfig(rpc_url=settings.eth_rpc_url, entry_point=settings.entry_point_address),
            timeout_s=settings.upstream_timeout_seconds,
        )

    paymaster = signer.address_bytes
    if settings.paymaster_address:
        paymaster = parse_address(settings.paymaster_address, "paymaster_address")
    deposit_address = to_checksum_address(settings.deposit_address or paymaster)

    retry = RetryStrategy(
        RetryConfig(
            max_attempts=settings.upstream_max_attempts,
            initial_delay_seconds=settings.upstream_backoff_seconds,
            timeout_seconds=settings.upstream_timeout_seconds,
        )
    )
    ledger = DepositLedger(clock=clock)
    validator = RequestValidator(ValidatorConfig.from_settings(settings), chain, retry=retry)
    policy = PolicyEngine(ledger.snapshot, PolicyConfig.from_settings(settings))
    allocator = ValidityWindowAllocator(
        ttl_seconds=settings.validity_ttl_seconds,
        clock_skew_tolerance_seconds=settings.clock_skew_tolerance_seconds,
        max_validity_seconds=settings.max_validity_seconds,
        clock=clock,
    )
    pipeline = SponsorshipPipeline(
        validator=validator,
        policy=policy,
        ledger=ledger,
        allocator=allocator,
        signer=signer,
        chain_id=settings.chain_id,
        paymaster=paymaster,
        clock=clock,
    )
    sweeper = ExpirySweeper(
        ledger,
        interval_seconds=settings.sweep_interval_seconds,
        grace_seconds=settings.reservation_grace_seconds,
        retention_seconds=settings.settled_retention_seconds,
        clock=clock,
    )
    monitor = None
    if settings.eth_rpc_url:
        monitor = DepositMonitor(
            chain,
            ledger,
            deposit_address,
            interval_seconds=settings.deposit_monitor_interval_seconds,
            low_water_wei=settings.low_deposit_threshold_wei,
        )

    logger.info(
        "Sponsorship service built: chain_id=%d paymaster=%s signer=%s",
        settings.chain_id,
        pipeline.paymaster_address,
        signer.address,
    )
    return SponsorshipService(
        settings=settings,
        chain=chain,
        signer=signer,
        ledger=ledger,
        pipeline=pipeline,
        sweeper=sweeper,
        monitor=monitor,
        deposit_address=deposit_address,
    )
