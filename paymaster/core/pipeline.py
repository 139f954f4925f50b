"""
Sponsorship Pipeline

Orchestrates one sponsorship request:

    validating -> deciding -> reserving -> signing -> committing -> done

Any step may move the request to ``failed``. Once a reservation exists, every
exit other than ``done`` releases it exactly once, whether the request failed,
raised unexpectedly, or was cancelled because the client went away. A partial
authorization is never returned.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

import structlog
from eth_utils import to_checksum_address

from . import codec
from .errors import (
    FormatError,
    InsufficientDeposit,
    PolicyRejected,
    SponsorshipError,
)
from .ledger import DepositLedger
from .policy import AVAILABLE_DEPOSIT_RULE, PolicyEngine, SponsorshipDecision
from .signer import PaymasterSigner, recover_signer
from .userop import UserOperation
from .validator import RequestValidator
from .window import ValidityWindow, ValidityWindowAllocator

logger = structlog.stdlib.get_logger("sponsorship")


class PipelineState(str, Enum):
    VALIDATING = "validating"
    DECIDING = "deciding"
    RESERVING = "reserving"
    SIGNING = "signing"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class SponsorshipResult:
    paymaster_and_data: bytes
    window: ValidityWindow
    reservation_id: str
    amount: int

    def to_rpc(self) -> Dict[str, Any]:
        return {"paymasterAndData": "0x" + self.paymaster_and_data.hex()}


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    signer: str
    paymaster: str
    window: ValidityWindow
    active: bool

    def to_rpc(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "signer": self.signer,
            "paymaster": self.paymaster,
            "validAfter": self.window.valid_after,
            "validUntil": self.window.valid_until,
            "active": self.active,
        }


class SponsorshipPipeline:
    def __init__(
        self,
        validator: RequestValidator,
        policy: PolicyEngine,
        ledger: DepositLedger,
        allocator: ValidityWindowAllocator,
        signer: PaymasterSigner,
        chain_id: int,
        paymaster: Optional[bytes] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.validator = validator
        self.policy = policy
        self.ledger = ledger
        self.allocator = allocator
        self.signer = signer
        self.chain_id = chain_id
        self.paymaster = paymaster or signer.address_bytes
        self._clock = clock

    @property
    def paymaster_address(self) -> str:
        return to_checksum_address(self.paymaster)

    async def sponsor(
        self,
        raw_operation: Mapping[str, Any] | UserOperation,
        entry_point: Optional[str] = None,
    ) -> SponsorshipResult:
        state = PipelineState.VALIDATING
        reservation_id: Optional[str] = None
        committed = False

        try:
            normalized = await self.validator.validate(raw_operation, entry_point)
            op = normalized.operation
            log = logger.bind(sender=op.sender_address, nonce=op.nonce)

            state = PipelineState.DECIDING
            decision = self.policy.decide(normalized)
            if not decision.approved:
                raise self._rejection(decision)

            state = PipelineState.RESERVING
            window = self.allocator.allocate()
            reservation_id = self.ledger.reserve(decision.max_cost, expires_at=window.valid_until)

            state = PipelineState.SIGNING
            binding_hash = op.sponsorship_hash(self.chain_id, self.paymaster)
            canonical = codec.canonical_bytes(self.paymaster, window, binding_hash)
            signature = await self.signer.sign(canonical)
            payload = codec.encode(self.paymaster, window, signature)

            state = PipelineState.COMMITTING
            self.ledger.commit(reservation_id)
            committed = True
            state = PipelineState.DONE
        except SponsorshipError as exc:
            logger.info(
                "sponsorship_rejected",
                state=state.value,
                kind=exc.kind.value,
                reason=exc.reason,
            )
            raise
        except Exception:
            logger.exception("sponsorship_failed", state=state.value)
            raise
        finally:
            if reservation_id is not None and not committed:
                self._rollback(reservation_id, state)

        log.info(
            "sponsorship_accepted",
            reservation_id=reservation_id,
            amount=decision.max_cost,
            valid_after=window.valid_after,
            valid_until=window.valid_until,
        )
        return SponsorshipResult(
            paymaster_and_data=payload,
            window=window,
            reservation_id=reservation_id,
            amount=decision.max_cost,
        )

    def verify(
        self,
        raw_operation: Mapping[str, Any] | UserOperation,
        paymaster_and_data: bytes,
    ) -> VerificationResult:
        """Check that ``paymaster_and_data`` is this paymaster's authorization for the operation."""
        op = raw_operation if isinstance(raw_operation, UserOperation) else UserOperation.from_rpc(raw_operation)
        decoded = codec.decode(paymaster_and_data)
        binding_hash = op.sponsorship_hash(self.chain_id, decoded.paymaster)
        canonical = codec.canonical_bytes(decoded.paymaster, decoded.window, binding_hash)
        try:
            signer = recover_signer(canonical, decoded.signature)
        except Exception as exc:
            raise FormatError(f"Signature could not be recovered: {type(exc).__name__}") from exc
        return VerificationResult(
            valid=signer == self.signer.address and decoded.paymaster == self.paymaster,
            signer=signer,
            paymaster=decoded.paymaster_address,
            window=decoded.window,
            active=decoded.window.contains(int(self._clock())),
        )

    def _rejection(self, decision: SponsorshipDecision) -> SponsorshipError:
        violation = decision.violation
        if violation is not None and violation.rule == AVAILABLE_DEPOSIT_RULE:
            return InsufficientDeposit(
                requested=violation.details["requested"],
                available=violation.details["available"],
            )
        return PolicyRejected(decision.rule or "policy", decision.reason or "Sponsorship denied")

    def _rollback(self, reservation_id: str, state: PipelineState) -> None:
        try:
            released = self.ledger.release(reservation_id)
        except SponsorshipError as exc:
            # The triggering failure is already propagating; the sweeper reclaims
            # anything left pending here.
            logger.critical(
                "reservation_release_failed",
                reservation_id=reservation_id,
                state=state.value,
                kind=exc.kind.value,
                reason=exc.reason,
            )
            return
        if released:
            logger.info("reservation_released", reservation_id=reservation_id, state=state.value)
