"""
Request Validator

Structural and semantic validation of an inbound UserOperation. Checks run in
a fixed order and fail fast on the first broken rule; every failure is a
``ValidationError`` naming the field and the rule.

The validator never touches shared state. Its only outside dependency is the
chain client, used for fee sanity and the gas-estimate cross check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, FrozenSet, Mapping, Optional

from .errors import ValidationError
from .retry import RetryStrategy
from .userop import UserOperation, UserOpGasEstimate, parse_address

if TYPE_CHECKING:
    from ..config import Settings
    from ..providers.base import ChainClient

logger = logging.getLogger(__name__)

GAS_FIELDS = (
    ("callGasLimit", "call_gas_limit"),
    ("verificationGasLimit", "verification_gas_limit"),
    ("preVerificationGas", "pre_verification_gas"),
)
BOUNDED_FIELDS = GAS_FIELDS + (
    ("maxFeePerGas", "max_fee_per_gas"),
    ("maxPriorityFeePerGas", "max_priority_fee_per_gas"),
)


@dataclass(frozen=True)
class ValidatorConfig:
    max_call_gas_limit: int = 5_000_000
    max_verification_gas_limit: int = 2_000_000
    max_pre_verification_gas: int = 1_000_000
    max_fee_per_gas: int = 500 * 10**9
    max_priority_fee_per_gas: int = 100 * 10**9
    max_cost_per_operation: int = 10**17
    sender_denylist: FrozenSet[bytes] = field(default_factory=frozenset)
    entry_point: Optional[bytes] = None
    gas_estimate_check: bool = True
    gas_estimate_tolerance: float = 10.0
    max_fee_to_gas_price_ratio: float = 0.0

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ValidatorConfig":
        entry_point = None
        if settings.entry_point_address:
            entry_point = parse_address(settings.entry_point_address, "entry_point_address")
        return cls(
            max_call_gas_limit=settings.max_call_gas_limit,
            max_verification_gas_limit=settings.max_verification_gas_limit,
            max_pre_verification_gas=settings.max_pre_verification_gas,
            max_fee_per_gas=settings.max_fee_per_gas_wei,
            max_priority_fee_per_gas=settings.max_priority_fee_per_gas_wei,
            max_cost_per_operation=settings.max_cost_per_operation_wei,
            sender_denylist=frozenset(parse_address(a, "sender_denylist") for a in settings.sender_denylist),
            entry_point=entry_point,
            gas_estimate_check=settings.gas_estimate_check,
            gas_estimate_tolerance=settings.gas_estimate_tolerance,
            max_fee_to_gas_price_ratio=settings.max_fee_to_gas_price_ratio,
        )

    def ceiling(self, rpc_name: str) -> int:
        return {
            "callGasLimit": self.max_call_gas_limit,
            "verificationGasLimit": self.max_verification_gas_limit,
            "preVerificationGas": self.max_pre_verification_gas,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }[rpc_name]


@dataclass(frozen=True)
class NormalizedOperation:
    """A validated operation annotated with its worst-case cost."""
    operation: UserOperation
    total_gas: int
    max_cost: int
    selector: Optional[str]
    gas_estimate: Optional[UserOpGasEstimate] = None
    gas_price: Optional[int] = None

    @property
    def sender(self) -> bytes:
        return self.operation.sender


class RequestValidator:
    def __init__(
        self,
        config: ValidatorConfig,
        chain: "ChainClient",
        retry: Optional[RetryStrategy] = None,
    ) -> None:
        self.config = config
        self.chain = chain
        self.retry = retry or RetryStrategy()

    async def validate(
        self,
        raw: Mapping[str, Any] | UserOperation,
        entry_point: Optional[str] = None,
    ) -> NormalizedOperation:
        op = raw if isinstance(raw, UserOperation) else UserOperation.from_rpc(raw)

        self._check_entry_point(entry_point)
        self._check_bounds(op)

        if op.sender in self.config.sender_denylist:
            raise ValidationError("sender", "denylist", f"Sender {op.sender_address} is not eligible")

        max_cost = op.max_cost
        if max_cost > self.config.max_cost_per_operation:
            raise ValidationError(
                "maxFeePerGas",
                "max_cost",
                f"Maximum cost {max_cost} wei exceeds per-operation ceiling "
                f"{self.config.max_cost_per_operation} wei",
            )

        gas_price = await self._check_fee_sanity(op)
        estimate = await self._check_gas_estimate(op)

        return NormalizedOperation(
            operation=op,
            total_gas=op.total_gas,
            max_cost=max_cost,
            selector=op.selector,
            gas_estimate=estimate,
            gas_price=gas_price,
        )

    def _check_entry_point(self, entry_point: Optional[str]) -> None:
        if entry_point is None or self.config.entry_point is None:
            return
        if parse_address(entry_point, "entryPoint") != self.config.entry_point:
            raise ValidationError("entryPoint", "unsupported", "EntryPoint is not supported by this paymaster")

    def _check_bounds(self, op: UserOperation) -> None:
        for rpc_name, attr in BOUNDED_FIELDS:
            value = getattr(op, attr)
            ceiling = self.config.ceiling(rpc_name)
            if value > ceiling:
                raise ValidationError(rpc_name, "ceiling", f"{rpc_name} {value} exceeds ceiling {ceiling}")

        if op.max_fee_per_gas == 0:
            raise ValidationError("maxFeePerGas", "non_zero", "Gas price cannot be zero")
        if op.max_priority_fee_per_gas == 0:
            raise ValidationError("maxPriorityFeePerGas", "non_zero", "Priority fee cannot be zero")
        if op.max_priority_fee_per_gas > op.max_fee_per_gas:
            raise ValidationError(
                "maxPriorityFeePerGas",
                "fee_order",
                "maxPriorityFeePerGas cannot exceed maxFeePerGas",
            )

    async def _check_fee_sanity(self, op: UserOperation) -> Optional[int]:
        ratio = self.config.max_fee_to_gas_price_ratio
        if ratio <= 0:
            return None
        gas_price = await self.retry.execute(self.chain.get_gas_price, name="eth_gasPrice")
        if gas_price > 0 and op.max_fee_per_gas > gas_price * ratio:
            raise ValidationError(
                "maxFeePerGas",
                "gas_price_sanity",
                f"maxFeePerGas {op.max_fee_per_gas} is more than {ratio}x the network gas price {gas_price}",
            )
        return gas_price

    async def _check_gas_estimate(self, op: UserOperation) -> Optional[UserOpGasEstimate]:
        if not self.config.gas_estimate_check:
            return None

        estimate = await self.retry.execute(
            lambda: self.chain.estimate_gas(op),
            name="eth_estimateUserOperationGas",
        )
        tolerance = self.config.gas_estimate_tolerance
        for rpc_name, attr in GAS_FIELDS:
            expected = getattr(estimate, attr)
            if expected <= 0:
                continue
            declared = getattr(op, attr)
            if declared > expected * tolerance or declared * tolerance < expected:
                logger.info(
                    "Rejecting %s: %s=%d diverges from estimate %d",
                    op.sender_address,
                    rpc_name,
                    declared,
                    expected,
                )
                raise ValidationError(
                    rpc_name,
                    "gas_estimate",
                    f"{rpc_name} {declared} is outside {tolerance}x of the estimated {expected}",
                )
        return estimate
