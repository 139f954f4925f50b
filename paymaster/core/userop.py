"""
ERC-4337 UserOperation models and helpers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from eth_utils import keccak, to_checksum_address

from .errors import ValidationError

UINT256_MAX = 2**256 - 1
ADDRESS_LENGTH = 20

QUANTITY_FIELDS = (
    ("nonce", "nonce"),
    ("callGasLimit", "call_gas_limit"),
    ("verificationGasLimit", "verification_gas_limit"),
    ("preVerificationGas", "pre_verification_gas"),
    ("maxFeePerGas", "max_fee_per_gas"),
    ("maxPriorityFeePerGas", "max_priority_fee_per_gas"),
)

BYTES_FIELDS = (
    ("initCode", "init_code"),
    ("callData", "call_data"),
    ("paymasterAndData", "paymaster_and_data"),
    ("signature", "signature"),
)


def _to_hex(value: int) -> str:
    return hex(value)


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


def encode_uint(value: int) -> bytes:
    """Encode an unsigned integer as one 32-byte big-endian ABI word."""
    if value < 0 or value > UINT256_MAX:
        raise ValueError("Value must fit in uint256")
    return value.to_bytes(32, "big")


def encode_address(address: bytes) -> bytes:
    if len(address) != ADDRESS_LENGTH:
        raise ValueError(f"Invalid address length: {len(address)}")
    return address.rjust(32, b"\x00")


def parse_address(value: Any, field: str) -> bytes:
    if not isinstance(value, str):
        raise ValidationError(field, "format", f"{field} must be a hex string")
    raw = _strip_0x(value)
    if len(raw) != ADDRESS_LENGTH * 2:
        raise ValidationError(field, "format", f"{field} must be a 20-byte address")
    try:
        return bytes.fromhex(raw)
    except ValueError:
        raise ValidationError(field, "format", f"{field} is not valid hex") from None


def parse_bytes(value: Any, field: str) -> bytes:
    if not isinstance(value, str):
        raise ValidationError(field, "format", f"{field} must be a hex string")
    raw = _strip_0x(value)
    if len(raw) % 2 != 0:
        raise ValidationError(field, "format", f"{field} must have an even-length hex string")
    try:
        return bytes.fromhex(raw)
    except ValueError:
        raise ValidationError(field, "format", f"{field} is not valid hex") from None


def parse_quantity(value: Any, field: str) -> int:
    """Parse an RPC quantity: a 0x-prefixed hex string or a non-negative int."""
    if isinstance(value, bool):
        raise ValidationError(field, "format", f"{field} must be a quantity")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.startswith(("0x", "0X")) and len(value) > 2:
        try:
            parsed = int(value, 16)
        except ValueError:
            raise ValidationError(field, "format", f"{field} is not a valid hex quantity") from None
    else:
        raise ValidationError(field, "format", f"{field} must be a 0x-prefixed hex quantity")
    if parsed < 0:
        raise ValidationError(field, "range", f"{field} must be non-negative")
    if parsed > UINT256_MAX:
        raise ValidationError(field, "range", f"{field} does not fit in uint256")
    return parsed


@dataclass(frozen=True)
class UserOperation:
    """
    ERC-4337 UserOperation payload.

    Quantities are raw units (wei / gas units), byte fields are raw bytes.
    The inbound ``paymaster_and_data`` is kept for completeness but is never
    trusted; the service always produces its own.
    """
    sender: bytes
    nonce: int
    init_code: bytes
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: bytes = b""
    signature: bytes = b""

    @classmethod
    def from_rpc(cls, data: Mapping[str, Any]) -> "UserOperation":
        """Parse the camelCase RPC form, raising ``ValidationError`` on the first bad field."""
        if not isinstance(data, Mapping):
            raise ValidationError("userOp", "format", "userOp must be an object")

        if "sender" not in data:
            raise ValidationError("sender", "presence", "sender is required")
        values: Dict[str, Any] = {"sender": parse_address(data["sender"], "sender")}

        for rpc_name, attr in QUANTITY_FIELDS:
            if rpc_name not in data:
                raise ValidationError(rpc_name, "presence", f"{rpc_name} is required")
            values[attr] = parse_quantity(data[rpc_name], rpc_name)

        for rpc_name, attr in BYTES_FIELDS:
            raw = data.get(rpc_name)
            if raw is None:
                if rpc_name in ("initCode", "callData"):
                    raise ValidationError(rpc_name, "presence", f"{rpc_name} is required")
                raw = "0x"
            values[attr] = parse_bytes(raw, rpc_name)

        return cls(**values)

    @property
    def sender_address(self) -> str:
        return to_checksum_address(self.sender)

    @property
    def total_gas(self) -> int:
        return self.call_gas_limit + self.verification_gas_limit + self.pre_verification_gas

    @property
    def max_cost(self) -> int:
        """Worst-case cost in wei if every gas limit is consumed at maxFeePerGas."""
        return self.total_gas * self.max_fee_per_gas

    @property
    def selector(self) -> Optional[str]:
        if len(self.call_data) < 4:
            return None
        return "0x" + self.call_data[:4].hex()

    def sponsorship_hash(self, chain_id: int, paymaster: bytes) -> bytes:
        """
        Hash binding an authorization to this operation's cost-relevant fields,
        the chain and the paymaster.
        """
        packed = b"".join(
            (
                encode_address(self.sender),
                encode_uint(self.nonce),
                keccak(self.init_code),
                keccak(self.call_data),
                encode_uint(self.call_gas_limit),
                encode_uint(self.verification_gas_limit),
                encode_uint(self.pre_verification_gas),
                encode_uint(self.max_fee_per_gas),
                encode_uint(self.max_priority_fee_per_gas),
                encode_uint(chain_id),
                encode_address(paymaster),
            )
        )
        return keccak(packed)

    def to_rpc_dict(self) -> Dict[str, Any]:
        return {
            "sender": self.sender_address,
            "nonce": _to_hex(self.nonce),
            "initCode": "0x" + self.init_code.hex(),
            "callData": "0x" + self.call_data.hex(),
            "callGasLimit": _to_hex(self.call_gas_limit),
            "verificationGasLimit": _to_hex(self.verification_gas_limit),
            "preVerificationGas": _to_hex(self.pre_verification_gas),
            "maxFeePerGas": _to_hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": _to_hex(self.max_priority_fee_per_gas),
            "paymasterAndData": "0x" + self.paymaster_and_data.hex(),
            "signature": "0x" + self.signature.hex(),
        }


@dataclass(frozen=True)
class UserOpGasEstimate:
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "UserOpGasEstimate":
        def parse_hex(value: Any) -> int:
            if value is None:
                return 0
            if isinstance(value, int):
                return value
            return int(value, 16)

        return cls(
            call_gas_limit=parse_hex(data.get("callGasLimit")),
            verification_gas_limit=parse_hex(data.get("verificationGasLimit")),
            pre_verification_gas=parse_hex(data.get("preVerificationGas")),
        )
