"""
paymasterAndData codec.

Fixed layout, big-endian, no optional fields:

    paymaster(20) || validUntil(32) || validAfter(32) || signature(65)

validUntil precedes validAfter to match the VerifyingPaymaster contract.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_utils import to_checksum_address

from .errors import FormatError
from .window import ValidityWindow

ADDRESS_LENGTH = 20
WORD_LENGTH = 32
HASH_LENGTH = 32
SIGNATURE_LENGTH = 65
PAYMASTER_AND_DATA_LENGTH = ADDRESS_LENGTH + 2 * WORD_LENGTH + SIGNATURE_LENGTH
CANONICAL_LENGTH = ADDRESS_LENGTH + 2 * WORD_LENGTH + HASH_LENGTH

_UNTIL_OFFSET = ADDRESS_LENGTH
_AFTER_OFFSET = _UNTIL_OFFSET + WORD_LENGTH
_SIGNATURE_OFFSET = _AFTER_OFFSET + WORD_LENGTH


@dataclass(frozen=True)
class DecodedAuthorization:
    paymaster: bytes
    window: ValidityWindow
    signature: bytes

    @property
    def paymaster_address(self) -> str:
        return to_checksum_address(self.paymaster)


def _check_length(value: bytes, expected: int, name: str) -> None:
    if len(value) != expected:
        raise ValueError(f"{name} must be {expected} bytes, got {len(value)}")


def _window_words(window: ValidityWindow) -> bytes:
    return window.valid_until.to_bytes(WORD_LENGTH, "big") + window.valid_after.to_bytes(WORD_LENGTH, "big")


def canonical_bytes(paymaster: bytes, window: ValidityWindow, binding_hash: bytes) -> bytes:
    """Signing input: paymaster || validUntil || validAfter || binding hash."""
    _check_length(paymaster, ADDRESS_LENGTH, "paymaster")
    _check_length(binding_hash, HASH_LENGTH, "binding_hash")
    return paymaster + _window_words(window) + binding_hash


def encode(paymaster: bytes, window: ValidityWindow, signature: bytes) -> bytes:
    _check_length(paymaster, ADDRESS_LENGTH, "paymaster")
    _check_length(signature, SIGNATURE_LENGTH, "signature")
    return paymaster + _window_words(window) + signature


def decode(data: bytes) -> DecodedAuthorization:
    if len(data) != PAYMASTER_AND_DATA_LENGTH:
        raise FormatError(
            f"paymasterAndData must be {PAYMASTER_AND_DATA_LENGTH} bytes, got {len(data)}",
            {"length": len(data)},
        )
    valid_until = int.from_bytes(data[_UNTIL_OFFSET:_AFTER_OFFSET], "big")
    valid_after = int.from_bytes(data[_AFTER_OFFSET:_SIGNATURE_OFFSET], "big")
    try:
        window = ValidityWindow(valid_after=valid_after, valid_until=valid_until)
    except ValueError as exc:
        raise FormatError(f"Invalid validity window: {exc}") from exc
    return DecodedAuthorization(
        paymaster=bytes(data[:ADDRESS_LENGTH]),
        window=window,
        signature=bytes(data[_SIGNATURE_OFFSET:]),
    )


def decode_hex(value: str) -> DecodedAuthorization:
    raw = value[2:] if value.startswith(("0x", "0X")) else value
    try:
        data = bytes.fromhex(raw)
    except ValueError:
        raise FormatError("paymasterAndData is not valid hex") from None
    return decode(data)
