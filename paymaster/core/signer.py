"""
Paymaster signer.

Holds the secp256k1 signing key for the process lifetime. The key never leaves
this module: callers only ever see ``sign`` / ``verify`` and the public address.

Signatures are EIP-191 personal signatures over ``keccak256(canonical_bytes)``,
which is what ``VerifyingPaymaster`` recovers on-chain. RFC 6979 nonces make
them deterministic, so a retried request gets the identical signature.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_canonical_address

from .codec import SIGNATURE_LENGTH
from .errors import SigningUnavailable

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


def _signable(canonical: bytes):
    return encode_defunct(primitive=keccak(canonical))


def recover_signer(canonical: bytes, signature: bytes) -> str:
    """Recover the checksum address that produced ``signature`` over ``canonical``."""
    return Account.recover_message(_signable(canonical), signature=signature)


class PaymasterSigner:
    """Signing capability backed by an in-process private key."""

    def __init__(self, private_key: str | bytes, *, timeout_seconds: float = 2.0) -> None:
        try:
            self.__account = Account.from_key(private_key)
        except (ValueError, TypeError) as exc:
            # Do not chain the underlying exception: its message may echo the key.
            raise SigningUnavailable(f"Signing key could not be loaded ({type(exc).__name__})") from None
        self.timeout_seconds = timeout_seconds
        self.address: str = self.__account.address
        self.address_bytes: bytes = to_canonical_address(self.address)
        logger.info("Loaded paymaster signing key for %s", self.address)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PaymasterSigner":
        key = settings.signing_key.get_secret_value()
        if not key and settings.signing_key_file:
            try:
                key = Path(settings.signing_key_file).read_text(encoding="utf-8").strip()
            except OSError as exc:
                raise SigningUnavailable(f"Signing key file unreadable: {exc.strerror}") from None
        if not key:
            raise SigningUnavailable("No signing key configured")
        return cls(key, timeout_seconds=settings.signing_timeout_seconds)

    def __repr__(self) -> str:
        return f"PaymasterSigner(address={self.address})"

    def sign_sync(self, canonical: bytes) -> bytes:
        signed = self.__account.sign_message(_signable(canonical))
        signature = bytes(signed.signature)
        if len(signature) != SIGNATURE_LENGTH:
            raise SigningUnavailable(f"Unexpected signature length {len(signature)}")
        return signature

    async def sign(self, canonical: bytes) -> bytes:
        """Sign ``canonical`` off the event loop, bounded by ``timeout_seconds``."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.sign_sync, canonical),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise SigningUnavailable(f"Signing exceeded {self.timeout_seconds}s deadline") from None
        except SigningUnavailable:
            raise
        except Exception as exc:
            raise SigningUnavailable(f"Signing failed: {type(exc).__name__}") from None

    def verify(self, canonical: bytes, signature: bytes) -> str:
        return recover_signer(canonical, signature)
