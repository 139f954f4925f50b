"""
Tests for the paymaster signer.
"""

import time

import pytest
from eth_account import Account
from eth_utils import to_canonical_address

from paymaster.config import Settings
from paymaster.core.errors import SigningUnavailable
from paymaster.core.signer import PaymasterSigner, recover_signer

from conftest import TEST_PRIVATE_KEY

CANONICAL = bytes(range(116))


def test_address_derived_from_key(signer):
    expected = Account.from_key(TEST_PRIVATE_KEY).address
    assert signer.address == expected
    assert signer.address_bytes == to_canonical_address(expected)


def test_sign_and_recover(signer):
    signature = signer.sign_sync(CANONICAL)

    assert len(signature) == 65
    assert recover_signer(CANONICAL, signature) == signer.address
    assert signer.verify(CANONICAL, signature) == signer.address


def test_signatures_are_deterministic(signer):
    assert signer.sign_sync(CANONICAL) == signer.sign_sync(CANONICAL)


def test_tampered_input_recovers_other_address(signer):
    signature = signer.sign_sync(CANONICAL)
    tampered = b"\xff" + CANONICAL[1:]
    assert recover_signer(tampered, signature) != signer.address


@pytest.mark.asyncio
async def test_async_sign_matches_sync(signer):
    assert await signer.sign(CANONICAL) == signer.sign_sync(CANONICAL)


@pytest.mark.asyncio
async def test_sign_timeout_maps_to_signing_unavailable():
    signer = PaymasterSigner(TEST_PRIVATE_KEY, timeout_seconds=0.05)
    signer.sign_sync = lambda canonical: time.sleep(0.5)

    with pytest.raises(SigningUnavailable, match="deadline"):
        await signer.sign(CANONICAL)


@pytest.mark.asyncio
async def test_sign_failure_maps_to_signing_unavailable(signer):
    def broken(canonical):
        raise RuntimeError("hsm offline")

    signer.sign_sync = broken

    with pytest.raises(SigningUnavailable, match="RuntimeError"):
        await signer.sign(CANONICAL)


def test_invalid_key_does_not_leak():
    bad_key = "0x" + "zz" * 32

    with pytest.raises(SigningUnavailable) as exc_info:
        PaymasterSigner(bad_key)

    assert bad_key not in str(exc_info.value)
    assert exc_info.value.__cause__ is None
    assert exc_info.value.__suppress_context__


def test_repr_hides_key(signer):
    text = repr(signer)
    assert signer.address in text
    assert TEST_PRIVATE_KEY[2:] not in text


def test_from_settings_inline_key():
    signer = PaymasterSigner.from_settings(Settings(signing_key=TEST_PRIVATE_KEY, _env_file=None))
    assert signer.address == Account.from_key(TEST_PRIVATE_KEY).address


def test_from_settings_key_file(tmp_path):
    key_file = tmp_path / "paymaster.key"
    key_file.write_text(TEST_PRIVATE_KEY + "\n")

    signer = PaymasterSigner.from_settings(
        Settings(signing_key_file=str(key_file), signing_timeout_seconds=1.5, _env_file=None)
    )

    assert signer.address == Account.from_key(TEST_PRIVATE_KEY).address
    assert signer.timeout_seconds == 1.5


def test_from_settings_missing_key(monkeypatch):
    monkeypatch.delenv("SIGNING_KEY", raising=False)
    monkeypatch.delenv("SIGNING_KEY_FILE", raising=False)

    with pytest.raises(SigningUnavailable, match="No signing key"):
        PaymasterSigner.from_settings(Settings(_env_file=None))


def test_from_settings_unreadable_file(tmp_path):
    with pytest.raises(SigningUnavailable, match="unreadable"):
        PaymasterSigner.from_settings(
            Settings(signing_key_file=str(tmp_path / "missing.key"), _env_file=None)
        )
