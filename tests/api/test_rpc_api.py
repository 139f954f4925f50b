"""
Tests for the JSON-RPC surface.
"""

from unittest.mock import AsyncMock

import pytest
from eth_utils import to_checksum_address
from fastapi.testclient import TestClient

from paymaster.config import Settings
from paymaster.core import codec
from paymaster.core.errors import SigningUnavailable, UpstreamUnavailable
from paymaster.core.signer import PaymasterSigner
from paymaster.main import create_app
from paymaster.service import build_service

from conftest import (
    CHAIN_ID,
    ENTRY_POINT,
    OP_COST,
    TEST_PRIVATE_KEY,
    FakeClock,
    make_chain,
    make_user_op,
)


def make_service(chain=None, **overrides):
    values = {
        "chain_id": CHAIN_ID,
        "entry_point_address": ENTRY_POINT,
        "initial_deposit_wei": 10 * OP_COST,
        "upstream_max_attempts": 1,
        "upstream_backoff_seconds": 0,
        "_env_file": None,
    }
    values.update(overrides)
    return build_service(
        Settings(**values),
        chain=chain or make_chain(),
        signer=PaymasterSigner(TEST_PRIVATE_KEY),
        clock=FakeClock(),
    )


@pytest.fixture
def service():
    return make_service()


@pytest.fixture
def client(service):
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


def rpc(client, method, params=None, path="/rpc"):
    response = client.post(path, json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params or []})
    assert response.status_code == 200
    return response.json()


def error_of(body):
    assert "error" in body, body
    return body["error"]


# =============================================================================
# Sponsorship
# =============================================================================


class TestSponsorUserOperation:
    @pytest.mark.parametrize("path", ["/", "/rpc"])
    def test_sponsor(self, client, service, path):
        body = rpc(client, "pm_sponsorUserOperation", [make_user_op(), ENTRY_POINT], path=path)

        payload = body["result"]["paymasterAndData"]
        assert body["id"] == 1
        assert len(payload) == 2 + 149 * 2
        decoded = codec.decode_hex(payload)
        assert decoded.paymaster == service.signer.address_bytes
        assert service.ledger.snapshot().balance == 9 * OP_COST

    def test_named_params(self, client):
        body = rpc(client, "pm_sponsorUserOperation", {"userOp": make_user_op(), "entryPoint": ENTRY_POINT})
        assert "paymasterAndData" in body["result"]

    def test_context_is_accepted(self, client):
        body = rpc(client, "pm_sponsorUserOperation", [make_user_op(), ENTRY_POINT, {"type": "payg"}])
        assert "result" in body

    def test_missing_user_op(self, client):
        error = error_of(rpc(client, "pm_sponsorUserOperation", []))

        assert error["code"] == -32602
        assert error["data"]["kind"] == "validation_error"
        assert error["data"]["field"] == "userOp"

    def test_too_many_params(self, client):
        error = error_of(rpc(client, "pm_sponsorUserOperation", [make_user_op(), ENTRY_POINT, {}, "extra"]))
        assert error["data"]["rule"] == "arity"

    def test_validation_error(self, client, service):
        error = error_of(rpc(client, "pm_sponsorUserOperation", [make_user_op(maxFeePerGas="0x0", maxPriorityFeePerGas="0x0")]))

        assert error["code"] == -32602
        assert error["data"] == {
            "kind": "validation_error",
            "reason": "Gas price cannot be zero",
            "field": "maxFeePerGas",
            "rule": "non_zero",
        }
        assert service.ledger.snapshot().reserved == 0

    def test_unsupported_entry_point(self, client):
        error = error_of(rpc(client, "pm_sponsorUserOperation", [make_user_op(), "0x" + "99" * 20]))
        assert error["data"]["field"] == "entryPoint"

    def test_insufficient_deposit(self):
        with TestClient(create_app(service=make_service(initial_deposit_wei=OP_COST - 1))) as client:
            error = error_of(rpc(client, "pm_sponsorUserOperation", [make_user_op()]))

        assert error["code"] == -32002
        assert error["data"]["kind"] == "insufficient_deposit"
        assert error["data"]["requested"] == OP_COST

    def test_policy_rejected(self):
        service = make_service(sender_allowlist=["0x" + "22" * 20])
        with TestClient(create_app(service=service)) as client:
            error = error_of(rpc(client, "pm_sponsorUserOperation", [make_user_op()]))

        assert error["code"] == -32001
        assert error["data"]["rule"] == "sender_allowlist"

    def test_upstream_unavailable(self):
        chain = make_chain()
        chain.estimate_gas.side_effect = UpstreamUnavailable("node down")
        with TestClient(create_app(service=make_service(chain=chain))) as client:
            error = error_of(rpc(client, "pm_sponsorUserOperation", [make_user_op()]))

        assert error["code"] == -32004
        assert error["data"]["kind"] == "upstream_unavailable"

    def test_signing_unavailable_releases(self, client, service):
        service.signer.sign = AsyncMock(side_effect=SigningUnavailable("key offline"))

        error = error_of(rpc(client, "pm_sponsorUserOperation", [make_user_op()]))

        assert error["code"] == -32005
        snapshot = service.ledger.snapshot()
        assert snapshot.reserved == 0
        assert snapshot.balance == 10 * OP_COST

    def test_unexpected_error_is_internal(self, client, service):
        service.signer.sign = AsyncMock(side_effect=RuntimeError("boom"))

        error = error_of(rpc(client, "pm_sponsorUserOperation", [make_user_op()]))

        assert error["code"] == -32603
        assert error["data"] == {"kind": "internal_error", "reason": "Internal error"}
        assert "boom" not in error["message"]
        assert service.ledger.snapshot().reserved == 0


# =============================================================================
# Other Methods
# =============================================================================


class TestQueries:
    def test_chain_id(self, client):
        assert rpc(client, "eth_chainId")["result"] == hex(CHAIN_ID)

    def test_supported_entry_points(self, client):
        assert rpc(client, "pm_supportedEntryPoints")["result"] == [to_checksum_address(ENTRY_POINT)]

    def test_deposit_status(self, client):
        rpc(client, "pm_sponsorUserOperation", [make_user_op()])

        result = rpc(client, "pm_getDepositStatus")["result"]

        assert result == {
            "balance": hex(9 * OP_COST),
            "reserved": "0x0",
            "available": hex(9 * OP_COST),
            "pending": "0x0",
        }

    def test_verify_round_trip(self, client, service):
        user_op = make_user_op()
        payload = rpc(client, "pm_sponsorUserOperation", [user_op])["result"]["paymasterAndData"]

        result = rpc(client, "pm_verifyPaymasterAndData", [user_op, payload])["result"]

        assert result["valid"] is True
        assert result["active"] is True
        assert result["signer"] == service.signer.address
        assert result["paymaster"] == service.pipeline.paymaster_address

    def test_verify_wrong_length(self, client):
        error = error_of(rpc(client, "pm_verifyPaymasterAndData", [make_user_op(), "0x" + "00" * 148]))

        assert error["code"] == -32602
        assert error["data"]["kind"] == "format_error"


# =============================================================================
# Envelope Handling
# =============================================================================


class TestEnvelope:
    def test_parse_error(self, client):
        response = client.post("/rpc", content=b"{not json", headers={"content-type": "application/json"})
        assert response.json()["error"]["code"] == -32700

    def test_invalid_request(self, client):
        response = client.post("/rpc", json={"id": 3, "method": "eth_chainId"})

        body = response.json()
        assert body["id"] == 3
        assert body["error"]["code"] == -32600

    def test_method_not_found(self, client):
        error = error_of(rpc(client, "eth_sendTransaction"))
        assert error["code"] == -32601

    def test_batch(self, client):
        response = client.post(
            "/rpc",
            json=[
                {"jsonrpc": "2.0", "id": 1, "method": "eth_chainId"},
                {"jsonrpc": "2.0", "id": 2, "method": "nope"},
            ],
        )

        first, second = response.json()
        assert first == {"jsonrpc": "2.0", "id": 1, "result": hex(CHAIN_ID)}
        assert second["error"]["code"] == -32601

    def test_empty_batch(self, client):
        assert client.post("/rpc", json=[]).json()["error"]["code"] == -32600

    def test_request_id_header(self, client):
        response = client.post(
            "/rpc",
            json={"jsonrpc": "2.0", "id": 1, "method": "eth_chainId"},
            headers={"x-request-id": "abc123"},
        )
        assert response.headers["x-request-id"] == "abc123"


# =============================================================================
# Health
# =============================================================================


def test_healthz(client, service):
    response = client.get("/healthz")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["signer"] == service.signer.address
    assert body["chainId"] == CHAIN_ID
    assert body["deposit"]["balance"] == 10 * OP_COST
    assert body["seeded"] is True
    assert body["sweeper"]["running"] is True


def test_deposit_seeded_from_chain_when_not_configured():
    chain = make_chain()
    chain.get_balance.return_value = 5 * OP_COST
    service = make_service(chain=chain, initial_deposit_wei=None)

    with TestClient(create_app(service=service)):
        assert service.ledger.snapshot().balance == 5 * OP_COST

    chain.get_balance.assert_awaited_once_with(service.deposit_address)
    assert service.deposit_address == to_checksum_address(service.signer.address)