"""Shared fixtures for the paymaster test suite."""

from unittest.mock import AsyncMock

import pytest

from paymaster.core.ledger import DepositLedger
from paymaster.core.pipeline import SponsorshipPipeline
from paymaster.core.policy import PolicyConfig, PolicyEngine
from paymaster.core.retry import RetryConfig, RetryStrategy
from paymaster.core.signer import PaymasterSigner
from paymaster.core.userop import UserOpGasEstimate
from paymaster.core.validator import RequestValidator, ValidatorConfig
from paymaster.core.window import ValidityWindowAllocator

# Throwaway key used only by the test suite.
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
SENDER = "0x1111111111111111111111111111111111111111"
ENTRY_POINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
CHAIN_ID = 11155111
START_TIME = 1_700_000_000

GWEI = 10**9
CALL_GAS = 100_000
VERIFICATION_GAS = 150_000
PRE_VERIFICATION_GAS = 50_000
MAX_FEE = 10 * GWEI
# Worst case cost of the default operation
OP_COST = (CALL_GAS + VERIFICATION_GAS + PRE_VERIFICATION_GAS) * MAX_FEE


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_user_op(**overrides):
    op = {
        "sender": SENDER,
        "nonce": "0x0",
        "initCode": "0x",
        "callData": "0xb61d27f6" + "00" * 96,
        "callGasLimit": hex(CALL_GAS),
        "verificationGasLimit": hex(VERIFICATION_GAS),
        "preVerificationGas": hex(PRE_VERIFICATION_GAS),
        "maxFeePerGas": hex(MAX_FEE),
        "maxPriorityFeePerGas": hex(GWEI),
        "paymasterAndData": "0x",
        "signature": "0x",
    }
    op.update(overrides)
    return op


def make_chain() -> AsyncMock:
    chain = AsyncMock()
    chain.estimate_gas.return_value = UserOpGasEstimate(
        call_gas_limit=CALL_GAS,
        verification_gas_limit=VERIFICATION_GAS,
        pre_verification_gas=PRE_VERIFICATION_GAS,
    )
    chain.get_gas_price.return_value = 5 * GWEI
    chain.get_balance.return_value = 10**18
    chain.health_check.return_value = {"status": "healthy", "chainId": hex(CHAIN_ID)}
    return chain


def fast_retry(max_attempts: int = 2) -> RetryStrategy:
    return RetryStrategy(
        RetryConfig(max_attempts=max_attempts, initial_delay_seconds=0, jitter=False, timeout_seconds=1.0)
    )


def make_pipeline(
    balance: int,
    chain=None,
    signer=None,
    clock=None,
    policy_config=None,
    validator_config=None,
):
    clock = clock or FakeClock()
    chain = chain or make_chain()
    signer = signer or PaymasterSigner(TEST_PRIVATE_KEY)
    ledger = DepositLedger(balance, clock=clock)
    validator = RequestValidator(validator_config or ValidatorConfig(), chain, retry=fast_retry())
    policy = PolicyEngine(ledger.snapshot, policy_config or PolicyConfig())
    allocator = ValidityWindowAllocator(300, 30, 3600, clock=clock)
    return SponsorshipPipeline(
        validator=validator,
        policy=policy,
        ledger=ledger,
        allocator=allocator,
        signer=signer,
        chain_id=CHAIN_ID,
        clock=clock,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def signer():
    return PaymasterSigner(TEST_PRIVATE_KEY)


@pytest.fixture
def user_op():
    return make_user_op()


@pytest.fixture
def chain():
    return make_chain()
