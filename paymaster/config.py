from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8545, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Chain
    chain_id: int = Field(default=1, ge=1, description="Chain identifier bound into every authorization")
    eth_rpc_url: str = Field(default="", description="JSON-RPC endpoint used for gas estimates and balances")
    entry_point_address: str = Field(
        default="",
        description="Supported EntryPoint address; empty accepts any entry point",
    )

    paymaster_address: str = Field(
        default="",
        description="Paymaster contract address placed in paymasterAndData; defaults to the signer address",
    )

    # Signing key (never logged)
    signing_key: SecretStr = Field(default=SecretStr(""), description="Hex-encoded secp256k1 private key")
    signing_key_file: str = Field(default="", description="Path to a file holding the private key")
    signing_timeout_seconds: float = Field(default=2.0, gt=0, description="Deadline for a single signing call")

    # Deposit
    initial_deposit_wei: Optional[int] = Field(
        default=None,
        ge=0,
        description="Starting ledger balance; fetched from the chain when unset",
    )
    deposit_address: str = Field(
        default="",
        description="Address whose balance backs sponsorship; defaults to the signer address",
    )
    low_deposit_threshold_wei: int = Field(default=0, ge=0, description="Warn when the on-chain deposit drops below this")
    deposit_monitor_interval_seconds: float = Field(default=60.0, gt=0, description="Deposit monitor tick interval")

    # Validity window
    validity_ttl_seconds: int = Field(default=300, gt=0, description="Seconds an authorization stays valid")
    clock_skew_tolerance_seconds: int = Field(default=30, ge=0, description="validAfter back-dating for clock skew")
    max_validity_seconds: int = Field(default=3600, gt=0, description="Upper bound on validUntil - validAfter")

    # Validator ceilings
    max_call_gas_limit: int = Field(default=5_000_000, gt=0)
    max_verification_gas_limit: int = Field(default=2_000_000, gt=0)
    max_pre_verification_gas: int = Field(default=1_000_000, gt=0)
    max_fee_per_gas_wei: int = Field(default=500 * 10**9, gt=0)
    max_priority_fee_per_gas_wei: int = Field(default=100 * 10**9, gt=0)
    max_cost_per_operation_wei: int = Field(default=10**17, gt=0, description="Per-operation sponsorship ceiling")
    gas_estimate_check: bool = Field(default=True, description="Cross-check declared gas against eth_estimateUserOperationGas")
    gas_estimate_tolerance: float = Field(default=10.0, ge=1.0, description="Allowed ratio between declared and estimated gas")
    max_fee_to_gas_price_ratio: float = Field(
        default=0.0,
        ge=0.0,
        description="Reject maxFeePerGas above gasPrice times this ratio; 0 disables",
    )

    # Policy
    sender_allowlist: List[str] = Field(default_factory=list, description="Only these senders are sponsored when set")
    sender_denylist: List[str] = Field(default_factory=list, description="Senders never sponsored")
    selector_denylist: List[str] = Field(default_factory=list, description="4-byte call selectors never sponsored")
    global_exposure_cap_wei: Optional[int] = Field(default=None, gt=0, description="Cap on outstanding reserved wei")
    rate_limit_requests: int = Field(default=0, ge=0, description="Requests per sender per window; 0 disables")
    rate_limit_window_seconds: int = Field(default=60, gt=0)
    gas_price_buffer_percent: int = Field(default=0, ge=0, le=100, description="Headroom added to the reserved amount")

    # Upstream calls
    upstream_timeout_seconds: float = Field(default=3.0, gt=0, description="Deadline for a single chain call")
    upstream_max_attempts: int = Field(default=3, ge=1, description="Attempts per chain call including the first")
    upstream_backoff_seconds: float = Field(default=0.2, ge=0, description="Initial retry delay")

    # Expiry sweeper
    sweep_interval_seconds: float = Field(default=5.0, gt=0)
    reservation_grace_seconds: int = Field(default=0, ge=0, description="Extra time before a lapsed reservation is reclaimed")
    settled_retention_seconds: int = Field(default=600, ge=0, description="How long settled reservations stay queryable")

    @field_validator("sender_allowlist", "sender_denylist", "selector_denylist")
    @classmethod
    def _lowercase(cls, values: List[str]) -> List[str]:
        return [value.strip().lower() for value in values if value.strip()]

    @model_validator(mode="after")
    def _check_window(self) -> "Settings":
        span = self.validity_ttl_seconds + self.clock_skew_tolerance_seconds
        if span > self.max_validity_seconds:
            raise ValueError(
                f"validity_ttl_seconds + clock_skew_tolerance_seconds ({span}) "
                f"exceeds max_validity_seconds ({self.max_validity_seconds})"
            )
        return self

    def has_signing_key(self) -> bool:
        return bool(self.signing_key.get_secret_value() or self.signing_key_file)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, loaded once."""
    return Settings()
